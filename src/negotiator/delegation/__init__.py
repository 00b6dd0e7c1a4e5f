"""Delegation performance tracking and recommendations."""

from negotiator.delegation.performance import DelegationPerformanceLedger, PerformanceRecord
from negotiator.delegation.store import PerformanceStore

__all__ = ["DelegationPerformanceLedger", "PerformanceRecord", "PerformanceStore"]
