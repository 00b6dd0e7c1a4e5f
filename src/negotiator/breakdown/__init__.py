"""Collaborative task breakdown and quality scoring."""

from negotiator.breakdown.metrics import compute_metrics, find_cycle, quality_scores
from negotiator.breakdown.models import (
    BreakdownMetrics,
    BreakdownStatus,
    QualityScores,
    SubtaskDefinition,
    TaskBreakdown,
    TaskSpec,
)
from negotiator.breakdown.service import TaskBreakdownService, seed_subtasks

__all__ = [
    "BreakdownMetrics",
    "BreakdownStatus",
    "QualityScores",
    "SubtaskDefinition",
    "TaskBreakdown",
    "TaskBreakdownService",
    "TaskSpec",
    "compute_metrics",
    "find_cycle",
    "quality_scores",
    "seed_subtasks",
]
