"""Shared building blocks: clock, typed events, key-value stores."""

from negotiator.core.clock import Clock, ManualClock, SystemClock
from negotiator.core.events import EventBus
from negotiator.core.store import KeyValueStore, MemoryStore

__all__ = [
    "Clock",
    "EventBus",
    "KeyValueStore",
    "ManualClock",
    "MemoryStore",
    "SystemClock",
]
