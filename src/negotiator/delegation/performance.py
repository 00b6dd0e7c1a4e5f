"""
Delegation Performance Ledger

Running success rate and completion time per agent, fed by delegated subtask
outcomes. Recommendations rank agents with enough history by:

    score = success_rate * 0.7 + (1 - min(avg_time / 60s, 1)) * 0.3
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from negotiator.core.clock import Clock, SystemClock
from negotiator.errors import ValidationError

SUCCESS_WEIGHT = 0.7
SPEED_WEIGHT = 0.3
SPEED_HORIZON = 60.0
MIN_TASKS = 3
DEFAULT_LIMIT = 3


@dataclass
class PerformanceRecord:
    agent_id: str
    task_count: int = 0
    success_count: int = 0
    success_rate: float = 0.0
    avg_completion_time: float = 0.0
    last_updated: float = 0.0

    @property
    def score(self) -> float:
        speed = 1 - min(self.avg_completion_time / SPEED_HORIZON, 1.0)
        return self.success_rate * SUCCESS_WEIGHT + speed * SPEED_WEIGHT

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "task_count": self.task_count,
            "success_rate": round(self.success_rate, 3),
            "avg_completion_time": round(self.avg_completion_time, 3),
            "score": round(self.score, 3),
            "last_updated": self.last_updated,
        }


class DelegationPerformanceLedger:
    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self._records: dict[str, PerformanceRecord] = {}

    def record(self, agent_id: str, success: bool, completion_time: float) -> PerformanceRecord:
        """Fold one delegated outcome into the agent's record."""
        if completion_time < 0:
            raise ValidationError(f"completion_time must be >= 0, got {completion_time}")
        record = self._records.get(agent_id) or PerformanceRecord(agent_id=agent_id)
        record.task_count += 1
        if success:
            # Mean over successful tasks only
            record.avg_completion_time = (
                record.avg_completion_time * record.success_count + completion_time
            ) / (record.success_count + 1)
            record.success_count += 1
        record.success_rate = record.success_count / record.task_count
        record.last_updated = self.clock.now()
        self._records[agent_id] = record
        return record

    def load(self, records: list[PerformanceRecord]) -> None:
        for record in records:
            self._records[record.agent_id] = record

    def get(self, agent_id: str) -> PerformanceRecord | None:
        return self._records.get(agent_id)

    def all(self) -> list[PerformanceRecord]:
        return list(self._records.values())

    def recommend(
        self,
        candidates: list[str] | None = None,
        limit: int = DEFAULT_LIMIT,
        min_tasks: int = MIN_TASKS,
    ) -> list[PerformanceRecord]:
        pool = [
            r
            for r in self._records.values()
            if r.task_count >= min_tasks and (candidates is None or r.agent_id in candidates)
        ]
        pool.sort(key=lambda r: (-r.score, r.agent_id))
        return pool[:limit]

    def get_stats(self) -> dict[str, Any]:
        return {
            "tracked_agents": len(self._records),
            "delegations": sum(r.task_count for r in self._records.values()),
        }
