"""Task breakdown models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.errors import ValidationError, as_number, check_fields


class BreakdownStatus(StrEnum):
    DRAFT = "draft"
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class TaskSpec:
    """The task being decomposed, referenced by id."""

    id: str
    name: str
    description: str
    required_capabilities: list[str] = field(default_factory=list)


SUBTASK_FIELDS = {
    "id",
    "title",
    "description",
    "required_capabilities",
    "estimated_complexity",
    "prerequisites",
    "suggested_agent_id",
}


@dataclass
class SubtaskDefinition:
    id: str
    description: str
    required_capabilities: list[str] = field(default_factory=list)
    estimated_complexity: float = 1.0
    prerequisites: list[str] = field(default_factory=list)
    suggested_agent_id: str | None = None
    title: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("subtask id is required")
        if not 1 <= self.estimated_complexity <= 10:
            raise ValidationError(
                f"estimated_complexity must be in [1, 10], got {self.estimated_complexity}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "required_capabilities": list(self.required_capabilities),
            "estimated_complexity": self.estimated_complexity,
            "prerequisites": list(self.prerequisites),
            "suggested_agent_id": self.suggested_agent_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubtaskDefinition:
        check_fields(data, SUBTASK_FIELDS, "subtask")
        if not data.get("id"):
            raise ValidationError("subtask id is required")
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            required_capabilities=list(data.get("required_capabilities", [])),
            estimated_complexity=as_number(
                data.get("estimated_complexity", 1.0), "estimated_complexity"
            ),
            prerequisites=list(data.get("prerequisites", [])),
            suggested_agent_id=data.get("suggested_agent_id"),
            title=data.get("title", ""),
        )


@dataclass
class QualityScores:
    completeness: float
    complexity: float
    clarity: float
    coherence: float
    overall_score: float


@dataclass
class BreakdownMetrics:
    average_complexity: float
    parallelization_score: float
    capability_match_score: float
    quality: QualityScores

    def to_dict(self) -> dict[str, Any]:
        return {
            "average_complexity": round(self.average_complexity, 3),
            "parallelization_score": round(self.parallelization_score, 3),
            "capability_match_score": round(self.capability_match_score, 3),
            "completeness": round(self.quality.completeness, 3),
            "complexity": round(self.quality.complexity, 3),
            "clarity": round(self.quality.clarity, 3),
            "coherence": round(self.quality.coherence, 3),
            "overall_score": round(self.quality.overall_score, 3),
        }


@dataclass
class TaskBreakdown:
    id: str
    task_id: str
    proposer_id: str
    collaborators: list[str]
    subtasks: list[SubtaskDefinition]
    created_at: float
    updated_at: float
    status: BreakdownStatus = BreakdownStatus.DRAFT
    voting_id: str | None = None
    metrics: BreakdownMetrics | None = None
    revision: int = 1

    def is_participant(self, agent_id: str) -> bool:
        return agent_id == self.proposer_id or agent_id in self.collaborators

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "proposer_id": self.proposer_id,
            "collaborators": list(self.collaborators),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "status": self.status.value,
            "voting_id": self.voting_id,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "revision": self.revision,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
