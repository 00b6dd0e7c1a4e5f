"""
Collaborative Task Breakdown

A proposer seeds a decomposition, collaborators revise it, and the group
approves or rejects it through a two-choice voting:

    DRAFT -> VOTING -> APPROVED
                    -> REJECTED -> DRAFT (on the next revision)

Quality metrics are computed once, on approval.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from negotiator.breakdown.metrics import compute_metrics, find_cycle
from negotiator.breakdown.models import (
    BreakdownStatus,
    SubtaskDefinition,
    TaskBreakdown,
    TaskSpec,
)
from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.consensus.voting import Voting, VotingEngine
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import BreakdownEvent, BreakdownEventKind, EventBus
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import InvalidStateError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
DEFAULT_VOTING_WINDOW = 600.0

PLANNING_CAPABILITY = "task-planning"
COORDINATION_CAPABILITY = "work-coordination"


def seed_subtasks(task: TaskSpec) -> list[SubtaskDefinition]:
    """Naive starting decomposition: plan, one subtask per capability, integrate."""
    planning = SubtaskDefinition(
        id=f"{task.id}-planning",
        title="Planning",
        description=f"Plan approach for {task.name}",
        required_capabilities=[PLANNING_CAPABILITY],
        estimated_complexity=3,
    )
    per_capability = [
        SubtaskDefinition(
            id=f"{task.id}-exec-{capability}",
            title=capability,
            description=f"Execute {capability} for {task.name}",
            required_capabilities=[capability],
            estimated_complexity=5,
            prerequisites=[planning.id],
        )
        for capability in dict.fromkeys(task.required_capabilities)
    ]
    subtasks = [planning, *per_capability]
    if len(per_capability) > 2:
        subtasks.append(
            SubtaskDefinition(
                id=f"{task.id}-integration",
                title="Integration",
                description=f"Integrate results for {task.name}",
                required_capabilities=[PLANNING_CAPABILITY, COORDINATION_CAPABILITY],
                estimated_complexity=4,
                prerequisites=[s.id for s in per_capability],
            )
        )
    return subtasks


def validate_subtasks(subtasks: list[SubtaskDefinition]) -> None:
    if not subtasks:
        raise ValidationError("a breakdown needs at least one subtask")
    ids = [s.id for s in subtasks]
    if len(set(ids)) != len(ids):
        raise ValidationError("subtask ids must be unique")
    known = set(ids)
    for subtask in subtasks:
        unknown = [p for p in subtask.prerequisites if p not in known]
        if unknown:
            raise ValidationError(
                f"Subtask {subtask.id} references unknown prerequisites",
                subtask_id=subtask.id,
                unknown=unknown,
            )
    cycle = find_cycle(subtasks)
    if cycle:
        raise ValidationError(f"Prerequisite cycle: {' -> '.join(cycle)}", cycle=cycle)


class TaskBreakdownService:
    """Runs collaborative decompositions on top of the voting engine."""

    def __init__(
        self,
        voting: VotingEngine,
        registry: CapabilityRegistry | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        voting_window: float = DEFAULT_VOTING_WINDOW,
        breakdowns: KeyValueStore[str, TaskBreakdown] | None = None,
    ) -> None:
        self.voting = voting
        self.registry = registry
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.voting_window = voting_window
        self._breakdowns: KeyValueStore[str, TaskBreakdown] = breakdowns or MemoryStore()
        self._tasks: dict[str, TaskSpec] = {}

    def initiate(
        self,
        task: TaskSpec,
        proposer_id: str,
        collaborators: list[str],
    ) -> TaskBreakdown:
        if not proposer_id:
            raise ValidationError("proposer_id is required")
        now = self.clock.now()
        breakdown = TaskBreakdown(
            id=f"breakdown-{uuid.uuid4().hex[:12]}",
            task_id=task.id,
            proposer_id=proposer_id,
            collaborators=list(dict.fromkeys([proposer_id, *collaborators])),
            subtasks=seed_subtasks(task),
            created_at=now,
            updated_at=now,
        )
        self._tasks[task.id] = task
        self._breakdowns.put(breakdown.id, breakdown)
        self._emit(BreakdownEventKind.INITIATED, breakdown, proposer_id)
        logger.info(
            "Breakdown %s initiated for task %s with %d seed subtasks",
            breakdown.id,
            task.id,
            len(breakdown.subtasks),
        )
        return breakdown

    def get(self, breakdown_id: str) -> TaskBreakdown:
        breakdown = self._breakdowns.get(breakdown_id)
        if breakdown is None:
            raise NotFoundError("Unknown breakdown", breakdown_id=breakdown_id)
        return breakdown

    def get_task_breakdowns(self, task_id: str) -> list[TaskBreakdown]:
        return [b for b in self._breakdowns.values() if b.task_id == task_id]

    def update_subtasks(
        self, breakdown_id: str, agent_id: str, subtasks: list[SubtaskDefinition]
    ) -> TaskBreakdown:
        """Replace the subtask list. A rejected breakdown returns to draft."""
        breakdown = self.get(breakdown_id)
        self._require_collaborator(breakdown, agent_id)
        if breakdown.status not in (BreakdownStatus.DRAFT, BreakdownStatus.REJECTED):
            raise InvalidStateError(
                "Breakdown can only be edited in draft or rejected",
                breakdown_id=breakdown_id,
                status=breakdown.status.value,
            )
        validate_subtasks(subtasks)

        if breakdown.status == BreakdownStatus.REJECTED:
            breakdown.status = BreakdownStatus.DRAFT
            breakdown.voting_id = None
        breakdown.subtasks = list(subtasks)
        breakdown.revision += 1
        breakdown.updated_at = self.clock.now()
        self._breakdowns.put(breakdown.id, breakdown)
        self._emit(
            BreakdownEventKind.UPDATED,
            breakdown,
            agent_id,
            {"subtasks": len(subtasks), "revision": breakdown.revision},
        )
        return breakdown

    def start_voting(
        self, breakdown_id: str, agent_id: str, expires_in: float | None = None
    ) -> Voting:
        breakdown = self.get(breakdown_id)
        self._require_collaborator(breakdown, agent_id)
        if breakdown.status != BreakdownStatus.DRAFT:
            raise InvalidStateError(
                "Voting can only start from draft",
                breakdown_id=breakdown_id,
                status=breakdown.status.value,
            )
        voting = self.voting.create(
            topic=f"Approve breakdown {breakdown.id} for task {breakdown.task_id}",
            choices=[APPROVE, REJECT],
            eligible_voters=breakdown.collaborators,
            expires_in=self.voting_window if expires_in is None else expires_in,
            created_by=agent_id,
            metadata={"breakdown_id": breakdown.id, "revision": breakdown.revision},
            on_close=self._on_voting_closed,
        )
        breakdown.status = BreakdownStatus.VOTING
        breakdown.voting_id = voting.id
        breakdown.updated_at = self.clock.now()
        self._breakdowns.put(breakdown.id, breakdown)
        self._emit(BreakdownEventKind.VOTING_STARTED, breakdown, agent_id, {"voting_id": voting.id})
        return voting

    def vote(self, breakdown_id: str, agent_id: str, approve: bool) -> TaskBreakdown:
        breakdown = self.get(breakdown_id)
        if breakdown.status != BreakdownStatus.VOTING or breakdown.voting_id is None:
            raise InvalidStateError(
                "Breakdown is not being voted on",
                breakdown_id=breakdown_id,
                status=breakdown.status.value,
            )
        self.voting.cast(breakdown.voting_id, agent_id, APPROVE if approve else REJECT)
        return self.get(breakdown_id)

    def get_stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for breakdown in self._breakdowns.values():
            by_status[breakdown.status.value] = by_status.get(breakdown.status.value, 0) + 1
        return {"total_breakdowns": len(self._breakdowns), "by_status": by_status}

    # ── Internals ────────────────────────────────────────────────────────

    def _on_voting_closed(self, voting: Voting) -> None:
        breakdown = self.get(voting.metadata["breakdown_id"])
        if breakdown.status != BreakdownStatus.VOTING or breakdown.voting_id != voting.id:
            return
        results = voting.results
        approved = (
            results is not None
            and results.top_choice == APPROVE
            and not results.tied
        )
        breakdown.updated_at = self.clock.now()
        if approved:
            breakdown.status = BreakdownStatus.APPROVED
            breakdown.metrics = compute_metrics(
                self._task_description(breakdown), breakdown.subtasks, self._capabilities_of
            )
            self._breakdowns.put(breakdown.id, breakdown)
            self._emit(BreakdownEventKind.APPROVED, breakdown, None, breakdown.metrics.to_dict())
            logger.info(
                "Breakdown %s approved (overall %.2f)",
                breakdown.id,
                breakdown.metrics.quality.overall_score,
            )
        else:
            breakdown.status = BreakdownStatus.REJECTED
            self._breakdowns.put(breakdown.id, breakdown)
            self._emit(BreakdownEventKind.REJECTED, breakdown, None)
            logger.info("Breakdown %s rejected", breakdown.id)

    def _task_description(self, breakdown: TaskBreakdown) -> str:
        task = self._tasks.get(breakdown.task_id)
        return task.description if task else ""

    def _capabilities_of(self, agent_id: str) -> list[str]:
        if self.registry is None:
            return []
        return self.registry.get_provider_capabilities(agent_id)

    def _require_collaborator(self, breakdown: TaskBreakdown, agent_id: str) -> None:
        if agent_id not in breakdown.collaborators:
            raise InvalidStateError(
                "Agent is not a collaborator", breakdown_id=breakdown.id, agent_id=agent_id
            )

    def _emit(
        self,
        kind: BreakdownEventKind,
        breakdown: TaskBreakdown,
        agent_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.publish(
            BreakdownEvent(
                kind=kind,
                timestamp=self.clock.now(),
                breakdown_id=breakdown.id,
                task_id=breakdown.task_id,
                agent_id=agent_id,
                details=details or {},
            )
        )
