"""
Recruitment Protocol Engine

One record per (task, target agent), driven through:

    INQUIRY_SENT -> PROPOSAL_SENT -> ACCEPTED | REJECTED
                                  -> COUNTER_PROPOSED -> PROPOSAL_SENT (re-negotiated)

Acceptance and rejection are idempotent: re-delivering either to a record that
already reached a terminal state returns the record unchanged.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from negotiator.capabilities.advertisement import AdvertisementStore
from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import EventBus, RecruitmentEvent, RecruitmentEventKind
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import ExpiredError, InvalidStateError, NotFoundError, ValidationError
from negotiator.recruitment.models import (
    Acceptance,
    Commitment,
    CommitmentType,
    Compensation,
    CounterProposal,
    HistoryEntry,
    InquiryResponse,
    RecruitmentInquiry,
    RecruitmentProposal,
    RecruitmentRecord,
    RecruitmentStatus,
    Rejection,
)
from negotiator.recruitment.resolution import (
    ResolutionPreferences,
    ResolutionResult,
    resolve_conflicts,
)

logger = logging.getLogger(__name__)

DEFAULT_RECORD_EXPIRY = 86400.0
DEFAULT_PROPOSAL_EXPIRY = 86400.0

COMMITMENT_TYPES = {
    "guaranteed": CommitmentType.FULL,
    "firm": CommitmentType.PARTIAL,
}


class RecruitmentEngine:
    """Drives recruitment negotiations and records their outcomes."""

    def __init__(
        self,
        registry: CapabilityRegistry | None = None,
        advertisements: AdvertisementStore | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        record_expiry: float = DEFAULT_RECORD_EXPIRY,
        proposal_expiry: float = DEFAULT_PROPOSAL_EXPIRY,
        resolution_preferences: ResolutionPreferences | None = None,
        records: KeyValueStore[str, RecruitmentRecord] | None = None,
    ) -> None:
        self.registry = registry
        self.advertisements = advertisements
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.record_expiry = record_expiry
        self.proposal_expiry = proposal_expiry
        self.resolution_preferences = resolution_preferences or ResolutionPreferences()
        self._records: KeyValueStore[str, RecruitmentRecord] = records or MemoryStore()
        self._by_pair: dict[tuple[str, str], str] = {}

    # ── Inquiry ──────────────────────────────────────────────────────────

    def send_inquiry(
        self,
        task_id: str,
        recruiter_id: str,
        target_agent_id: str,
        capabilities: list[str],
        team_id: str | None = None,
        priority: int = 5,
        message: str = "",
        expires_in: float | None = None,
    ) -> RecruitmentRecord:
        """Open a recruitment record with an inquiry to ``target_agent_id``."""
        if not task_id or not recruiter_id or not target_agent_id:
            raise ValidationError("task_id, recruiter_id and target_agent_id are required")
        if not capabilities:
            raise ValidationError("an inquiry needs at least one capability")
        if self.registry is not None:
            unknown = [cap for cap in capabilities if not self.registry.has_capability(cap)]
            if unknown:
                raise ValidationError(f"Unregistered capabilities: {', '.join(unknown)}")

        existing = self.find_record(task_id, target_agent_id)
        if existing is not None and not existing.is_terminal:
            if self.clock.now() > existing.expires_at:
                self._expire(existing)
        if existing is not None and not existing.is_terminal:
            raise InvalidStateError(
                "Recruitment already in progress",
                record_id=existing.id,
                status=existing.status.value,
            )
        if self.advertisements is not None:
            offered = {
                listing.agent_id
                for cap in capabilities
                for listing in self.advertisements.find_providers(cap)
            }
            if target_agent_id not in offered:
                logger.debug("Agent %s has no live advertisement for %s", target_agent_id, capabilities)

        now = self.clock.now()
        expires_at = now + (self.record_expiry if expires_in is None else expires_in)
        record_id = f"recruit-{uuid.uuid4().hex[:12]}"
        inquiry = RecruitmentInquiry(
            id=f"rinquiry-{uuid.uuid4().hex[:12]}",
            task_id=task_id,
            recruiter_id=recruiter_id,
            target_agent_id=target_agent_id,
            required_capabilities=list(capabilities),
            timestamp=now,
            expires_at=expires_at,
            team_id=team_id,
            priority=priority,
            message=message,
        )
        record = RecruitmentRecord(
            id=record_id,
            task_id=task_id,
            team_id=team_id,
            recruiter_id=recruiter_id,
            target_agent_id=target_agent_id,
            status=RecruitmentStatus.INQUIRY_SENT,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            inquiry=inquiry,
        )
        record.history.append(HistoryEntry(now, record.status.value, "Inquiry sent"))
        self._records.put(record_id, record)
        self._by_pair[(task_id, target_agent_id)] = record_id
        self._emit(RecruitmentEventKind.INQUIRY_SENT, record)
        logger.info("Recruitment %s: inquiry to %s for task %s", record_id, target_agent_id, task_id)
        return record

    def record_inquiry_response(
        self,
        record_id: str,
        interested: bool,
        available_capabilities: list[str] | None = None,
        availability: float = 1.0,
        message: str = "",
    ) -> RecruitmentRecord:
        record = self._live_record(record_id)
        if record.status != RecruitmentStatus.INQUIRY_SENT:
            raise InvalidStateError(
                "Inquiry already answered", record_id=record_id, status=record.status.value
            )
        now = self.clock.now()
        assert record.inquiry is not None
        record.inquiry_response = InquiryResponse(
            inquiry_id=record.inquiry.id,
            agent_id=record.target_agent_id,
            interested=interested,
            timestamp=now,
            available_capabilities=list(available_capabilities or []),
            availability=availability,
            message=message,
        )
        self._emit(RecruitmentEventKind.INQUIRY_ANSWERED, record, {"interested": interested})
        if not interested:
            record.rejection = Rejection(
                proposal_id=None,
                agent_id=record.target_agent_id,
                timestamp=now,
                reason=message or "Not interested",
            )
            self._transition(record, RecruitmentStatus.REJECTED, "Declined inquiry")
            self._emit(RecruitmentEventKind.PROPOSAL_REJECTED, record)
        else:
            self._touch(record, "Inquiry answered")
        return record

    # ── Proposal ─────────────────────────────────────────────────────────

    def create_proposal(
        self,
        record_id: str,
        role: str,
        responsibilities: list[str],
        required_capabilities: list[str],
        expected_contribution: str = "",
        expected_duration: float = 0.0,
        compensation: Compensation | None = None,
        expires_in: float | None = None,
    ) -> RecruitmentProposal:
        """Send a concrete role proposal on an open inquiry."""
        record = self._live_record(record_id)
        if record.status != RecruitmentStatus.INQUIRY_SENT:
            raise InvalidStateError(
                "Proposal requires an open inquiry", record_id=record_id, status=record.status.value
            )
        now = self.clock.now()
        proposal = RecruitmentProposal(
            id=f"proposal-{uuid.uuid4().hex[:12]}",
            task_id=record.task_id,
            team_id=record.team_id,
            recruiter_id=record.recruiter_id,
            target_agent_id=record.target_agent_id,
            role=role,
            responsibilities=list(responsibilities),
            required_capabilities=list(required_capabilities),
            expected_contribution=expected_contribution,
            expected_duration=expected_duration,
            compensation=compensation,
            timestamp=now,
            expires_at=now + (self.proposal_expiry if expires_in is None else expires_in),
        )
        record.proposal = proposal
        self._transition(record, RecruitmentStatus.PROPOSAL_SENT, f"Proposed role {role}")
        self._emit(RecruitmentEventKind.PROPOSAL_SENT, record, {"proposal_id": proposal.id})
        return proposal

    def submit_counter_proposal(
        self, record_id: str, counter: CounterProposal
    ) -> RecruitmentRecord:
        record = self._live_record(record_id)
        proposal = self._pending_proposal(record)
        if counter.original_proposal_id != proposal.id:
            raise InvalidStateError(
                "Counter-proposal does not reference the current proposal",
                record_id=record_id,
                proposal_id=proposal.id,
            )
        record.counter_proposal = counter
        self._transition(
            record,
            RecruitmentStatus.COUNTER_PROPOSED,
            f"Counter-proposal with {len(counter.modified_terms)} modified terms",
        )
        self._emit(
            RecruitmentEventKind.COUNTER_PROPOSAL_RECEIVED,
            record,
            {"changes": dict(counter.changes)},
        )
        return record

    def resolve_counter_proposal(
        self,
        record_id: str,
        preferences: ResolutionPreferences | None = None,
    ) -> ResolutionResult:
        """
        Settle the pending counter-proposal.

        An accepted resolution replaces the proposal and returns the record to
        PROPOSAL_SENT; an irreconcilable one leaves it COUNTER_PROPOSED.
        """
        record = self._live_record(record_id)
        if record.status != RecruitmentStatus.COUNTER_PROPOSED:
            raise InvalidStateError(
                "No counter-proposal to resolve", record_id=record_id, status=record.status.value
            )
        assert record.proposal is not None and record.counter_proposal is not None
        now = self.clock.now()
        result = resolve_conflicts(
            record.proposal,
            record.counter_proposal,
            preferences or self.resolution_preferences,
            now=now,
        )
        if result.accepted:
            result.proposal.expires_at = now + self.proposal_expiry
            record.proposal = result.proposal
            self._transition(record, RecruitmentStatus.PROPOSAL_SENT, result.explanation)
            self._emit(
                RecruitmentEventKind.PROPOSAL_SENT,
                record,
                {"proposal_id": result.proposal.id, "strategy": result.strategy.value},
            )
        else:
            self._touch(record, result.explanation)
            logger.info("Recruitment %s: terms irreconcilable (%s)", record_id, result.explanation)
        return result

    # ── Terminal transitions ─────────────────────────────────────────────

    def accept(
        self, record_id: str, commitment_level: str = "firm", message: str = ""
    ) -> RecruitmentRecord:
        record = self.get(record_id)
        if record.is_terminal:
            return record
        self._check_expiry(record)
        proposal = self._pending_proposal(record)
        now = self.clock.now()
        record.acceptance = Acceptance(
            proposal_id=proposal.id,
            agent_id=record.target_agent_id,
            timestamp=now,
            commitment_level=commitment_level,
            message=message,
        )
        record.commitment = Commitment(
            id=f"commitment-{uuid.uuid4().hex[:12]}",
            record_id=record.id,
            task_id=record.task_id,
            agent_id=record.target_agent_id,
            proposal_id=proposal.id,
            role=proposal.role,
            commitment_type=COMMITMENT_TYPES.get(commitment_level, CommitmentType.TENTATIVE),
            responsibilities=list(proposal.responsibilities),
            created_at=now,
        )
        self._transition(record, RecruitmentStatus.ACCEPTED, f"Accepted role {proposal.role}")
        self._emit(RecruitmentEventKind.PROPOSAL_ACCEPTED, record, {"proposal_id": proposal.id})
        self._emit(
            RecruitmentEventKind.COMMITMENT_CREATED,
            record,
            {"commitment_type": record.commitment.commitment_type.value},
        )
        logger.info(
            "Recruitment %s: %s accepted role %s", record_id, record.target_agent_id, proposal.role
        )
        return record

    def reject(self, record_id: str, reason: str = "") -> RecruitmentRecord:
        record = self.get(record_id)
        if record.is_terminal:
            return record
        self._check_expiry(record)
        record.rejection = Rejection(
            proposal_id=record.proposal.id if record.proposal else None,
            agent_id=record.target_agent_id,
            timestamp=self.clock.now(),
            reason=reason,
        )
        self._transition(record, RecruitmentStatus.REJECTED, reason or "Rejected")
        self._emit(RecruitmentEventKind.PROPOSAL_REJECTED, record, {"reason": reason})
        return record

    def cancel(self, record_id: str, reason: str = "") -> RecruitmentRecord:
        record = self.get(record_id)
        if record.is_terminal:
            return record
        self._transition(record, RecruitmentStatus.CANCELLED, reason or "Cancelled by recruiter")
        self._emit(RecruitmentEventKind.RECRUITMENT_CANCELLED, record, {"reason": reason})
        return record

    # ── Queries ──────────────────────────────────────────────────────────

    def get(self, record_id: str) -> RecruitmentRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError("Unknown recruitment", record_id=record_id)
        return record

    def find_record(self, task_id: str, target_agent_id: str) -> RecruitmentRecord | None:
        record_id = self._by_pair.get((task_id, target_agent_id))
        return self._records.get(record_id) if record_id else None

    def get_task_records(self, task_id: str) -> list[RecruitmentRecord]:
        return [r for r in self._records.values() if r.task_id == task_id]

    def get_agent_records(self, agent_id: str) -> list[RecruitmentRecord]:
        return [r for r in self._records.values() if r.target_agent_id == agent_id]

    def get_successful_recruits(self, task_id: str) -> list[RecruitmentRecord]:
        return [
            r for r in self.get_task_records(task_id) if r.status == RecruitmentStatus.ACCEPTED
        ]

    def sweep(self) -> int:
        """Expire lapsed records and proposals. Never raises."""
        now = self.clock.now()
        expired = 0
        for record in self._records.values():
            try:
                if record.is_terminal:
                    continue
                proposal_lapsed = (
                    record.status == RecruitmentStatus.PROPOSAL_SENT
                    and record.proposal is not None
                    and record.proposal.is_expired(now)
                )
                if now > record.expires_at or proposal_lapsed:
                    self._expire(record)
                    expired += 1
            except Exception:
                logger.exception("Failed to sweep recruitment %s", record.id)
        if expired:
            logger.info("Recruitment sweep: %d records expired", expired)
        return expired

    def get_stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for record in self._records.values():
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1
        return {"total_records": len(self._records), "by_status": by_status}

    # ── Internals ────────────────────────────────────────────────────────

    def _live_record(self, record_id: str) -> RecruitmentRecord:
        record = self.get(record_id)
        if record.is_terminal:
            raise InvalidStateError(
                "Recruitment already finished", record_id=record_id, status=record.status.value
            )
        self._check_expiry(record)
        return record

    def _check_expiry(self, record: RecruitmentRecord) -> None:
        if self.clock.now() > record.expires_at:
            self._expire(record)
            raise ExpiredError("Recruitment has expired", record_id=record.id)

    def _pending_proposal(self, record: RecruitmentRecord) -> RecruitmentProposal:
        if record.status != RecruitmentStatus.PROPOSAL_SENT or record.proposal is None:
            raise InvalidStateError(
                "No pending proposal", record_id=record.id, status=record.status.value
            )
        if record.proposal.is_expired(self.clock.now()):
            self._expire(record)
            raise ExpiredError("Proposal has expired", proposal_id=record.proposal.id)
        return record.proposal

    def _expire(self, record: RecruitmentRecord) -> None:
        self._transition(record, RecruitmentStatus.EXPIRED, "Recruitment expired")
        self._emit(RecruitmentEventKind.RECRUITMENT_EXPIRED, record)

    def _transition(
        self, record: RecruitmentRecord, status: RecruitmentStatus, message: str
    ) -> None:
        now = self.clock.now()
        record.status = status
        record.updated_at = now
        record.history.append(HistoryEntry(now, status.value, message))
        self._records.put(record.id, record)

    def _touch(self, record: RecruitmentRecord, message: str) -> None:
        now = self.clock.now()
        record.updated_at = now
        record.history.append(HistoryEntry(now, record.status.value, message))
        self._records.put(record.id, record)

    def _emit(
        self,
        kind: RecruitmentEventKind,
        record: RecruitmentRecord,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.publish(
            RecruitmentEvent(
                kind=kind,
                timestamp=self.clock.now(),
                record_id=record.id,
                task_id=record.task_id,
                recruiter_id=record.recruiter_id,
                target_agent_id=record.target_agent_id,
                details=details or {},
            )
        )
