"""
Tests for the recruitment protocol engine.

Covers: inquiry, proposal, counter-proposal resolution, idempotent terminal
transitions, expiry, sweep.
"""

import pytest

from negotiator.capabilities.models import Capability
from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.core.clock import ManualClock
from negotiator.core.events import EventBus, RecruitmentEvent, RecruitmentEventKind
from negotiator.errors import ExpiredError, InvalidStateError, NotFoundError, ValidationError
from negotiator.recruitment.engine import RecruitmentEngine
from negotiator.recruitment.models import (
    CommitmentType,
    Compensation,
    RecruitmentStatus,
)
from negotiator.recruitment.resolution import (
    AgentPreferences,
    ResolutionPreferences,
    ResolutionStrategy,
    generate_counter_proposal,
)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine(bus: EventBus, clock: ManualClock) -> RecruitmentEngine:
    return RecruitmentEngine(events=bus, clock=clock)


def open_proposal(engine: RecruitmentEngine, target: str = "A2", **kwargs):
    record = engine.send_inquiry("task-1", "A1", target, ["data_analysis"])
    engine.record_inquiry_response(record.id, interested=True)
    proposal = engine.create_proposal(
        record.id,
        role="analyst",
        responsibilities=["crunch numbers", "write summary"],
        required_capabilities=["data_analysis"],
        expected_duration=3600,
        **kwargs,
    )
    return record, proposal


# ═══════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═══════════════════════════════════════════════════════════════════════════


class TestProtocol:
    def test_inquiry_to_acceptance(self, engine: RecruitmentEngine, bus: EventBus) -> None:
        kinds: list[RecruitmentEventKind] = []
        bus.subscribe(RecruitmentEvent, lambda e: kinds.append(e.kind))

        record, proposal = open_proposal(engine)
        assert record.status == RecruitmentStatus.PROPOSAL_SENT

        engine.accept(record.id, commitment_level="firm")

        assert record.status == RecruitmentStatus.ACCEPTED
        assert record.acceptance.proposal_id == proposal.id
        assert record.commitment.commitment_type == CommitmentType.PARTIAL
        assert record.commitment.role == "analyst"
        assert kinds == [
            RecruitmentEventKind.INQUIRY_SENT,
            RecruitmentEventKind.INQUIRY_ANSWERED,
            RecruitmentEventKind.PROPOSAL_SENT,
            RecruitmentEventKind.PROPOSAL_ACCEPTED,
            RecruitmentEventKind.COMMITMENT_CREATED,
        ]
        assert engine.get_successful_recruits("task-1") == [record]

    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            ("guaranteed", CommitmentType.FULL),
            ("firm", CommitmentType.PARTIAL),
            ("tentative", CommitmentType.TENTATIVE),
        ],
    )
    def test_commitment_types(
        self, engine: RecruitmentEngine, level: str, expected: CommitmentType
    ) -> None:
        record, _ = open_proposal(engine)
        engine.accept(record.id, commitment_level=level)
        assert record.commitment.commitment_type == expected

    def test_declined_inquiry_rejects(self, engine: RecruitmentEngine) -> None:
        record = engine.send_inquiry("task-1", "A1", "A2", ["x"])
        engine.record_inquiry_response(record.id, interested=False, message="busy")

        assert record.status == RecruitmentStatus.REJECTED
        assert record.rejection.reason == "busy"
        assert record.rejection.proposal_id is None

    def test_history_tracks_transitions(self, engine: RecruitmentEngine) -> None:
        record, _ = open_proposal(engine)
        engine.reject(record.id, "too busy")
        assert [h.status for h in record.history] == [
            "inquiry_sent",
            "inquiry_sent",
            "proposal_sent",
            "rejected",
        ]


# ═══════════════════════════════════════════════════════════════════════════
# IDEMPOTENCY AND STATE GUARDS
# ═══════════════════════════════════════════════════════════════════════════


class TestTerminalTransitions:
    def test_accept_is_idempotent(self, engine: RecruitmentEngine) -> None:
        record, _ = open_proposal(engine)
        engine.accept(record.id)
        commitment = record.commitment
        history_len = len(record.history)

        again = engine.accept(record.id, commitment_level="guaranteed")

        assert again is record
        assert record.commitment is commitment
        assert len(record.history) == history_len

    def test_redelivery_after_rejection_is_noop(self, engine: RecruitmentEngine) -> None:
        record, _ = open_proposal(engine)
        engine.reject(record.id, "no")
        engine.reject(record.id, "still no")
        engine.accept(record.id)
        engine.cancel(record.id)

        assert record.status == RecruitmentStatus.REJECTED
        assert record.rejection.reason == "no"

    def test_accept_without_proposal(self, engine: RecruitmentEngine) -> None:
        record = engine.send_inquiry("task-1", "A1", "A2", ["x"])
        with pytest.raises(InvalidStateError):
            engine.accept(record.id)

    def test_duplicate_live_inquiry(self, engine: RecruitmentEngine) -> None:
        engine.send_inquiry("task-1", "A1", "A2", ["x"])
        with pytest.raises(InvalidStateError):
            engine.send_inquiry("task-1", "A1", "A2", ["x"])

    def test_new_inquiry_after_terminal(self, engine: RecruitmentEngine) -> None:
        first = engine.send_inquiry("task-1", "A1", "A2", ["x"])
        engine.cancel(first.id, "changed plans")
        second = engine.send_inquiry("task-1", "A1", "A2", ["x"])

        assert second.id != first.id
        assert engine.find_record("task-1", "A2") is second
        assert len(engine.get_agent_records("A2")) == 2

    def test_proposal_needs_open_inquiry(self, engine: RecruitmentEngine) -> None:
        record, _ = open_proposal(engine)
        with pytest.raises(InvalidStateError):
            engine.create_proposal(record.id, "other", [], ["x"])

    def test_validation(self, engine: RecruitmentEngine) -> None:
        with pytest.raises(ValidationError):
            engine.send_inquiry("task-1", "A1", "A2", [])
        with pytest.raises(ValidationError):
            engine.send_inquiry("", "A1", "A2", ["x"])
        record = engine.send_inquiry("task-1", "A1", "A2", ["x"])
        with pytest.raises(ValidationError):
            engine.create_proposal(record.id, "", [], ["x"])

    def test_unknown_record(self, engine: RecruitmentEngine) -> None:
        with pytest.raises(NotFoundError):
            engine.get("recruit-missing")

    def test_inquiry_needs_registered_capabilities(self, bus: EventBus, clock: ManualClock) -> None:
        registry = CapabilityRegistry(events=bus, clock=clock)
        registry.register(Capability(name="x"), "A2")
        engine = RecruitmentEngine(registry=registry, events=bus, clock=clock)

        with pytest.raises(ValidationError, match="Unregistered capabilities: y"):
            engine.send_inquiry("task-1", "A1", "A2", ["x", "y"])
        record = engine.send_inquiry("task-1", "A1", "A2", ["x"])
        assert record.status == RecruitmentStatus.INQUIRY_SENT


# ═══════════════════════════════════════════════════════════════════════════
# EXPIRY
# ═══════════════════════════════════════════════════════════════════════════


class TestExpiry:
    def test_expired_proposal_cannot_be_accepted(
        self, engine: RecruitmentEngine, clock: ManualClock
    ) -> None:
        record, _ = open_proposal(engine, expires_in=10)
        clock.advance(11)

        with pytest.raises(ExpiredError):
            engine.accept(record.id)
        assert record.status == RecruitmentStatus.EXPIRED

    def test_late_rejection_settles_as_expired(
        self, engine: RecruitmentEngine, clock: ManualClock
    ) -> None:
        record = engine.send_inquiry("task-1", "A1", "A2", ["x"], expires_in=10)
        engine.record_inquiry_response(record.id, interested=True)
        clock.advance(11)

        with pytest.raises(ExpiredError):
            engine.reject(record.id, "too late")
        assert record.status == RecruitmentStatus.EXPIRED
        assert record.rejection is None
        assert engine.reject(record.id, "again") is record

    def test_stale_record_is_replaced(self, engine: RecruitmentEngine, clock: ManualClock) -> None:
        stale = engine.send_inquiry("task-1", "A1", "A2", ["x"], expires_in=10)
        clock.advance(11)

        fresh = engine.send_inquiry("task-1", "A1", "A2", ["x"])

        assert stale.status == RecruitmentStatus.EXPIRED
        assert fresh.status == RecruitmentStatus.INQUIRY_SENT

    def test_sweep(self, engine: RecruitmentEngine, clock: ManualClock) -> None:
        lapsed, _ = open_proposal(engine, target="A2", expires_in=10)
        live, _ = open_proposal(engine, target="A3")
        clock.advance(11)

        assert engine.sweep() == 1
        assert lapsed.status == RecruitmentStatus.EXPIRED
        assert live.status == RecruitmentStatus.PROPOSAL_SENT
        assert engine.get_stats()["by_status"] == {"expired": 1, "proposal_sent": 1}


# ═══════════════════════════════════════════════════════════════════════════
# COUNTER-PROPOSALS
# ═══════════════════════════════════════════════════════════════════════════


class TestCounterProposals:
    def test_compromise_renegotiates(self, engine: RecruitmentEngine, clock: ManualClock) -> None:
        record, proposal = open_proposal(engine)
        counter = generate_counter_proposal(
            proposal, AgentPreferences(preferred_duration=1800), clock.now()
        )
        engine.submit_counter_proposal(record.id, counter)
        assert record.status == RecruitmentStatus.COUNTER_PROPOSED

        result = engine.resolve_counter_proposal(
            record.id, ResolutionPreferences(prioritize_capabilities=False)
        )

        assert result.accepted
        assert result.strategy == ResolutionStrategy.COMPROMISE
        assert record.status == RecruitmentStatus.PROPOSAL_SENT
        assert record.proposal.expected_duration == 2700
        assert record.proposal.supersedes == proposal.id

        engine.accept(record.id)
        assert record.acceptance.proposal_id == record.proposal.id

    def test_capability_first_keeps_terms(
        self, engine: RecruitmentEngine, clock: ManualClock
    ) -> None:
        record, proposal = open_proposal(engine)
        counter = generate_counter_proposal(
            proposal, AgentPreferences(preferred_role="lead"), clock.now()
        )
        engine.submit_counter_proposal(record.id, counter)

        result = engine.resolve_counter_proposal(record.id)

        assert result.strategy == ResolutionStrategy.PRIORITIZE_CAPABILITY_MATCH
        assert record.proposal.role == "analyst"

    def test_irreconcilable_leaves_counter_pending(
        self, engine: RecruitmentEngine, clock: ManualClock
    ) -> None:
        record, proposal = open_proposal(engine, compensation=Compensation("credits", 100))
        counter = generate_counter_proposal(
            proposal,
            AgentPreferences(minimum_compensation=Compensation("credits", 105)),
            clock.now(),
        )
        engine.submit_counter_proposal(record.id, counter)

        result = engine.resolve_counter_proposal(
            record.id, ResolutionPreferences(prioritize_capabilities=False)
        )

        assert not result.accepted
        assert result.strategy == ResolutionStrategy.FIND_ALTERNATIVE
        assert record.status == RecruitmentStatus.COUNTER_PROPOSED
        assert record.proposal is proposal

    def test_counter_must_reference_current_proposal(
        self, engine: RecruitmentEngine, clock: ManualClock
    ) -> None:
        record, proposal = open_proposal(engine)
        counter = generate_counter_proposal(
            proposal, AgentPreferences(preferred_duration=60), clock.now()
        )
        counter.original_proposal_id = "proposal-other"
        with pytest.raises(InvalidStateError):
            engine.submit_counter_proposal(record.id, counter)

    def test_resolve_without_counter(self, engine: RecruitmentEngine) -> None:
        record, _ = open_proposal(engine)
        with pytest.raises(InvalidStateError):
            engine.resolve_counter_proposal(record.id)
