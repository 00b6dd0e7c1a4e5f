"""
Voting / Consensus Engine

Generic multi-choice ballots with quorum and majority closing rules.

Auto-close, checked after every ballot:
    1. now > expires_at
    2. ballots >= eligible voters (full participation)
    3. ballots >= ceil(0.66 * eligible) and the leader holds > half the ballots

Ties in the final tally go to the choice declared first.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import EventBus, VotingEvent, VotingEventKind
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import (
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    coerce_enum,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600.0
EARLY_MAJORITY_TURNOUT = 0.66
CONSENSUS_THRESHOLD = 0.7


class VotingStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(StrEnum):
    EXPIRED = "expired"
    FULL_PARTICIPATION = "full_participation"
    EARLY_MAJORITY = "early_majority"
    MANUAL = "manual"


@dataclass
class Ballot:
    agent_id: str
    choice: str
    timestamp: float


@dataclass
class VotingResults:
    """Frozen tally of a closed voting."""

    top_choice: str | None
    counts: dict[str, int]
    votes_received: int
    total_eligible: int
    participation_rate: float
    consensus_level: float
    tied: bool
    close_reason: CloseReason
    closed_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "completed",
            "top_choice": self.top_choice,
            "counts": dict(self.counts),
            "votes_received": self.votes_received,
            "total_eligible": self.total_eligible,
            "participation_rate": self.participation_rate,
            "consensus_level": self.consensus_level,
            "tied": self.tied,
            "close_reason": self.close_reason.value,
            "closed_at": self.closed_at,
        }


@dataclass
class Voting:
    id: str
    topic: str
    choices: list[str]
    eligible_voters: list[str]
    created_at: float
    expires_at: float
    created_by: str | None = None
    status: VotingStatus = VotingStatus.OPEN
    ballots: dict[str, Ballot] = field(default_factory=dict)
    results: VotingResults | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def votes(self) -> list[Ballot]:
        return list(self.ballots.values())

    def tally(self) -> dict[str, int]:
        counts = {choice: 0 for choice in self.choices}
        for ballot in self.ballots.values():
            counts[ballot.choice] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "choices": list(self.choices),
            "eligible_voters": list(self.eligible_voters),
            "votes": [
                {"agent_id": b.agent_id, "choice": b.choice, "timestamp": b.timestamp}
                for b in self.ballots.values()
            ],
            "status": self.status.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "created_by": self.created_by,
            "results": self.results.to_dict() if self.results else None,
            "metadata": dict(self.metadata),
        }


CloseHook = Callable[[Voting], None]


class VotingEngine:
    """Creates votings, collects ballots and closes them by rule."""

    def __init__(
        self,
        events: EventBus | None = None,
        clock: Clock | None = None,
        default_expires_in: float = DEFAULT_EXPIRES_IN,
        early_majority_turnout: float = EARLY_MAJORITY_TURNOUT,
        consensus_threshold: float = CONSENSUS_THRESHOLD,
        votings: KeyValueStore[str, Voting] | None = None,
    ) -> None:
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.default_expires_in = default_expires_in
        self.early_majority_turnout = early_majority_turnout
        self.consensus_threshold = consensus_threshold
        self._votings: KeyValueStore[str, Voting] = votings or MemoryStore()
        self._hooks: dict[str, list[CloseHook]] = {}

    def create(
        self,
        topic: str,
        choices: list[str],
        eligible_voters: list[str] | None = None,
        expires_in: float | None = None,
        created_by: str | None = None,
        metadata: dict[str, Any] | None = None,
        on_close: CloseHook | None = None,
    ) -> Voting:
        """Open a new voting."""
        if not topic or not topic.strip():
            raise ValidationError("voting topic is required")
        distinct = list(dict.fromkeys(choices))
        if len(distinct) < 2:
            raise ValidationError("a voting needs at least two distinct choices")
        expires_in = self.default_expires_in if expires_in is None else expires_in
        if expires_in <= 0:
            raise ValidationError(f"expires_in must be > 0, got {expires_in}")

        now = self.clock.now()
        voting = Voting(
            id=f"voting-{uuid.uuid4().hex[:12]}",
            topic=topic,
            choices=distinct,
            eligible_voters=list(dict.fromkeys(eligible_voters or [])),
            created_at=now,
            expires_at=now + expires_in,
            created_by=created_by,
            metadata=dict(metadata or {}),
        )
        self._votings.put(voting.id, voting)
        if on_close is not None:
            self._hooks[voting.id] = [on_close]
        self._emit(VotingEventKind.CREATED, voting, created_by)
        logger.info("Voting %s opened on %r with %d choices", voting.id, topic, len(distinct))
        return voting

    def get(self, voting_id: str) -> Voting:
        voting = self._votings.get(voting_id)
        if voting is None:
            raise NotFoundError("Unknown voting", voting_id=voting_id)
        return voting

    def list_votings(self, status: VotingStatus | str | None = None) -> list[Voting]:
        votings = self._votings.values()
        if status is None:
            return votings
        status = coerce_enum(VotingStatus, status, "voting status")
        return [v for v in votings if v.status == status]

    def add_close_hook(self, voting_id: str, hook: CloseHook) -> None:
        voting = self.get(voting_id)
        if voting.status == VotingStatus.CLOSED:
            raise InvalidStateError("Voting already closed", voting_id=voting_id)
        self._hooks.setdefault(voting_id, []).append(hook)

    def cast(self, voting_id: str, agent_id: str, choice: str) -> Voting:
        """Record or replace ``agent_id``'s ballot, then apply the close rules."""
        voting = self.get(voting_id)
        if voting.status != VotingStatus.OPEN:
            raise InvalidStateError("Voting is not open", voting_id=voting_id)
        now = self.clock.now()
        if now > voting.expires_at:
            self._close(voting, CloseReason.EXPIRED)
            raise ExpiredError("Voting has expired", voting_id=voting_id)
        if choice not in voting.choices:
            raise ValidationError(
                f"Invalid choice {choice!r}", voting_id=voting_id, choices=voting.choices
            )
        if voting.eligible_voters and agent_id not in voting.eligible_voters:
            raise InvalidStateError(
                "Agent is not eligible for this voting", voting_id=voting_id, agent_id=agent_id
            )

        voting.ballots[agent_id] = Ballot(agent_id=agent_id, choice=choice, timestamp=now)
        self._votings.put(voting.id, voting)
        self._emit(VotingEventKind.VOTE_CAST, voting, agent_id, {"choice": choice})

        reason = self._close_reason(voting, now)
        if reason is not None:
            self._close(voting, reason)
        return voting

    def check(self, voting_id: str) -> Voting:
        """Apply the close rules without casting."""
        voting = self.get(voting_id)
        if voting.status == VotingStatus.OPEN:
            reason = self._close_reason(voting, self.clock.now())
            if reason is not None:
                self._close(voting, reason)
        return voting

    def close(self, voting_id: str) -> VotingResults:
        voting = self.get(voting_id)
        if voting.status == VotingStatus.CLOSED:
            assert voting.results is not None
            return voting.results
        return self._close(voting, CloseReason.MANUAL)

    def sweep(self) -> int:
        """Close every open voting past its expiry."""
        now = self.clock.now()
        closed = 0
        for voting in self.list_votings(VotingStatus.OPEN):
            try:
                if now > voting.expires_at:
                    self._close(voting, CloseReason.EXPIRED)
                    closed += 1
            except Exception:
                logger.exception("Failed to close expired voting %s", voting.id)
        return closed

    def get_stats(self) -> dict[str, Any]:
        votings = self._votings.values()
        return {
            "total_votings": len(votings),
            "open": sum(1 for v in votings if v.status == VotingStatus.OPEN),
            "closed": sum(1 for v in votings if v.status == VotingStatus.CLOSED),
            "ballots": sum(len(v.ballots) for v in votings),
        }

    # ── Internals ────────────────────────────────────────────────────────

    def _close_reason(self, voting: Voting, now: float) -> CloseReason | None:
        if now > voting.expires_at:
            return CloseReason.EXPIRED
        eligible = len(voting.eligible_voters)
        if not eligible:
            return None
        received = len(voting.ballots)
        if received >= eligible:
            return CloseReason.FULL_PARTICIPATION
        if received >= math.ceil(self.early_majority_turnout * eligible):
            leader = max(voting.tally().values())
            if leader > received / 2:
                return CloseReason.EARLY_MAJORITY
        return None

    def _close(self, voting: Voting, reason: CloseReason) -> VotingResults:
        now = self.clock.now()
        counts = voting.tally()
        received = len(voting.ballots)

        top_choice: str | None = None
        top_count = 0
        for choice in voting.choices:
            if counts[choice] > top_count:
                top_choice = choice
                top_count = counts[choice]
        tied = received > 0 and sum(1 for c in counts.values() if c == top_count) > 1

        eligible = len(voting.eligible_voters)
        results = VotingResults(
            top_choice=top_choice,
            counts=counts,
            votes_received=received,
            total_eligible=eligible,
            participation_rate=received / eligible if eligible else 0.0,
            consensus_level=top_count / received if received else 0.0,
            tied=tied,
            close_reason=reason,
            closed_at=now,
        )
        voting.status = VotingStatus.CLOSED
        voting.results = results
        self._votings.put(voting.id, voting)

        logger.info(
            "Voting %s closed (%s): top choice %s with %d/%d",
            voting.id,
            reason.value,
            top_choice,
            top_count,
            received,
        )
        self._emit(VotingEventKind.CLOSED, voting, None, results.to_dict())
        if received and results.consensus_level >= self.consensus_threshold:
            self._emit(
                VotingEventKind.CONSENSUS_REACHED,
                voting,
                None,
                {"top_choice": top_choice, "consensus_level": results.consensus_level},
            )

        # Hooks run after the state change and cannot undo it
        for hook in self._hooks.pop(voting.id, []):
            try:
                hook(voting)
            except Exception:
                logger.exception("Close hook failed for voting %s", voting.id)
        return results

    def _emit(
        self,
        kind: VotingEventKind,
        voting: Voting,
        agent_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.publish(
            VotingEvent(
                kind=kind,
                timestamp=self.clock.now(),
                voting_id=voting.id,
                topic_text=voting.topic,
                agent_id=agent_id,
                details=details or {},
            )
        )
