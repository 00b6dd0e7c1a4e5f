"""
Typed lifecycle events and the bus that carries them.

Each component publishes one frozen dataclass family, tagged with a ``kind``
enum. Subscribers register for an event class (or ``Event`` for everything)
and optionally a subset of kinds. A failing subscriber is logged and skipped;
publishing never raises.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, TypeVar

logger = logging.getLogger(__name__)


class AdvertisementEventKind(StrEnum):
    BROADCAST = "advertisement_broadcast"
    UPDATED = "advertisement_updated"
    EXPIRED = "advertisement_expired"
    CAPABILITY_ADDED = "capability_added"
    CAPABILITY_REMOVED = "capability_removed"
    CAPABILITY_UPDATED = "capability_updated"


class CapabilityEventKind(StrEnum):
    REGISTERED = "capability_registered"


class InquiryEventKind(StrEnum):
    CREATED = "inquiry_created"
    RESPONSE_RECEIVED = "inquiry_response_received"
    EXPIRED = "inquiry_expired"


class RecruitmentEventKind(StrEnum):
    INQUIRY_SENT = "inquiry_sent"
    INQUIRY_ANSWERED = "inquiry_answered"
    PROPOSAL_SENT = "proposal_sent"
    COUNTER_PROPOSAL_RECEIVED = "counter_proposal_received"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    RECRUITMENT_EXPIRED = "recruitment_expired"
    RECRUITMENT_CANCELLED = "recruitment_cancelled"
    COMMITMENT_CREATED = "commitment_created"


class ContractEventKind(StrEnum):
    CREATED = "contract_created"
    SIGNED = "contract_signed"
    ACTIVATED = "contract_activated"
    COMPLETED = "contract_completed"
    TERMINATED = "contract_terminated"
    PERFORMANCE_REPORTED = "performance_reported"


class VotingEventKind(StrEnum):
    CREATED = "voting_created"
    VOTE_CAST = "vote_cast"
    CLOSED = "voting_closed"
    CONSENSUS_REACHED = "consensus_reached"


class BreakdownEventKind(StrEnum):
    INITIATED = "breakdown_initiated"
    UPDATED = "breakdown_updated"
    VOTING_STARTED = "breakdown_voting_started"
    APPROVED = "breakdown_approved"
    REJECTED = "breakdown_rejected"


class TaskEventKind(StrEnum):
    CREATED = "task_created"
    TEAM_FORMED = "team_formed"
    STATUS_CHANGED = "task_status_changed"
    SUBTASK_DELEGATED = "subtask_delegated"


@dataclass(frozen=True, kw_only=True)
class Event:
    """Base of every event family."""

    TOPIC: ClassVar[str] = "event"

    timestamp: float
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def topic(self) -> str:
        return self.TOPIC

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["topic"] = self.TOPIC
        return data


@dataclass(frozen=True, kw_only=True)
class CapabilityEvent(Event):
    TOPIC: ClassVar[str] = "capability"

    kind: CapabilityEventKind
    capability: str
    provider_id: str


@dataclass(frozen=True, kw_only=True)
class AdvertisementEvent(Event):
    TOPIC: ClassVar[str] = "advertisement"

    kind: AdvertisementEventKind
    advertisement_id: str
    agent_id: str
    capability: str | None = None


@dataclass(frozen=True, kw_only=True)
class InquiryEvent(Event):
    TOPIC: ClassVar[str] = "inquiry"

    kind: InquiryEventKind
    inquiry_id: str
    agent_id: str
    capability: str


@dataclass(frozen=True, kw_only=True)
class RecruitmentEvent(Event):
    TOPIC: ClassVar[str] = "recruitment"

    kind: RecruitmentEventKind
    record_id: str
    task_id: str
    recruiter_id: str
    target_agent_id: str


@dataclass(frozen=True, kw_only=True)
class ContractEvent(Event):
    TOPIC: ClassVar[str] = "contract"

    kind: ContractEventKind
    contract_id: str
    task_id: str
    team_id: str
    agent_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class VotingEvent(Event):
    TOPIC: ClassVar[str] = "voting"

    kind: VotingEventKind
    voting_id: str
    topic_text: str
    agent_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class BreakdownEvent(Event):
    TOPIC: ClassVar[str] = "breakdown"

    kind: BreakdownEventKind
    breakdown_id: str
    task_id: str
    agent_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class TaskEvent(Event):
    TOPIC: ClassVar[str] = "task"

    kind: TaskEventKind
    task_id: str


E = TypeVar("E", bound=Event)


@dataclass
class _Subscription:
    subscription_id: str
    event_type: type[Event]
    callback: Callable[[Any], None]
    kinds: frozenset[str] | None


class EventBus:
    """In-process publish/subscribe channel for lifecycle events."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self.published_count = 0
        self.failed_deliveries = 0

    def subscribe(
        self,
        event_type: type[E],
        callback: Callable[[E], None],
        kinds: set[str] | None = None,
    ) -> str:
        """Register a callback; returns the subscription id."""
        subscription_id = f"sub-{uuid.uuid4().hex[:8]}"
        self._subscriptions[subscription_id] = _Subscription(
            subscription_id=subscription_id,
            event_type=event_type,
            callback=callback,
            kinds=frozenset(str(k) for k in kinds) if kinds else None,
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    def publish(self, event: Event) -> int:
        """Deliver an event to matching subscribers. Returns the delivery count."""
        self.published_count += 1
        kind = getattr(event, "kind", None)
        delivered = 0
        for sub in list(self._subscriptions.values()):
            if not isinstance(event, sub.event_type):
                continue
            if sub.kinds is not None and (kind is None or str(kind) not in sub.kinds):
                continue
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                self.failed_deliveries += 1
                logger.exception(
                    "Event subscriber %s failed on %s", sub.subscription_id, kind or event.topic
                )
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
