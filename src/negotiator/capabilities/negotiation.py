"""
Capability Negotiation: Point-to-Point Inquiry/Response

Short-lived questions of the form "can you do X right now?". Responses are
accumulated until the deadline; the result picks the best available responder
by commitment level, then confidence. Expired inquiries are discarded by the
sweep.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import EventBus, InquiryEvent, InquiryEventKind
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import ExpiredError, NotFoundError, ValidationError, coerce_enum

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_DEADLINE = 30.0


class CommitmentLevel(StrEnum):
    TENTATIVE = "tentative"
    FIRM = "firm"
    GUARANTEED = "guaranteed"


COMMITMENT_RANK = {
    CommitmentLevel.GUARANTEED: 2,
    CommitmentLevel.FIRM: 1,
    CommitmentLevel.TENTATIVE: 0,
}


@dataclass
class CapabilityInquiry:
    inquiry_id: str
    from_agent_id: str
    capability: str
    priority: int
    response_deadline: float
    created_at: float
    context: dict[str, Any] = field(default_factory=dict)
    team_context: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now > self.response_deadline


@dataclass
class CapabilityInquiryResponse:
    inquiry_id: str
    from_agent_id: str
    available: bool
    confidence_level: float = 0.0
    estimated_completion: float | None = None
    constraints: list[str] = field(default_factory=list)
    alternative_capabilities: list[str] = field(default_factory=list)
    commitment_level: CommitmentLevel | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_level <= 1.0:
            raise ValidationError(
                f"confidence_level must be in [0.0, 1.0], got {self.confidence_level}"
            )
        if self.commitment_level is not None:
            self.commitment_level = coerce_enum(
                CommitmentLevel, self.commitment_level, "commitment_level"
            )

    @property
    def commitment_rank(self) -> int:
        if self.commitment_level is None:
            return 0
        return COMMITMENT_RANK[self.commitment_level]


@dataclass
class NegotiationResult:
    inquiry_id: str
    success: bool
    selected_provider: str | None = None
    selected_response: CapabilityInquiryResponse | None = None
    available: list[CapabilityInquiryResponse] = field(default_factory=list)
    unavailable: list[CapabilityInquiryResponse] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inquiry_id": self.inquiry_id,
            "success": self.success,
            "selected_provider": self.selected_provider,
            "available": [r.from_agent_id for r in self.available],
            "unavailable": [r.from_agent_id for r in self.unavailable],
        }


class CapabilityNegotiator:
    """Manages pending capability inquiries and their responses."""

    def __init__(
        self,
        registry: CapabilityRegistry | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        default_deadline: float = DEFAULT_RESPONSE_DEADLINE,
        inquiries: KeyValueStore[str, CapabilityInquiry] | None = None,
    ) -> None:
        self.registry = registry
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.default_deadline = default_deadline
        self._inquiries: KeyValueStore[str, CapabilityInquiry] = inquiries or MemoryStore()
        self._responses: dict[str, list[CapabilityInquiryResponse]] = {}

    def create_inquiry(
        self,
        from_agent_id: str,
        capability: str,
        context: dict[str, Any] | None = None,
        team_context: dict[str, Any] | None = None,
        priority: int = 5,
        response_deadline: float | None = None,
    ) -> CapabilityInquiry:
        if not from_agent_id or not capability:
            raise ValidationError("from_agent_id and capability are required")
        deadline = self.default_deadline if response_deadline is None else response_deadline
        if deadline <= 0:
            raise ValidationError(f"response_deadline must be > 0, got {deadline}")
        if self.registry is not None and not self.registry.has_capability(capability):
            logger.debug("Inquiry for unregistered capability %s", capability)

        now = self.clock.now()
        inquiry = CapabilityInquiry(
            inquiry_id=f"inquiry-{uuid.uuid4().hex[:12]}",
            from_agent_id=from_agent_id,
            capability=capability,
            priority=priority,
            response_deadline=now + deadline,
            created_at=now,
            context=dict(context or {}),
            team_context=dict(team_context or {}),
        )
        self._inquiries.put(inquiry.inquiry_id, inquiry)
        self._responses[inquiry.inquiry_id] = []
        self._emit(InquiryEventKind.CREATED, inquiry, from_agent_id)
        return inquiry

    def get_inquiry(self, inquiry_id: str) -> CapabilityInquiry:
        inquiry = self._inquiries.get(inquiry_id)
        if inquiry is None:
            raise NotFoundError("Unknown inquiry", inquiry_id=inquiry_id)
        return inquiry

    def process_response(self, response: CapabilityInquiryResponse) -> None:
        """Attach a response to a live inquiry."""
        inquiry = self.get_inquiry(response.inquiry_id)
        if inquiry.is_expired(self.clock.now()):
            raise ExpiredError("Inquiry deadline has passed", inquiry_id=response.inquiry_id)
        self._responses[inquiry.inquiry_id].append(response)
        self._emit(InquiryEventKind.RESPONSE_RECEIVED, inquiry, response.from_agent_id)

    def get_responses(self, inquiry_id: str) -> list[CapabilityInquiryResponse]:
        self.get_inquiry(inquiry_id)
        return list(self._responses.get(inquiry_id, []))

    def get_result(self, inquiry_id: str) -> NegotiationResult:
        responses = self.get_responses(inquiry_id)
        available = [r for r in responses if r.available]
        unavailable = [r for r in responses if not r.available]
        if not available:
            return NegotiationResult(inquiry_id, success=False, unavailable=unavailable)

        # Newest first so a responder's latest answer wins ties
        ranked = sorted(
            reversed(available),
            key=lambda r: (r.commitment_rank, r.confidence_level),
            reverse=True,
        )
        best = ranked[0]
        return NegotiationResult(
            inquiry_id,
            success=True,
            selected_provider=best.from_agent_id,
            selected_response=best,
            available=ranked,
            unavailable=unavailable,
        )

    def sweep(self) -> int:
        """Drop expired inquiries and their responses."""
        now = self.clock.now()
        removed = 0
        for inquiry_id, inquiry in self._inquiries.items():
            try:
                if not inquiry.is_expired(now):
                    continue
                self._inquiries.delete(inquiry_id)
                self._responses.pop(inquiry_id, None)
                self._emit(InquiryEventKind.EXPIRED, inquiry, inquiry.from_agent_id)
                removed += 1
            except Exception:
                logger.exception("Failed to sweep inquiry %s", inquiry_id)
        if removed:
            logger.info("Inquiry sweep: %d expired inquiries removed", removed)
        return removed

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending_inquiries": len(self._inquiries),
            "responses": sum(len(r) for r in self._responses.values()),
        }

    def _emit(self, kind: InquiryEventKind, inquiry: CapabilityInquiry, agent_id: str) -> None:
        self.events.publish(
            InquiryEvent(
                kind=kind,
                timestamp=self.clock.now(),
                inquiry_id=inquiry.inquiry_id,
                agent_id=agent_id,
                capability=inquiry.capability,
            )
        )
