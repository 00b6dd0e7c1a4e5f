"""
Recruitment Protocol Models

Tagged messages exchanged while recruiting an agent onto a team, the
per-(task, agent) recruitment record, commitments and team contracts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.errors import ValidationError


class RecruitmentStatus(StrEnum):
    INQUIRY_SENT = "inquiry_sent"
    PROPOSAL_SENT = "proposal_sent"
    COUNTER_PROPOSED = "counter_proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        RecruitmentStatus.ACCEPTED,
        RecruitmentStatus.REJECTED,
        RecruitmentStatus.EXPIRED,
        RecruitmentStatus.CANCELLED,
    }
)


class MessageType(StrEnum):
    INQUIRY = "recruitment_inquiry"
    INQUIRY_RESPONSE = "recruitment_inquiry_response"
    PROPOSAL = "recruitment_proposal"
    COUNTER_PROPOSAL = "counter_proposal"
    ACCEPTANCE = "acceptance"
    REJECTION = "rejection"


class CommitmentType(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    TENTATIVE = "tentative"


class ContractStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


@dataclass
class Compensation:
    type: str = "credits"
    value: float = 0.0


@dataclass
class RecruitmentInquiry:
    id: str
    task_id: str
    recruiter_id: str
    target_agent_id: str
    required_capabilities: list[str]
    timestamp: float
    expires_at: float
    team_id: str | None = None
    priority: int = 5
    message: str = ""
    type: MessageType = MessageType.INQUIRY


@dataclass
class InquiryResponse:
    inquiry_id: str
    agent_id: str
    interested: bool
    timestamp: float
    available_capabilities: list[str] = field(default_factory=list)
    availability: float = 1.0
    message: str = ""
    type: MessageType = MessageType.INQUIRY_RESPONSE


@dataclass
class RecruitmentProposal:
    id: str
    task_id: str
    recruiter_id: str
    target_agent_id: str
    role: str
    responsibilities: list[str]
    required_capabilities: list[str]
    expected_contribution: str
    expected_duration: float
    timestamp: float
    expires_at: float
    team_id: str | None = None
    compensation: Compensation | None = None
    supersedes: str | None = None
    type: MessageType = MessageType.PROPOSAL

    def __post_init__(self) -> None:
        if not self.role:
            raise ValidationError("proposal role is required")
        if self.expected_duration < 0:
            raise ValidationError(
                f"expected_duration must be >= 0, got {self.expected_duration}"
            )

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "team_id": self.team_id,
            "recruiter_id": self.recruiter_id,
            "target_agent_id": self.target_agent_id,
            "role": self.role,
            "responsibilities": list(self.responsibilities),
            "required_capabilities": list(self.required_capabilities),
            "expected_contribution": self.expected_contribution,
            "expected_duration": self.expected_duration,
            "compensation": (
                {"type": self.compensation.type, "value": self.compensation.value}
                if self.compensation
                else None
            ),
            "expires_at": self.expires_at,
            "supersedes": self.supersedes,
        }


@dataclass
class ModifiedTerm:
    name: str
    original_value: Any
    proposed_value: Any
    justification: str = ""


@dataclass
class CounterProposal:
    id: str
    original_proposal_id: str
    sender_id: str
    timestamp: float
    expires_at: float
    modified_terms: list[ModifiedTerm] = field(default_factory=list)
    changes: dict[str, bool] = field(default_factory=dict)
    justification: str = ""
    type: MessageType = MessageType.COUNTER_PROPOSAL

    def term(self, name: str) -> ModifiedTerm | None:
        for term in self.modified_terms:
            if term.name == name:
                return term
        return None


@dataclass
class Acceptance:
    proposal_id: str
    agent_id: str
    timestamp: float
    commitment_level: str = "firm"
    message: str = ""
    type: MessageType = MessageType.ACCEPTANCE


@dataclass
class Rejection:
    proposal_id: str | None
    agent_id: str
    timestamp: float
    reason: str = ""
    type: MessageType = MessageType.REJECTION


@dataclass
class Commitment:
    id: str
    record_id: str
    task_id: str
    agent_id: str
    proposal_id: str
    role: str
    commitment_type: CommitmentType
    responsibilities: list[str]
    created_at: float


@dataclass
class HistoryEntry:
    timestamp: float
    status: str
    message: str = ""


@dataclass
class RecruitmentRecord:
    """Protocol state for one (task, target agent) pair."""

    id: str
    task_id: str
    recruiter_id: str
    target_agent_id: str
    status: RecruitmentStatus
    created_at: float
    updated_at: float
    expires_at: float
    team_id: str | None = None
    inquiry: RecruitmentInquiry | None = None
    inquiry_response: InquiryResponse | None = None
    proposal: RecruitmentProposal | None = None
    counter_proposal: CounterProposal | None = None
    acceptance: Acceptance | None = None
    rejection: Rejection | None = None
    commitment: Commitment | None = None
    history: list[HistoryEntry] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "team_id": self.team_id,
            "recruiter_id": self.recruiter_id,
            "target_agent_id": self.target_agent_id,
            "status": self.status.value,
            "proposal": self.proposal.to_dict() if self.proposal else None,
            "commitment": self.commitment.commitment_type.value if self.commitment else None,
            "expires_at": self.expires_at,
            "history": [
                {"timestamp": h.timestamp, "status": h.status, "message": h.message}
                for h in self.history
            ],
        }


@dataclass
class ContractParticipant:
    agent_id: str
    role: str
    responsibilities: list[str] = field(default_factory=list)
    required_capabilities: list[str] = field(default_factory=list)
    expected_deliverables: list[str] = field(default_factory=list)


@dataclass
class ContractTerms:
    start_time: float
    end_time: float | None = None
    deadline: float | None = None
    grace_period: float = 0.0

    def __post_init__(self) -> None:
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValidationError("contract end_time precedes start_time")
        if self.grace_period < 0:
            raise ValidationError(f"grace_period must be >= 0, got {self.grace_period}")


@dataclass
class StatusChange:
    status: ContractStatus
    timestamp: float
    updated_by: str
    reason: str = ""


@dataclass
class PerformanceReport:
    agent_id: str
    timestamp: float
    overall_score: float
    completion: float
    status: str = "on_track"
    summary: str = ""

    def __post_init__(self) -> None:
        for name in ("overall_score", "completion"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"{name} must be in [0.0, 1.0], got {value}")


@dataclass
class TeamContract:
    contract_id: str
    task_id: str
    team_id: str
    name: str
    description: str
    created_by: str
    created_at: float
    participants: list[ContractParticipant]
    terms: ContractTerms
    expected_outcomes: list[str] = field(default_factory=list)
    status: ContractStatus = ContractStatus.DRAFT
    status_history: list[StatusChange] = field(default_factory=list)
    signatures: dict[str, float] = field(default_factory=dict)
    reports: list[PerformanceReport] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def participant_ids(self) -> list[str]:
        return [p.agent_id for p in self.participants]

    @property
    def fully_signed(self) -> bool:
        return all(p in self.signatures for p in self.participant_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_id": self.contract_id,
            "task_id": self.task_id,
            "team_id": self.team_id,
            "name": self.name,
            "participants": [
                {
                    "agent_id": p.agent_id,
                    "role": p.role,
                    "responsibilities": list(p.responsibilities),
                    "required_capabilities": list(p.required_capabilities),
                    "expected_deliverables": list(p.expected_deliverables),
                }
                for p in self.participants
            ],
            "terms": {
                "start_time": self.terms.start_time,
                "end_time": self.terms.end_time,
                "deadline": self.terms.deadline,
            },
            "expected_outcomes": list(self.expected_outcomes),
            "status": self.status.value,
            "status_history": [
                {"status": s.status.value, "timestamp": s.timestamp, "updated_by": s.updated_by}
                for s in self.status_history
            ],
            "signatures": dict(self.signatures),
        }
