"""
Agent Protocol and Requests

The facilitator talks to agents only through ``Agent.handle``. Every request
is a tagged dataclass; each names the answer type it expects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, Protocol, Union, runtime_checkable

from negotiator.breakdown.models import SubtaskDefinition
from negotiator.capabilities.models import Capability
from negotiator.capabilities.negotiation import CapabilityInquiry
from negotiator.recruitment.models import CounterProposal, RecruitmentProposal, TeamContract


class RequestType(StrEnum):
    RECRUITMENT_INQUIRY = "recruitment_inquiry"
    PROPOSAL = "proposal"
    CAPABILITY_INQUIRY = "capability_inquiry"
    VOTE = "vote"
    CONTRACT_SIGNATURE = "contract_signature"
    EXECUTE_SUBTASK = "execute_subtask"


class ProposalAnswer(StrEnum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


# ═══════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RecruitmentInquiryRequest:
    TYPE: ClassVar[RequestType] = RequestType.RECRUITMENT_INQUIRY

    record_id: str
    task_id: str
    recruiter_id: str
    capabilities: list[str]
    priority: int = 5


@dataclass(frozen=True)
class ProposalRequest:
    TYPE: ClassVar[RequestType] = RequestType.PROPOSAL

    record_id: str
    proposal: RecruitmentProposal


@dataclass(frozen=True)
class CapabilityInquiryRequest:
    TYPE: ClassVar[RequestType] = RequestType.CAPABILITY_INQUIRY

    inquiry: CapabilityInquiry


@dataclass(frozen=True)
class VoteRequest:
    TYPE: ClassVar[RequestType] = RequestType.VOTE

    voting_id: str
    topic: str
    choices: list[str]
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContractSignatureRequest:
    TYPE: ClassVar[RequestType] = RequestType.CONTRACT_SIGNATURE

    contract: TeamContract


@dataclass(frozen=True)
class ExecuteSubtaskRequest:
    TYPE: ClassVar[RequestType] = RequestType.EXECUTE_SUBTASK

    task_id: str
    subtask: SubtaskDefinition


AgentRequest = Union[
    RecruitmentInquiryRequest,
    ProposalRequest,
    CapabilityInquiryRequest,
    VoteRequest,
    ContractSignatureRequest,
    ExecuteSubtaskRequest,
]


# ═══════════════════════════════════════════════════════════════════════════
# ANSWERS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class InquiryAnswer:
    interested: bool
    available_capabilities: list[str] = field(default_factory=list)
    availability: float = 1.0
    message: str = ""


@dataclass
class ProposalDecision:
    decision: ProposalAnswer
    commitment_level: str = "firm"
    reason: str = ""
    counter: CounterProposal | None = None


@dataclass
class VoteAnswer:
    choice: str


@dataclass
class SignatureAnswer:
    signed: bool
    reason: str = ""


@dataclass
class SubtaskOutcome:
    subtask_id: str
    agent_id: str
    success: bool
    output: Any = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtask_id": self.subtask_id,
            "agent_id": self.agent_id,
            "success": self.success,
            "output": self.output,
            "error": self.error,
        }


@runtime_checkable
class Agent(Protocol):
    """Anything the facilitator can recruit, poll and delegate to."""

    agent_id: str
    name: str

    def capabilities(self) -> list[Capability]: ...

    async def handle(self, request: AgentRequest) -> Any: ...
