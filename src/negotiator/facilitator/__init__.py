"""Facilitator: drives agents through discovery, recruitment, planning and delegation."""

from negotiator.facilitator.agent import (
    Agent,
    AgentRequest,
    CapabilityInquiryRequest,
    ContractSignatureRequest,
    ExecuteSubtaskRequest,
    InquiryAnswer,
    ProposalAnswer,
    ProposalDecision,
    ProposalRequest,
    RecruitmentInquiryRequest,
    RequestType,
    SignatureAnswer,
    SubtaskOutcome,
    VoteAnswer,
    VoteRequest,
)
from negotiator.facilitator.facilitator import (
    Facilitator,
    Task,
    TaskStatus,
    Team,
    TeamFormationResult,
)

__all__ = [
    "Agent",
    "AgentRequest",
    "CapabilityInquiryRequest",
    "ContractSignatureRequest",
    "ExecuteSubtaskRequest",
    "Facilitator",
    "InquiryAnswer",
    "ProposalAnswer",
    "ProposalDecision",
    "ProposalRequest",
    "RecruitmentInquiryRequest",
    "RequestType",
    "SignatureAnswer",
    "SubtaskOutcome",
    "Task",
    "TaskStatus",
    "Team",
    "TeamFormationResult",
    "VoteAnswer",
    "VoteRequest",
]
