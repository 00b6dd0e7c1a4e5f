"""Recruitment protocol, conflict resolution and team contracts."""

from negotiator.recruitment.contracts import TeamContractManager
from negotiator.recruitment.engine import RecruitmentEngine
from negotiator.recruitment.models import (
    Commitment,
    CommitmentType,
    Compensation,
    ContractParticipant,
    ContractStatus,
    ContractTerms,
    CounterProposal,
    ModifiedTerm,
    RecruitmentProposal,
    RecruitmentRecord,
    RecruitmentStatus,
    TeamContract,
)
from negotiator.recruitment.resolution import (
    AgentPreferences,
    AgentProfile,
    ResolutionPreferences,
    ResolutionResult,
    ResolutionStrategy,
    TaskRequirements,
    calculate_utility,
    generate_counter_proposal,
    resolve_conflicts,
)

__all__ = [
    "AgentPreferences",
    "AgentProfile",
    "Commitment",
    "CommitmentType",
    "Compensation",
    "ContractParticipant",
    "ContractStatus",
    "ContractTerms",
    "CounterProposal",
    "ModifiedTerm",
    "RecruitmentEngine",
    "RecruitmentProposal",
    "RecruitmentRecord",
    "RecruitmentStatus",
    "ResolutionPreferences",
    "ResolutionResult",
    "ResolutionStrategy",
    "TaskRequirements",
    "TeamContractManager",
    "calculate_utility",
    "generate_counter_proposal",
    "resolve_conflicts",
]
