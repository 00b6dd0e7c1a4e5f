"""Consensus voting."""

from negotiator.consensus.voting import (
    Ballot,
    CloseReason,
    Voting,
    VotingEngine,
    VotingResults,
    VotingStatus,
)

__all__ = [
    "Ballot",
    "CloseReason",
    "Voting",
    "VotingEngine",
    "VotingResults",
    "VotingStatus",
]
