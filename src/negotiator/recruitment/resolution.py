"""
Negotiation Logic: Utility Scoring, Counter-Proposals, Conflict Resolution

Utility of an agent for a task:
    overall = capability_match * 0.35 + confidence * 0.25 + availability * 0.15
            + team_complementarity * 0.15 (only with a team) + contribution * 0.25

Conflict resolution picks a strategy from the recruiter's priorities
(capabilities, then availability, then team balance, else compromise) and
settles each modified term. A compromise that concedes too little becomes
FIND_ALTERNATIVE, meaning the terms are irreconcilable with this agent.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from negotiator.recruitment.models import (
    Compensation,
    CounterProposal,
    ModifiedTerm,
    RecruitmentProposal,
)

logger = logging.getLogger(__name__)

# Utility weights
CAPABILITY_MATCH_WEIGHT = 0.35
CONFIDENCE_WEIGHT = 0.25
AVAILABILITY_WEIGHT = 0.15
TEAM_WEIGHT = 0.15
CONTRIBUTION_WEIGHT = 0.25

REQUIRED_SHARE = 0.7
DESIRED_SHARE = 0.3

MAX_COUNTER_VALIDITY = 3600.0
COMPENSATION_TOLERANCE = 0.9

NEGOTIABLE_FIELDS = frozenset({"role", "responsibilities", "expected_duration", "compensation"})


class ResolutionStrategy(StrEnum):
    COMPROMISE = "compromise"
    PRIORITIZE_CAPABILITY_MATCH = "prioritize_capability_match"
    PRIORITIZE_AVAILABILITY = "prioritize_availability"
    PRIORITIZE_TEAM_BALANCE = "prioritize_team_balance"
    FIND_ALTERNATIVE = "find_alternative"


@dataclass
class AgentProfile:
    agent_id: str
    capabilities: list[str]
    confidence_scores: dict[str, float] = field(default_factory=dict)
    load: float = 0.0  # 0 idle, 1 saturated
    specializations: list[str] = field(default_factory=list)
    recent_success_rate: float = 0.5


@dataclass
class TaskRequirements:
    required_capabilities: list[str]
    desired_capabilities: list[str] = field(default_factory=list)
    priority: int = 5  # 1-10


@dataclass
class UtilityScore:
    overall_score: float
    capability_match: float
    confidence_adjustment: float
    availability_match: float
    expected_contribution: float
    team_complementarity: float | None = None
    explanation: str = ""


@dataclass
class AgentPreferences:
    preferred_role: str | None = None
    preferred_responsibilities: list[str] = field(default_factory=list)
    preferred_duration: float | None = None
    minimum_compensation: Compensation | None = None


@dataclass
class ResolutionPreferences:
    prioritize_capabilities: bool = True
    prioritize_availability: bool = False
    prioritize_team_balance: bool = False
    acceptable_compromise_threshold: float = 0.7


@dataclass
class ResolutionResult:
    strategy: ResolutionStrategy
    proposal: RecruitmentProposal
    explanation: str
    compromise_ratio: float
    compromise_details: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.strategy != ResolutionStrategy.FIND_ALTERNATIVE


def calculate_utility(
    agent: AgentProfile,
    task: TaskRequirements,
    team: list[list[str]] | None = None,
) -> UtilityScore:
    """Score how useful ``agent`` is for ``task``, optionally given a team's capability sets."""
    owned = set(agent.capabilities)
    required = set(task.required_capabilities)
    desired = set(task.desired_capabilities)

    required_matches = len(required & owned)
    desired_matches = len(desired & owned)
    required_ratio = required_matches / len(required) if required else 1.0
    desired_ratio = desired_matches / len(desired) if desired else 1.0
    capability_match = required_ratio * REQUIRED_SHARE + desired_ratio * DESIRED_SHARE

    confidence_sum = 0.0
    weight_sum = 0.0
    for cap in required & owned:
        if agent.confidence_scores.get(cap):
            confidence_sum += agent.confidence_scores[cap]
            weight_sum += 1.0
    for cap in desired & owned:
        if agent.confidence_scores.get(cap):
            confidence_sum += agent.confidence_scores[cap] * 0.5
            weight_sum += 0.5
    confidence = confidence_sum / weight_sum if weight_sum else 0.5

    availability = (1 - agent.load) * (task.priority / 10)

    complementarity: float | None = None
    if team is not None:
        complementarity = 0.5
        team_caps = {cap for member in team for cap in member}
        if team_caps and agent.capabilities:
            unique = sum(1 for cap in agent.capabilities if cap not in team_caps)
            complementarity = min(unique / len(agent.capabilities), 1.0) if unique else 0.2

    wanted = required | desired
    specialized = any(spec in wanted for spec in agent.specializations)
    contribution = agent.recent_success_rate * 0.4 + (0.6 if specialized else 0.3)

    overall = (
        capability_match * CAPABILITY_MATCH_WEIGHT
        + confidence * CONFIDENCE_WEIGHT
        + availability * AVAILABILITY_WEIGHT
        + (complementarity * TEAM_WEIGHT if complementarity is not None else 0.0)
        + contribution * CONTRIBUTION_WEIGHT
    )
    explanation = (
        f"Agent {agent.agent_id} matches {required_matches}/{len(required)} required and "
        f"{desired_matches}/{len(desired)} desired capabilities "
        f"({capability_match:.0%}); confidence {confidence:.0%}, "
        f"availability {1 - agent.load:.0%}."
    )
    return UtilityScore(
        overall_score=overall,
        capability_match=capability_match,
        confidence_adjustment=confidence,
        availability_match=availability,
        expected_contribution=contribution,
        team_complementarity=complementarity,
        explanation=explanation,
    )


def generate_counter_proposal(
    proposal: RecruitmentProposal,
    preferences: AgentPreferences,
    now: float,
) -> CounterProposal:
    """Build the target agent's counter-proposal from its preferences."""
    terms: list[ModifiedTerm] = []

    if preferences.preferred_role and preferences.preferred_role != proposal.role:
        terms.append(
            ModifiedTerm(
                name="role",
                original_value=proposal.role,
                proposed_value=preferences.preferred_role,
                justification=f"Agent specializes in {preferences.preferred_role} roles",
            )
        )

    if preferences.preferred_responsibilities:
        wanted = preferences.preferred_responsibilities
        to_add = [r for r in wanted if r not in proposal.responsibilities]
        kept = [r for r in proposal.responsibilities if r in wanted]
        if to_add or len(kept) != len(proposal.responsibilities):
            terms.append(
                ModifiedTerm(
                    name="responsibilities",
                    original_value=list(proposal.responsibilities),
                    proposed_value=kept + to_add,
                    justification="Adjusting responsibilities to match agent expertise",
                )
            )

    if (
        preferences.preferred_duration is not None
        and preferences.preferred_duration < proposal.expected_duration
    ):
        terms.append(
            ModifiedTerm(
                name="expected_duration",
                original_value=proposal.expected_duration,
                proposed_value=preferences.preferred_duration,
                justification="Agent can complete the work in less time",
            )
        )

    minimum = preferences.minimum_compensation
    if (
        minimum is not None
        and proposal.compensation is not None
        and minimum.type == proposal.compensation.type
        and minimum.value > proposal.compensation.value
    ):
        terms.append(
            ModifiedTerm(
                name="compensation",
                original_value=proposal.compensation,
                proposed_value=minimum,
                justification="Work requires higher compensation for this expertise",
            )
        )

    validity = max(0.0, min(proposal.expires_at - now, MAX_COUNTER_VALIDITY))
    changed = {t.name for t in terms}
    return CounterProposal(
        id=f"counter-{uuid.uuid4().hex[:12]}",
        original_proposal_id=proposal.id,
        sender_id=proposal.target_agent_id,
        timestamp=now,
        expires_at=now + validity,
        modified_terms=terms,
        changes={
            "role": "role" in changed,
            "responsibilities": "responsibilities" in changed,
            "duration": "expected_duration" in changed,
            "compensation": "compensation" in changed,
        },
        justification="Counter proposal based on agent preferences and capabilities",
    )


def _pick_strategy(preferences: ResolutionPreferences) -> ResolutionStrategy:
    if preferences.prioritize_capabilities:
        return ResolutionStrategy.PRIORITIZE_CAPABILITY_MATCH
    if preferences.prioritize_availability:
        return ResolutionStrategy.PRIORITIZE_AVAILABILITY
    if preferences.prioritize_team_balance:
        return ResolutionStrategy.PRIORITIZE_TEAM_BALANCE
    return ResolutionStrategy.COMPROMISE


def resolve_conflicts(
    proposal: RecruitmentProposal,
    counter: CounterProposal,
    preferences: ResolutionPreferences | None = None,
    now: float | None = None,
) -> ResolutionResult:
    """Settle a counter-proposal's modified terms into a new proposal."""
    preferences = preferences or ResolutionPreferences()
    strategy = _pick_strategy(preferences)
    compromise = strategy == ResolutionStrategy.COMPROMISE

    updates: dict[str, Any] = {}
    details: dict[str, dict[str, Any]] = {}
    conceded = 0.0

    for term in counter.modified_terms:
        if term.name == "role":
            if compromise:
                resolution = term.proposed_value
                reason = "Using the agent's preferred role to keep it engaged"
                conceded += 1
            else:
                resolution = proposal.role
                reason = "Keeping the original role based on team needs"

        elif term.name == "responsibilities":
            original = list(proposal.responsibilities)
            proposed = list(term.proposed_value)
            common = [r for r in original if r in proposed]
            only_original = [r for r in original if r not in proposed]
            only_proposed = [r for r in proposed if r not in original]
            if compromise:
                resolution = (
                    common
                    + only_original[: -(-len(only_original) // 2)]
                    + only_proposed[: -(-len(only_proposed) // 2)]
                )
                reason = "Combining core responsibilities from both sides"
                conceded += 0.5
            else:
                resolution = original + only_proposed[:2]
                reason = "Keeping core responsibilities with some of the agent's additions"

        elif term.name == "expected_duration":
            if compromise:
                resolution = round((proposal.expected_duration + float(term.proposed_value)) / 2)
                reason = "Meeting halfway on duration"
                conceded += 1
            elif strategy == ResolutionStrategy.PRIORITIZE_AVAILABILITY:
                resolution = float(term.proposed_value)
                reason = "Accepting the agent's timeline to favour availability"
                conceded += 1
            else:
                resolution = proposal.expected_duration
                reason = "Keeping the original timeline"

        elif term.name == "compensation":
            original_value = proposal.compensation.value if proposal.compensation else 0.0
            comp_type = proposal.compensation.type if proposal.compensation else "credits"
            proposed_value = getattr(term.proposed_value, "value", 0.0)
            if original_value >= proposed_value * COMPENSATION_TOLERANCE:
                resolution = proposal.compensation
                reason = "Original compensation is within the acceptable range"
            elif compromise:
                resolution = Compensation(
                    comp_type, round(original_value + (proposed_value - original_value) * 0.7)
                )
                reason = "Raising compensation towards the agent's request"
                conceded += 1
            else:
                resolution = Compensation(comp_type, round(original_value * 1.1))
                reason = "Modest compensation increase within budget"
                conceded += 0.5

        else:
            resolution = getattr(proposal, term.name, None)
            reason = f"Keeping the original {term.name}"

        if term.name in NEGOTIABLE_FIELDS:
            updates[term.name] = resolution
        details[term.name] = {
            "recruiter_preference": term.original_value,
            "agent_preference": term.proposed_value,
            "resolution": resolution,
            "reason": reason,
        }

    total = len(counter.modified_terms)
    ratio = conceded / total if total else 0.0
    if compromise and ratio < preferences.acceptable_compromise_threshold:
        logger.info(
            "Compromise ratio %.2f below %.2f, looking for an alternative agent",
            ratio,
            preferences.acceptable_compromise_threshold,
        )
        strategy = ResolutionStrategy.FIND_ALTERNATIVE

    timestamp = counter.timestamp if now is None else now
    merged = replace(
        proposal,
        id=f"proposal-{uuid.uuid4().hex[:12]}",
        timestamp=timestamp,
        supersedes=proposal.id,
        **updates,
    )
    explanation = (
        f"Resolution using {strategy.value} strategy with a compromise ratio of {ratio:.0%}. "
        + " ".join(d["reason"] for d in details.values())
    ).strip()
    return ResolutionResult(
        strategy=strategy,
        proposal=merged,
        explanation=explanation,
        compromise_ratio=ratio,
        compromise_details=details,
    )
