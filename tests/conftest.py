"""Shared fixtures: manual clock, wired runtime and scripted agents."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from negotiator.capabilities.models import Capability
from negotiator.capabilities.negotiation import CapabilityInquiryResponse
from negotiator.config import Settings
from negotiator.core.clock import ManualClock
from negotiator.facilitator.agent import (
    AgentRequest,
    CapabilityInquiryRequest,
    ContractSignatureRequest,
    ExecuteSubtaskRequest,
    InquiryAnswer,
    ProposalAnswer,
    ProposalDecision,
    ProposalRequest,
    RecruitmentInquiryRequest,
    SignatureAnswer,
    SubtaskOutcome,
    VoteAnswer,
    VoteRequest,
)
from negotiator.recruitment.resolution import AgentPreferences, generate_counter_proposal
from negotiator.runtime import Runtime, build_runtime


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def runtime(clock: ManualClock, tmp_path: Path) -> Runtime:
    return build_runtime(settings=Settings(data_dir=tmp_path), clock=clock)


class ScriptedAgent:
    """Agent whose answers are fixed up front."""

    def __init__(
        self,
        agent_id: str,
        capabilities: list[str],
        *,
        clock: ManualClock,
        interested: bool = True,
        decision: ProposalAnswer = ProposalAnswer.ACCEPT,
        commitment_level: str = "firm",
        counter_rounds: int = 0,
        preferences: AgentPreferences | None = None,
        vote: str | None = None,
        sign: bool = True,
        succeed: bool = True,
        confidence: float = 0.8,
        commitment: str | None = "firm",
        available: bool = True,
        delay: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.agent_id = agent_id
        self.name = agent_id.upper()
        self._capabilities = capabilities
        self.clock = clock
        self.interested = interested
        self.decision = decision
        self.commitment_level = commitment_level
        self.counter_rounds = counter_rounds
        self.preferences = preferences or AgentPreferences(preferred_duration=1800)
        self.vote = vote
        self.sign = sign
        self.succeed = succeed
        self.confidence = confidence
        self.commitment = commitment
        self.available = available
        self.delay = delay
        self.fail = fail
        self.received: list[AgentRequest] = []
        self.counters_sent = 0

    def capabilities(self) -> list[Capability]:
        return [Capability(name=name) for name in self._capabilities]

    async def handle(self, request: AgentRequest) -> Any:
        self.received.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{self.agent_id} crashed")

        if isinstance(request, RecruitmentInquiryRequest):
            return InquiryAnswer(
                interested=self.interested,
                available_capabilities=list(request.capabilities),
                message="" if self.interested else "busy",
            )
        if isinstance(request, ProposalRequest):
            if self.counters_sent < self.counter_rounds:
                self.counters_sent += 1
                counter = generate_counter_proposal(
                    request.proposal, self.preferences, self.clock.now()
                )
                return ProposalDecision(ProposalAnswer.COUNTER, counter=counter)
            return ProposalDecision(
                self.decision, commitment_level=self.commitment_level, reason="not for me"
            )
        if isinstance(request, CapabilityInquiryRequest):
            return CapabilityInquiryResponse(
                inquiry_id=request.inquiry.inquiry_id,
                from_agent_id=self.agent_id,
                available=self.available,
                confidence_level=self.confidence,
                commitment_level=self.commitment,
            )
        if isinstance(request, VoteRequest):
            return VoteAnswer(self.vote or request.choices[0])
        if isinstance(request, ContractSignatureRequest):
            return SignatureAnswer(signed=self.sign, reason="" if self.sign else "terms unclear")
        if isinstance(request, ExecuteSubtaskRequest):
            return SubtaskOutcome(
                subtask_id=request.subtask.id,
                agent_id=self.agent_id,
                success=self.succeed,
                output=f"done {request.subtask.id}" if self.succeed else None,
                error="" if self.succeed else "failed",
            )
        return None


@pytest.fixture
def make_agent(clock: ManualClock) -> Callable[..., ScriptedAgent]:
    def factory(agent_id: str, capabilities: list[str], **kwargs: Any) -> ScriptedAgent:
        return ScriptedAgent(agent_id, capabilities, clock=clock, **kwargs)

    return factory
