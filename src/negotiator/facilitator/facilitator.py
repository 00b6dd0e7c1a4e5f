"""
Coordinating Facilitator

Drives the negotiation services end to end for a pool of agents:

    create_task -> form_team -> propose_breakdown -> collect_breakdown_votes
                -> delegate_subtask (per subtask)

The facilitator owns no protocol state of its own beyond tasks and teams; every
decision is recorded by the underlying service. Agents are reached only through
``Agent.handle`` with a timeout, and an agent that fails or times out is treated
as having declined.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from negotiator.breakdown.models import BreakdownStatus, TaskBreakdown, TaskSpec
from negotiator.breakdown.service import TaskBreakdownService
from negotiator.capabilities.advertisement import AdvertisementStore
from negotiator.capabilities.models import AdvertisedCapability, Advertisement, Availability
from negotiator.capabilities.negotiation import (
    CapabilityInquiryResponse,
    CapabilityNegotiator,
    NegotiationResult,
)
from negotiator.capabilities.registry import CapabilityRegistry, ProviderSearchResult
from negotiator.consensus.voting import VotingEngine, VotingResults, VotingStatus
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import EventBus, TaskEvent, TaskEventKind
from negotiator.delegation.performance import DelegationPerformanceLedger, PerformanceRecord
from negotiator.delegation.store import PerformanceStore
from negotiator.errors import (
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
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
    SignatureAnswer,
    SubtaskOutcome,
    VoteAnswer,
    VoteRequest,
)
from negotiator.recruitment.contracts import TeamContractManager
from negotiator.recruitment.engine import RecruitmentEngine
from negotiator.recruitment.models import (
    ContractParticipant,
    ContractStatus,
    RecruitmentRecord,
    RecruitmentStatus,
    TeamContract,
)
from negotiator.recruitment.resolution import ResolutionPreferences

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
COMPROMISE_THRESHOLD = 0.6
MAX_NEGOTIATION_ROUNDS = 2
DEFAULT_ROLE_DURATION = 3600.0


class TaskStatus(StrEnum):
    PENDING = "pending"
    TEAM_FORMING = "team_forming"
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Team:
    id: str
    task_id: str
    members: list[str]
    roles: dict[str, str]
    created_at: float
    contract_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "members": list(self.members),
            "roles": dict(self.roles),
            "contract_id": self.contract_id,
        }


@dataclass
class Task:
    id: str
    name: str
    description: str
    required_capabilities: list[str]
    created_by: str
    created_at: float
    priority: int = 5
    status: TaskStatus = TaskStatus.PENDING
    team_id: str | None = None
    breakdown_id: str | None = None
    results: dict[str, SubtaskOutcome] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "required_capabilities": list(self.required_capabilities),
            "created_by": self.created_by,
            "priority": self.priority,
            "status": self.status.value,
            "team_id": self.team_id,
            "breakdown_id": self.breakdown_id,
            "results": {k: v.to_dict() for k, v in self.results.items()},
        }


@dataclass
class TeamFormationResult:
    task_id: str
    search: ProviderSearchResult
    records: list[RecruitmentRecord]
    team: Team | None = None
    contract: TeamContract | None = None

    @property
    def success(self) -> bool:
        return self.contract is not None and self.contract.status == ContractStatus.ACTIVE


class Facilitator:
    """Coordinates agents through discovery, recruitment, planning and delegation."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        advertisements: AdvertisementStore,
        negotiator: CapabilityNegotiator,
        recruitment: RecruitmentEngine,
        contracts: TeamContractManager,
        voting: VotingEngine,
        breakdowns: TaskBreakdownService,
        performance: DelegationPerformanceLedger,
        events: EventBus | None = None,
        clock: Clock | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
        compromise_threshold: float = COMPROMISE_THRESHOLD,
        agent_id: str = "facilitator",
    ) -> None:
        self.registry = registry
        self.advertisements = advertisements
        self.negotiator = negotiator
        self.recruitment = recruitment
        self.contracts = contracts
        self.voting = voting
        self.breakdowns = breakdowns
        self.performance = performance
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self.request_timeout = request_timeout
        self.compromise_threshold = compromise_threshold
        self.agent_id = agent_id
        self.performance_store: PerformanceStore | None = None
        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, Task] = {}
        self._teams: dict[str, Team] = {}

    # ── Agents ───────────────────────────────────────────────────────────

    def register_agent(self, agent: Agent) -> None:
        capabilities = agent.capabilities()
        for capability in capabilities:
            self.registry.register(capability, agent.agent_id)
        self._agents[agent.agent_id] = agent
        logger.info("Registered agent %s with %d capabilities", agent.agent_id, len(capabilities))

    def get_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError("Unknown agent", agent_id=agent_id)
        return agent

    def list_agents(self) -> list[str]:
        return list(self._agents)

    def advertise(
        self,
        agent_id: str,
        capabilities: list[AdvertisedCapability],
        availability: Availability | None = None,
        validity: float | None = None,
    ) -> Advertisement:
        agent = self.get_agent(agent_id)
        return self.advertisements.create(
            agent_id, capabilities, availability, validity=validity, sender_name=agent.name
        )

    # ── Tasks ────────────────────────────────────────────────────────────

    def create_task(
        self,
        name: str,
        description: str,
        required_capabilities: list[str],
        created_by: str | None = None,
        priority: int = 5,
    ) -> Task:
        if not name:
            raise ValidationError("task name is required")
        if not required_capabilities:
            raise ValidationError("a task needs at least one required capability")
        task = Task(
            id=f"task-{uuid.uuid4().hex[:8]}",
            name=name,
            description=description,
            required_capabilities=list(dict.fromkeys(required_capabilities)),
            created_by=created_by or self.agent_id,
            created_at=self.clock.now(),
            priority=priority,
        )
        self._tasks[task.id] = task
        self._emit(TaskEventKind.CREATED, task, {"name": name})
        return task

    def get_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Unknown task", task_id=task_id)
        return task

    def get_team(self, team_id: str) -> Team:
        team = self._teams.get(team_id)
        if team is None:
            raise NotFoundError("Unknown team", team_id=team_id)
        return team

    # ── Capability negotiation ───────────────────────────────────────────

    async def negotiate_capability(
        self,
        from_agent_id: str,
        capability: str,
        context: dict[str, Any] | None = None,
        priority: int = 5,
        response_deadline: float | None = None,
    ) -> NegotiationResult:
        """Ask every other provider of ``capability`` and pick the best answer."""
        inquiry = self.negotiator.create_inquiry(
            from_agent_id,
            capability,
            context=context,
            priority=priority,
            response_deadline=response_deadline,
        )
        providers = [
            self._agents[p]
            for p in self.registry.get_providers(capability)
            if p != from_agent_id and p in self._agents
        ]
        request = CapabilityInquiryRequest(inquiry=inquiry)
        answers = await asyncio.gather(*(self._ask(agent, request) for agent in providers))
        for answer in answers:
            if not isinstance(answer, CapabilityInquiryResponse):
                continue
            try:
                self.negotiator.process_response(answer)
            except ExpiredError:
                logger.warning(
                    "Late response from %s to inquiry %s", answer.from_agent_id, inquiry.inquiry_id
                )
        return self.negotiator.get_result(inquiry.inquiry_id)

    # ── Team formation ───────────────────────────────────────────────────

    async def form_team(
        self, task_id: str, recruiter_id: str | None = None, max_members: int = 5
    ) -> TeamFormationResult:
        """Recruit providers for the task's capabilities and bind them by contract."""
        task = self.get_task(task_id)
        if task.status not in (TaskStatus.PENDING, TaskStatus.FAILED):
            raise InvalidStateError(
                "Team already formed for task", task_id=task_id, status=task.status.value
            )
        recruiter_id = recruiter_id or self.agent_id
        self._set_status(task, TaskStatus.TEAM_FORMING)

        preferred = [
            r.agent_id
            for r in self.performance.recommend(candidates=list(self._agents), limit=max_members)
        ]
        search = self.registry.find_providers_for_capabilities(
            task.required_capabilities,
            preferred=preferred,
            excluded=[recruiter_id],
            max_providers=max_members,
        )
        team_id = f"team-{uuid.uuid4().hex[:8]}"
        records: list[RecruitmentRecord] = []
        accepted: list[RecruitmentRecord] = []
        uncovered = list(task.required_capabilities)
        tried = {recruiter_id}
        round_search = search
        while round_search.providers:
            for match in round_search.providers:
                tried.add(match.provider_id)
                wanted = [c for c in match.capabilities if c in uncovered]
                if not wanted or len(accepted) >= max_members:
                    continue
                agent = self._agents.get(match.provider_id)
                if agent is None:
                    logger.debug("Provider %s has no live agent", match.provider_id)
                    continue
                record = await self._recruit(task, team_id, recruiter_id, agent, wanted)
                records.append(record)
                if record.status == RecruitmentStatus.ACCEPTED:
                    accepted.append(record)
                    uncovered = [c for c in uncovered if c not in wanted]
            if not uncovered or len(accepted) >= max_members:
                break
            # Alternates for whatever is still unstaffed.
            round_search = self.registry.find_providers_for_capabilities(
                uncovered,
                preferred=preferred,
                excluded=sorted(tried),
                max_providers=max_members - len(accepted),
            )

        result = TeamFormationResult(task_id=task.id, search=search, records=records)
        if uncovered:
            logger.warning(
                "Task %s left without providers for: %s", task.id, ", ".join(uncovered)
            )
            self._set_status(task, TaskStatus.FAILED)
            return result

        participants = []
        for record in accepted:
            assert record.proposal is not None
            participants.append(
                ContractParticipant(
                    agent_id=record.target_agent_id,
                    role=record.proposal.role,
                    responsibilities=list(record.proposal.responsibilities),
                    required_capabilities=list(record.proposal.required_capabilities),
                )
            )
        contract = self.contracts.create_contract(
            task_id=task.id,
            team_id=team_id,
            name=f"Team contract for {task.name}",
            description=task.description,
            created_by=recruiter_id,
            participants=participants,
            expected_outcomes=[f"Deliver {cap}" for cap in task.required_capabilities],
            recruited_agents=[r.target_agent_id for r in accepted],
        )
        contract = await self._collect_signatures(contract)
        result.contract = contract
        if contract.status != ContractStatus.ACTIVE:
            self._set_status(task, TaskStatus.FAILED)
            return result

        team = Team(
            id=team_id,
            task_id=task.id,
            members=[p.agent_id for p in participants],
            roles={p.agent_id: p.role for p in participants},
            created_at=self.clock.now(),
            contract_id=contract.contract_id,
        )
        self._teams[team.id] = team
        task.team_id = team.id
        result.team = team
        self._emit(TaskEventKind.TEAM_FORMED, task, {"team_id": team.id, "members": team.members})
        self._set_status(task, TaskStatus.PLANNING)
        logger.info("Team %s formed for task %s: %s", team.id, task.id, ", ".join(team.members))
        return result

    async def _recruit(
        self,
        task: Task,
        team_id: str,
        recruiter_id: str,
        agent: Agent,
        capabilities: list[str],
    ) -> RecruitmentRecord:
        record = self.recruitment.send_inquiry(
            task.id,
            recruiter_id,
            agent.agent_id,
            capabilities,
            team_id=team_id,
            priority=task.priority,
        )
        answer = await self._ask(
            agent,
            RecruitmentInquiryRequest(
                record_id=record.id,
                task_id=task.id,
                recruiter_id=recruiter_id,
                capabilities=list(capabilities),
                priority=task.priority,
            ),
        )
        if not isinstance(answer, InquiryAnswer):
            return self.recruitment.cancel(record.id, "No answer to inquiry")
        record = self.recruitment.record_inquiry_response(
            record.id,
            answer.interested,
            available_capabilities=answer.available_capabilities,
            availability=answer.availability,
            message=answer.message,
        )
        if record.is_terminal:
            return record

        self.recruitment.create_proposal(
            record.id,
            role=f"{capabilities[0]} provider",
            responsibilities=[f"Provide {cap}" for cap in capabilities],
            required_capabilities=list(capabilities),
            expected_contribution=f"Deliver {', '.join(capabilities)} for {task.name}",
            expected_duration=DEFAULT_ROLE_DURATION,
        )
        preferences = ResolutionPreferences(
            prioritize_capabilities=True,
            acceptable_compromise_threshold=self.compromise_threshold,
        )
        for _ in range(MAX_NEGOTIATION_ROUNDS + 1):
            record = self.recruitment.get(record.id)
            assert record.proposal is not None
            decision = await self._ask(agent, ProposalRequest(record.id, record.proposal))
            if not isinstance(decision, ProposalDecision):
                return self.recruitment.cancel(record.id, "No answer to proposal")
            if decision.decision == ProposalAnswer.ACCEPT:
                return self.recruitment.accept(record.id, decision.commitment_level)
            if decision.decision == ProposalAnswer.REJECT or decision.counter is None:
                return self.recruitment.reject(record.id, decision.reason)
            self.recruitment.submit_counter_proposal(record.id, decision.counter)
            resolution = self.recruitment.resolve_counter_proposal(record.id, preferences)
            if not resolution.accepted:
                return self.recruitment.cancel(record.id, resolution.explanation)
        return self.recruitment.cancel(record.id, "Negotiation rounds exhausted")

    async def _collect_signatures(self, contract: TeamContract) -> TeamContract:
        for participant in contract.participants:
            if participant.agent_id in contract.signatures:
                continue
            agent = self._agents.get(participant.agent_id)
            answer = (
                await self._ask(agent, ContractSignatureRequest(contract=contract))
                if agent is not None
                else None
            )
            if not isinstance(answer, SignatureAnswer) or not answer.signed:
                reason = answer.reason if isinstance(answer, SignatureAnswer) else "no answer"
                return self.contracts.terminate(
                    contract.contract_id,
                    f"{participant.agent_id} declined to sign: {reason}",
                    by=self.agent_id,
                )
            contract = self.contracts.sign(contract.contract_id, participant.agent_id)
        return contract

    # ── Planning ─────────────────────────────────────────────────────────

    async def propose_breakdown(
        self,
        task_id: str,
        proposer_id: str,
        collaborators: list[str] | None = None,
    ) -> TaskBreakdown:
        task = self.get_task(task_id)
        if collaborators is None:
            collaborators = self.get_team(task.team_id).members if task.team_id else []
        breakdown = self.breakdowns.initiate(
            TaskSpec(
                id=task.id,
                name=task.name,
                description=task.description,
                required_capabilities=list(task.required_capabilities),
            ),
            proposer_id,
            collaborators,
        )
        task.breakdown_id = breakdown.id
        if task.status == TaskStatus.PENDING:
            self._set_status(task, TaskStatus.PLANNING)
        return breakdown

    async def collect_breakdown_votes(
        self, breakdown_id: str, expires_in: float | None = None
    ) -> TaskBreakdown:
        """Put the breakdown to a vote among its collaborators and settle it."""
        breakdown = self.breakdowns.get(breakdown_id)
        if breakdown.status == BreakdownStatus.DRAFT:
            self.breakdowns.start_voting(breakdown_id, breakdown.proposer_id, expires_in)
            breakdown = self.breakdowns.get(breakdown_id)
        if breakdown.voting_id is None or breakdown.status != BreakdownStatus.VOTING:
            raise InvalidStateError(
                "Breakdown is not being voted on",
                breakdown_id=breakdown_id,
                status=breakdown.status.value,
            )
        self.voting.get(breakdown.voting_id).metadata["subtasks"] = [
            s.to_dict() for s in breakdown.subtasks
        ]
        await self._poll_voters(breakdown.voting_id, breakdown.collaborators)

        breakdown = self.breakdowns.get(breakdown_id)
        task = self._tasks.get(breakdown.task_id)
        if task is not None and breakdown.status == BreakdownStatus.APPROVED:
            self._set_status(task, TaskStatus.IN_PROGRESS)
        return breakdown

    async def run_vote(
        self,
        topic: str,
        choices: list[str],
        voter_ids: list[str],
        expires_in: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> VotingResults:
        """Generic team decision over ``choices``."""
        voting = self.voting.create(
            topic,
            choices,
            eligible_voters=voter_ids,
            expires_in=expires_in,
            created_by=self.agent_id,
            metadata=context,
        )
        return await self._poll_voters(voting.id, voter_ids)

    async def _poll_voters(self, voting_id: str, voter_ids: list[str]) -> VotingResults:
        voting = self.voting.get(voting_id)
        request = VoteRequest(
            voting_id=voting.id,
            topic=voting.topic,
            choices=list(voting.choices),
            context=dict(voting.metadata),
        )
        for voter_id in voter_ids:
            if voting.status != VotingStatus.OPEN:
                break
            agent = self._agents.get(voter_id)
            if agent is None:
                continue
            answer = await self._ask(agent, request)
            if not isinstance(answer, VoteAnswer):
                continue
            try:
                voting = self.voting.cast(voting.id, voter_id, answer.choice)
            except ValidationError:
                logger.warning("Agent %s cast an invalid choice %r", voter_id, answer.choice)
            except ExpiredError:
                break
        if voting.status == VotingStatus.OPEN:
            return self.voting.close(voting.id)
        assert voting.results is not None
        return voting.results

    # ── Delegation ───────────────────────────────────────────────────────

    async def delegate_subtask(
        self, task_id: str, subtask_id: str, agent_id: str
    ) -> SubtaskOutcome:
        task = self.get_task(task_id)
        if task.breakdown_id is None:
            raise InvalidStateError("Task has no breakdown", task_id=task_id)
        breakdown = self.breakdowns.get(task.breakdown_id)
        if breakdown.status != BreakdownStatus.APPROVED:
            raise InvalidStateError(
                "Breakdown is not approved",
                task_id=task_id,
                breakdown_id=breakdown.id,
                status=breakdown.status.value,
            )
        subtask = next((s for s in breakdown.subtasks if s.id == subtask_id), None)
        if subtask is None:
            raise NotFoundError("Unknown subtask", task_id=task_id, subtask_id=subtask_id)
        agent = self.get_agent(agent_id)

        started = self.clock.now()
        answer = await self._ask(agent, ExecuteSubtaskRequest(task_id=task.id, subtask=subtask))
        elapsed = self.clock.now() - started
        if isinstance(answer, SubtaskOutcome):
            outcome = answer
        else:
            outcome = SubtaskOutcome(
                subtask_id=subtask.id, agent_id=agent_id, success=False, error="No result"
            )
        record = self.performance.record(agent_id, outcome.success, elapsed)
        if self.performance_store is not None:
            await self.performance_store.save(record)
        task.results[subtask.id] = outcome
        self._emit(
            TaskEventKind.SUBTASK_DELEGATED,
            task,
            {"subtask_id": subtask.id, "agent_id": agent_id, "success": outcome.success},
        )
        done = {s.id for s in breakdown.subtasks}
        if all(sid in task.results and task.results[sid].success for sid in done):
            self._set_status(task, TaskStatus.COMPLETED)
            self._complete_contract(task)
        return outcome

    def _complete_contract(self, task: Task) -> None:
        if task.team_id is None:
            return
        contract_id = self.get_team(task.team_id).contract_id
        if contract_id is None:
            return
        if self.contracts.get(contract_id).status == ContractStatus.ACTIVE:
            self.contracts.complete(
                contract_id, {"subtasks": len(task.results)}, by=self.agent_id
            )

    def recommend_agents(self, limit: int = 3) -> list[PerformanceRecord]:
        return self.performance.recommend(limit=limit)

    async def restore_performance(self, store: PerformanceStore) -> int:
        """Seed the ledger from ``store`` and write later outcomes back to it."""
        records = await store.load_all()
        self.performance.load(records)
        self.performance_store = store
        logger.info("Restored delegation history for %d agents", len(records))
        return len(records)

    # ── Maintenance ──────────────────────────────────────────────────────

    def sweep(self) -> dict[str, int]:
        """Run every service's expiry sweep."""
        return {
            "advertisements": self.advertisements.sweep(),
            "inquiries": self.negotiator.sweep(),
            "recruitments": self.recruitment.sweep(),
            "contracts": self.contracts.sweep(),
            "votings": self.voting.sweep(),
        }

    def get_stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for task in self._tasks.values():
            by_status[task.status.value] = by_status.get(task.status.value, 0) + 1
        return {
            "agents": len(self._agents),
            "tasks": len(self._tasks),
            "tasks_by_status": by_status,
            "teams": len(self._teams),
            "registry": self.registry.get_stats(),
            "advertisements": self.advertisements.get_stats(),
            "negotiation": self.negotiator.get_stats(),
            "recruitment": self.recruitment.get_stats(),
            "contracts": self.contracts.get_stats(),
            "voting": self.voting.get_stats(),
            "breakdowns": self.breakdowns.get_stats(),
            "delegation": self.performance.get_stats(),
        }

    # ── Internals ────────────────────────────────────────────────────────

    async def _ask(self, agent: Agent, request: AgentRequest) -> Any:
        try:
            return await asyncio.wait_for(agent.handle(request), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning("Agent %s timed out on %s", agent.agent_id, request.TYPE.value)
        except Exception:
            logger.warning(
                "Agent %s failed on %s", agent.agent_id, request.TYPE.value, exc_info=True
            )
        return None

    def _set_status(self, task: Task, status: TaskStatus) -> None:
        if task.status == status:
            return
        previous = task.status
        task.status = status
        self._emit(
            TaskEventKind.STATUS_CHANGED, task, {"from": previous.value, "to": status.value}
        )

    def _emit(self, kind: TaskEventKind, task: Task, details: dict[str, Any]) -> None:
        self.events.publish(
            TaskEvent(kind=kind, timestamp=self.clock.now(), task_id=task.id, details=details)
        )
