"""
Tests for the coordinating facilitator.

Covers: team formation (accept, decline, counter, timeout, crash, refusal to
sign), breakdown voting, delegation to completion, capability negotiation,
generic votes, sweeps.
"""

import asyncio

import pytest

from negotiator.breakdown.models import BreakdownStatus
from negotiator.config import Settings
from negotiator.core.events import TaskEvent, TaskEventKind
from negotiator.delegation.store import PerformanceStore
from negotiator.errors import InvalidStateError, NotFoundError, ValidationError
from negotiator.facilitator.agent import Agent, ProposalAnswer
from negotiator.facilitator.facilitator import TaskStatus
from negotiator.recruitment.models import ContractStatus, RecruitmentStatus
from negotiator.runtime import Runtime, Sweeper, build_runtime

pytestmark = pytest.mark.anyio


def register(runtime: Runtime, *agents) -> None:
    for agent in agents:
        runtime.facilitator.register_agent(agent)


# ═══════════════════════════════════════════════════════════════════════════
# TEAM FORMATION
# ═══════════════════════════════════════════════════════════════════════════


class TestFormTeam:
    async def test_recruits_and_activates_contract(self, runtime: Runtime, make_agent) -> None:
        a1, a2 = make_agent("A1", ["a"]), make_agent("A2", ["b"])
        register(runtime, a1, a2)
        facilitator = runtime.facilitator
        task = facilitator.create_task("Build", "Build something", ["a", "b"])

        result = await facilitator.form_team(task.id)

        assert result.success
        assert result.team.members == ["A1", "A2"]
        assert result.team.roles == {"A1": "a provider", "A2": "b provider"}
        assert result.contract.status == ContractStatus.ACTIVE
        assert set(result.contract.signatures) == {"facilitator", "A1", "A2"}
        assert task.status == TaskStatus.PLANNING
        assert task.team_id == result.team.id
        assert isinstance(a1, Agent)

    async def test_declining_agent_fails_the_task(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"]), make_agent("A2", ["b"], interested=False))
        task = runtime.facilitator.create_task("Build", "", ["a", "b"])

        result = await runtime.facilitator.form_team(task.id)

        assert not result.success
        assert result.contract is None
        assert result.team is None
        declined = [r for r in result.records if r.target_agent_id == "A2"][0]
        assert declined.status == RecruitmentStatus.REJECTED
        assert task.status == TaskStatus.FAILED

    async def test_alternate_provider_fills_the_gap(self, runtime: Runtime, make_agent) -> None:
        register(
            runtime,
            make_agent("A1", ["a"]),
            make_agent("A2", ["b"], interested=False),
            make_agent("A3", ["b"]),
        )
        task = runtime.facilitator.create_task("Build", "", ["a", "b"])

        result = await runtime.facilitator.form_team(task.id)

        assert result.success
        assert sorted(result.team.members) == ["A1", "A3"]
        assert result.team.roles["A3"] == "b provider"
        assert task.status == TaskStatus.PLANNING
        staffed = {
            cap for p in result.contract.participants for cap in p.required_capabilities
        }
        assert staffed == {"a", "b"}

    async def test_alternates_cover_only_what_is_missing(
        self, runtime: Runtime, make_agent
    ) -> None:
        register(
            runtime,
            make_agent("A1", ["a", "b"], decision=ProposalAnswer.REJECT),
            make_agent("A2", ["a"]),
            make_agent("A3", ["b"]),
        )
        task = runtime.facilitator.create_task("Build", "", ["a", "b"])

        result = await runtime.facilitator.form_team(task.id)

        assert result.success
        assert result.records[0].target_agent_id == "A1"
        assert result.records[0].status == RecruitmentStatus.REJECTED
        assert result.team.roles == {"A2": "a provider", "A3": "b provider"}

    async def test_rejected_proposal(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"], decision=ProposalAnswer.REJECT))
        task = runtime.facilitator.create_task("Build", "", ["a"])

        result = await runtime.facilitator.form_team(task.id)

        assert not result.success
        assert result.records[0].rejection.reason == "not for me"
        assert task.status == TaskStatus.FAILED

    async def test_everyone_declines(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"], interested=False))
        task = runtime.facilitator.create_task("Build", "", ["a"])

        result = await runtime.facilitator.form_team(task.id)

        assert not result.success
        assert result.contract is None
        assert task.status == TaskStatus.FAILED

    async def test_counter_then_accept(self, runtime: Runtime, make_agent) -> None:
        agent = make_agent("A1", ["a"], counter_rounds=1, commitment_level="guaranteed")
        register(runtime, agent)
        task = runtime.facilitator.create_task("Build", "", ["a"])

        result = await runtime.facilitator.form_team(task.id)

        record = result.records[0]
        assert result.success
        assert agent.counters_sent == 1
        assert record.status == RecruitmentStatus.ACCEPTED
        assert record.proposal.supersedes is not None
        assert record.proposal.expected_duration == 3600
        assert record.acceptance.proposal_id == record.proposal.id

    async def test_slow_agent_counts_as_declined(self, runtime: Runtime, make_agent) -> None:
        runtime.facilitator.request_timeout = 0.05
        register(runtime, make_agent("A1", ["a"], delay=1.0), make_agent("A2", ["b"]))
        task = runtime.facilitator.create_task("Build", "", ["a", "b"])

        result = await runtime.facilitator.form_team(task.id)

        statuses = {r.target_agent_id: r.status for r in result.records}
        assert statuses == {"A1": RecruitmentStatus.CANCELLED, "A2": RecruitmentStatus.ACCEPTED}
        assert not result.success
        assert task.status == TaskStatus.FAILED

    async def test_crashing_agent_counts_as_declined(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"], fail=True))
        task = runtime.facilitator.create_task("Build", "", ["a"])

        result = await runtime.facilitator.form_team(task.id)

        assert result.records[0].status == RecruitmentStatus.CANCELLED
        assert task.status == TaskStatus.FAILED

    async def test_refusal_to_sign_terminates(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"]), make_agent("A2", ["b"], sign=False))
        task = runtime.facilitator.create_task("Build", "", ["a", "b"])

        result = await runtime.facilitator.form_team(task.id)

        assert not result.success
        assert result.contract.status == ContractStatus.TERMINATED
        assert "A2 declined to sign" in result.contract.status_history[-1].reason
        assert task.status == TaskStatus.FAILED

    async def test_cannot_form_twice(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"]))
        task = runtime.facilitator.create_task("Build", "", ["a"])
        await runtime.facilitator.form_team(task.id)
        with pytest.raises(InvalidStateError):
            await runtime.facilitator.form_team(task.id)

    async def test_task_validation(self, runtime: Runtime) -> None:
        with pytest.raises(ValidationError):
            runtime.facilitator.create_task("Build", "", [])
        with pytest.raises(NotFoundError):
            runtime.facilitator.get_task("task-missing")


# ═══════════════════════════════════════════════════════════════════════════
# PLANNING AND DELEGATION
# ═══════════════════════════════════════════════════════════════════════════


class TestPlanAndDelegate:
    async def _planned_task(self, runtime: Runtime, make_agent, vote: str | None = None):
        register(
            runtime,
            make_agent("A1", ["a"], vote=vote),
            make_agent("A2", ["b"], vote=vote),
        )
        facilitator = runtime.facilitator
        task = facilitator.create_task("Report", "Write a report", ["a", "b"])
        await facilitator.form_team(task.id)
        breakdown = await facilitator.propose_breakdown(task.id, "facilitator")
        return task, breakdown

    async def test_approved_breakdown_starts_work(self, runtime: Runtime, make_agent) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent)
        assert breakdown.collaborators == ["facilitator", "A1", "A2"]

        breakdown = await runtime.facilitator.collect_breakdown_votes(breakdown.id)

        assert breakdown.status == BreakdownStatus.APPROVED
        assert breakdown.metrics is not None
        assert task.status == TaskStatus.IN_PROGRESS

    async def test_rejected_breakdown_keeps_planning(self, runtime: Runtime, make_agent) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent, vote="reject")

        breakdown = await runtime.facilitator.collect_breakdown_votes(breakdown.id)

        assert breakdown.status == BreakdownStatus.REJECTED
        assert task.status == TaskStatus.PLANNING

    async def test_delegation_completes_task(self, runtime: Runtime, make_agent) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent)
        await runtime.facilitator.collect_breakdown_votes(breakdown.id)
        completed: list[str] = []
        runtime.events.subscribe(
            TaskEvent,
            lambda e: completed.append(e.details["to"]),
            kinds={TaskEventKind.STATUS_CHANGED},
        )

        for subtask in breakdown.subtasks:
            outcome = await runtime.facilitator.delegate_subtask(task.id, subtask.id, "A1")
            assert outcome.success

        assert task.status == TaskStatus.COMPLETED
        assert completed == ["completed"]
        contract = runtime.contracts.get(runtime.facilitator.get_team(task.team_id).contract_id)
        assert contract.status == ContractStatus.COMPLETED
        assert runtime.performance.get("A1").task_count == len(breakdown.subtasks)

    async def test_failed_subtask_keeps_task_open(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A3", ["c"], succeed=False))
        task, breakdown = await self._planned_task(runtime, make_agent)
        await runtime.facilitator.collect_breakdown_votes(breakdown.id)

        outcome = await runtime.facilitator.delegate_subtask(
            task.id, breakdown.subtasks[0].id, "A3"
        )

        assert not outcome.success
        assert task.status == TaskStatus.IN_PROGRESS
        assert runtime.performance.get("A3").success_rate == 0.0

    async def test_delegation_requires_approval(self, runtime: Runtime, make_agent) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent)
        with pytest.raises(InvalidStateError):
            await runtime.facilitator.delegate_subtask(task.id, breakdown.subtasks[0].id, "A1")

    async def test_unknown_subtask(self, runtime: Runtime, make_agent) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent)
        await runtime.facilitator.collect_breakdown_votes(breakdown.id)
        with pytest.raises(NotFoundError):
            await runtime.facilitator.delegate_subtask(task.id, "nope", "A1")

    async def test_outcomes_survive_restart(
        self, runtime: Runtime, make_agent, clock, tmp_path
    ) -> None:
        task, breakdown = await self._planned_task(runtime, make_agent)
        await runtime.facilitator.collect_breakdown_votes(breakdown.id)

        db_path = tmp_path / "performance.db"
        async with PerformanceStore(db_path) as store:
            assert await runtime.facilitator.restore_performance(store) == 0
            await runtime.facilitator.delegate_subtask(task.id, breakdown.subtasks[0].id, "A1")

        fresh = build_runtime(settings=Settings(data_dir=tmp_path / "fresh"), clock=clock)
        async with PerformanceStore(db_path) as store:
            assert await fresh.facilitator.restore_performance(store) == 1
        record = fresh.performance.get("A1")
        assert record is not None
        assert record.task_count == 1
        assert record.success_rate == 1.0


# ═══════════════════════════════════════════════════════════════════════════
# NEGOTIATION, VOTES, SWEEPS
# ═══════════════════════════════════════════════════════════════════════════


class TestNegotiateAndVote:
    async def test_negotiate_capability_picks_best(self, runtime: Runtime, make_agent) -> None:
        register(
            runtime,
            make_agent("A1", ["a"]),
            make_agent("A2", ["a"], confidence=0.6),
            make_agent("A3", ["a"], confidence=0.9),
            make_agent("A4", ["a"], available=False),
        )

        result = await runtime.facilitator.negotiate_capability("A1", "a")

        assert result.success
        assert result.selected_provider == "A3"
        assert "A1" not in [r.from_agent_id for r in result.available]

    async def test_run_vote(self, runtime: Runtime, make_agent) -> None:
        register(
            runtime,
            make_agent("V1", ["x"], vote="blue"),
            make_agent("V2", ["x"], vote="green"),
            make_agent("V3", ["x"], vote="blue"),
        )

        results = await runtime.facilitator.run_vote(
            "Colour?", ["green", "blue"], ["V1", "V2", "V3"]
        )

        assert results.top_choice == "blue"
        assert results.counts == {"green": 1, "blue": 2}

    async def test_run_vote_ignores_invalid_choice(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("V1", ["x"], vote="purple"), make_agent("V2", ["x"]))

        results = await runtime.facilitator.run_vote("Colour?", ["green", "blue"], ["V1", "V2"])

        assert results.counts == {"green": 1, "blue": 0}

    async def test_recommendations_follow_performance(self, runtime: Runtime) -> None:
        for _ in range(3):
            runtime.performance.record("fast", True, 1)
            runtime.performance.record("slow", True, 59)
        assert [r.agent_id for r in runtime.facilitator.recommend_agents()] == ["fast", "slow"]

    async def test_sweep_reports_every_service(self, runtime: Runtime) -> None:
        counts = runtime.facilitator.sweep()
        assert counts == {
            "advertisements": 0,
            "inquiries": 0,
            "recruitments": 0,
            "contracts": 0,
            "votings": 0,
        }

    async def test_sweeper_runs_in_background(self, runtime: Runtime) -> None:
        sweeper = Sweeper(runtime.facilitator, interval=0.01)
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.running
        assert sweeper.runs >= 1
        assert sweeper.run_once() == runtime.facilitator.sweep()

    async def test_stats(self, runtime: Runtime, make_agent) -> None:
        register(runtime, make_agent("A1", ["a"]))
        runtime.facilitator.create_task("Build", "", ["a"])
        stats = runtime.facilitator.get_stats()
        assert stats["agents"] == 1
        assert stats["tasks_by_status"] == {"pending": 1}
