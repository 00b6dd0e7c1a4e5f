"""
Team Contracts

Formalizes a recruited team. A contract can only name participants that hold an
accepted recruitment for the task (the initiator excepted) and moves through

    DRAFT -> ACTIVE -> COMPLETED | TERMINATED

Termination is allowed from any non-terminal state.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import ContractEvent, ContractEventKind, EventBus
from negotiator.core.store import KeyValueStore, MemoryStore
from negotiator.errors import InvalidStateError, NotFoundError, ValidationError
from negotiator.recruitment.engine import RecruitmentEngine
from negotiator.recruitment.models import (
    ContractParticipant,
    ContractStatus,
    ContractTerms,
    PerformanceReport,
    StatusChange,
    TeamContract,
)

logger = logging.getLogger(__name__)

HIGH_RISK_COMPLETION = 0.3
CLOSED_STATUSES = frozenset({ContractStatus.COMPLETED, ContractStatus.TERMINATED})


class TeamContractManager:
    def __init__(
        self,
        recruitment: RecruitmentEngine | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        contracts: KeyValueStore[str, TeamContract] | None = None,
    ) -> None:
        self.recruitment = recruitment
        self.events = events or EventBus()
        self.clock = clock or SystemClock()
        self._contracts: KeyValueStore[str, TeamContract] = contracts or MemoryStore()

    def create_contract(
        self,
        task_id: str,
        team_id: str,
        name: str,
        description: str,
        created_by: str,
        participants: list[ContractParticipant],
        terms: ContractTerms | None = None,
        expected_outcomes: list[str] | None = None,
        recruited_agents: list[str] | None = None,
    ) -> TeamContract:
        """
        Draft a contract for a recruited team.

        ``recruited_agents`` lists agents holding an accepted recruitment for
        ``task_id``; when omitted it is read from the recruitment engine.
        """
        if not participants:
            raise ValidationError("a contract needs at least one participant")
        if recruited_agents is None:
            recruited_agents = (
                [r.target_agent_id for r in self.recruitment.get_successful_recruits(task_id)]
                if self.recruitment is not None
                else []
            )
        backed = set(recruited_agents) | {created_by}
        unbacked = [p.agent_id for p in participants if p.agent_id not in backed]
        if unbacked:
            raise InvalidStateError(
                "Participants lack an accepted recruitment", task_id=task_id, agents=unbacked
            )

        now = self.clock.now()
        contract = TeamContract(
            contract_id=f"contract-{uuid.uuid4().hex[:12]}",
            task_id=task_id,
            team_id=team_id,
            name=name,
            description=description,
            created_by=created_by,
            created_at=now,
            participants=list(participants),
            terms=terms or ContractTerms(start_time=now),
            expected_outcomes=list(expected_outcomes or []),
        )
        contract.status_history.append(
            StatusChange(ContractStatus.DRAFT, now, created_by, "Contract drafted")
        )
        contract.signatures[created_by] = now
        self._contracts.put(contract.contract_id, contract)
        self._emit(ContractEventKind.CREATED, contract, created_by)
        logger.info(
            "Contract %s drafted for task %s with %d participants",
            contract.contract_id,
            task_id,
            len(participants),
        )
        return contract

    def get(self, contract_id: str) -> TeamContract:
        contract = self._contracts.get(contract_id)
        if contract is None:
            raise NotFoundError("Unknown contract", contract_id=contract_id)
        return contract

    def sign(self, contract_id: str, agent_id: str) -> TeamContract:
        contract = self.get(contract_id)
        if contract.status != ContractStatus.DRAFT:
            raise InvalidStateError(
                "Only draft contracts can be signed",
                contract_id=contract_id,
                status=contract.status.value,
            )
        if agent_id not in contract.participant_ids and agent_id != contract.created_by:
            raise InvalidStateError(
                "Agent is not a party to this contract", contract_id=contract_id, agent_id=agent_id
            )
        if agent_id in contract.signatures:
            return contract
        contract.signatures[agent_id] = self.clock.now()
        self._contracts.put(contract_id, contract)
        self._emit(ContractEventKind.SIGNED, contract, agent_id)
        if contract.fully_signed:
            self._set_status(contract, ContractStatus.ACTIVE, agent_id, "All participants signed")
            self._emit(ContractEventKind.ACTIVATED, contract, agent_id)
        return contract

    def activate(self, contract_id: str, by: str | None = None) -> TeamContract:
        contract = self.get(contract_id)
        if contract.status != ContractStatus.DRAFT:
            raise InvalidStateError(
                "Only draft contracts can be activated",
                contract_id=contract_id,
                status=contract.status.value,
            )
        by = by or contract.created_by
        self._set_status(contract, ContractStatus.ACTIVE, by, "Activated")
        self._emit(ContractEventKind.ACTIVATED, contract, by)
        return contract

    def complete(
        self, contract_id: str, details: dict[str, Any] | None = None, by: str | None = None
    ) -> TeamContract:
        contract = self.get(contract_id)
        if contract.status != ContractStatus.ACTIVE:
            raise InvalidStateError(
                "Only active contracts can be completed",
                contract_id=contract_id,
                status=contract.status.value,
            )
        by = by or contract.created_by
        contract.metadata["completion_details"] = dict(details or {})
        self._set_status(contract, ContractStatus.COMPLETED, by, "Completed")
        self._emit(ContractEventKind.COMPLETED, contract, by, dict(details or {}))
        logger.info("Contract %s completed", contract_id)
        return contract

    def terminate(self, contract_id: str, reason: str, by: str | None = None) -> TeamContract:
        contract = self.get(contract_id)
        if contract.status in CLOSED_STATUSES:
            raise InvalidStateError(
                "Contract already closed", contract_id=contract_id, status=contract.status.value
            )
        by = by or contract.created_by
        self._set_status(contract, ContractStatus.TERMINATED, by, reason)
        self._emit(ContractEventKind.TERMINATED, contract, by, {"reason": reason})
        logger.warning("Contract %s terminated: %s", contract_id, reason)
        return contract

    def submit_performance_report(
        self,
        contract_id: str,
        agent_id: str,
        overall_score: float,
        completion: float,
        status: str = "on_track",
        summary: str = "",
    ) -> PerformanceReport:
        contract = self.get(contract_id)
        if contract.status in CLOSED_STATUSES:
            raise InvalidStateError(
                "Contract already closed", contract_id=contract_id, status=contract.status.value
            )
        if agent_id not in contract.participant_ids and agent_id != contract.created_by:
            raise InvalidStateError(
                "Agent is not a party to this contract", contract_id=contract_id, agent_id=agent_id
            )
        report = PerformanceReport(
            agent_id=agent_id,
            timestamp=self.clock.now(),
            overall_score=overall_score,
            completion=completion,
            status=status,
            summary=summary,
        )
        contract.reports.append(report)
        contract.metadata["last_report"] = {
            "agent_id": agent_id,
            "timestamp": report.timestamp,
            "overall_score": overall_score,
            "status": status,
        }
        if (
            status == "failing"
            and completion < HIGH_RISK_COMPLETION
            and contract.status == ContractStatus.ACTIVE
        ):
            contract.metadata["risk_level"] = "high"
            contract.metadata["risk_reason"] = "Poor performance report indicating possible breach"
            logger.warning("Contract %s marked high risk after report from %s", contract_id, agent_id)
        self._contracts.put(contract_id, contract)
        self._emit(
            ContractEventKind.PERFORMANCE_REPORTED,
            contract,
            agent_id,
            {"overall_score": overall_score, "completion": completion, "status": status},
        )
        return report

    def get_task_contracts(self, task_id: str) -> list[TeamContract]:
        return [c for c in self._contracts.values() if c.task_id == task_id]

    def get_agent_contracts(self, agent_id: str) -> list[TeamContract]:
        return [c for c in self._contracts.values() if agent_id in c.participant_ids]

    def sweep(self) -> int:
        """Terminate active contracts past their deadline plus grace period."""
        now = self.clock.now()
        terminated = 0
        for contract in self._contracts.values():
            try:
                deadline = contract.terms.deadline
                if contract.status != ContractStatus.ACTIVE or deadline is None:
                    continue
                if now > deadline + contract.terms.grace_period:
                    self.terminate(contract.contract_id, "expired", by="system")
                    terminated += 1
            except Exception:
                logger.exception("Failed to sweep contract %s", contract.contract_id)
        return terminated

    def get_stats(self) -> dict[str, Any]:
        contracts = self._contracts.values()
        by_status: dict[str, int] = {}
        for contract in contracts:
            by_status[contract.status.value] = by_status.get(contract.status.value, 0) + 1
        return {"total_contracts": len(contracts), "by_status": by_status}

    def _set_status(
        self, contract: TeamContract, status: ContractStatus, by: str, reason: str
    ) -> None:
        contract.status = status
        contract.status_history.append(StatusChange(status, self.clock.now(), by, reason))
        self._contracts.put(contract.contract_id, contract)

    def _emit(
        self,
        kind: ContractEventKind,
        contract: TeamContract,
        agent_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.events.publish(
            ContractEvent(
                kind=kind,
                timestamp=self.clock.now(),
                contract_id=contract.contract_id,
                task_id=contract.task_id,
                team_id=contract.team_id,
                agent_id=agent_id,
                details=details or {},
            )
        )
