"""
Runtime composition root.

Builds every service once, wired to a shared event bus and clock, and runs the
periodic expiry sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from negotiator.breakdown.service import TaskBreakdownService
from negotiator.capabilities.advertisement import AdvertisementStore
from negotiator.capabilities.negotiation import CapabilityNegotiator
from negotiator.capabilities.registry import CapabilityRegistry
from negotiator.config import Settings
from negotiator.consensus.voting import VotingEngine
from negotiator.core.clock import Clock, SystemClock
from negotiator.core.events import EventBus
from negotiator.delegation.performance import DelegationPerformanceLedger
from negotiator.facilitator.facilitator import Facilitator
from negotiator.recruitment.contracts import TeamContractManager
from negotiator.recruitment.engine import RecruitmentEngine
from negotiator.storage.database import Database, EventJournal

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    clock: Clock
    events: EventBus
    registry: CapabilityRegistry
    advertisements: AdvertisementStore
    negotiator: CapabilityNegotiator
    voting: VotingEngine
    recruitment: RecruitmentEngine
    contracts: TeamContractManager
    breakdowns: TaskBreakdownService
    performance: DelegationPerformanceLedger
    facilitator: Facilitator
    journal: EventJournal | None = None


def build_runtime(
    settings: Settings | None = None,
    clock: Clock | None = None,
    journal: bool = False,
) -> Runtime:
    """Wire up all services. ``journal`` persists every event to SQLite."""
    settings = settings or Settings()
    clock = clock or SystemClock()
    events = EventBus()

    registry = CapabilityRegistry(events=events, clock=clock)
    advertisements = AdvertisementStore(
        events=events, clock=clock, default_validity=settings.advertisement_validity
    )
    negotiator = CapabilityNegotiator(
        registry=registry,
        events=events,
        clock=clock,
        default_deadline=settings.inquiry_response_deadline,
    )
    voting = VotingEngine(
        events=events,
        clock=clock,
        default_expires_in=settings.voting_expires_in,
        early_majority_turnout=settings.voting_early_majority_turnout,
        consensus_threshold=settings.voting_consensus_threshold,
    )
    recruitment = RecruitmentEngine(
        registry=registry,
        advertisements=advertisements,
        events=events,
        clock=clock,
        record_expiry=settings.recruitment_expires_in,
        proposal_expiry=settings.recruitment_proposal_expires_in,
    )
    contracts = TeamContractManager(recruitment=recruitment, events=events, clock=clock)
    breakdowns = TaskBreakdownService(
        voting,
        registry=registry,
        events=events,
        clock=clock,
        voting_window=settings.breakdown_voting_expires_in,
    )
    performance = DelegationPerformanceLedger(clock=clock)
    facilitator = Facilitator(
        registry=registry,
        advertisements=advertisements,
        negotiator=negotiator,
        recruitment=recruitment,
        contracts=contracts,
        voting=voting,
        breakdowns=breakdowns,
        performance=performance,
        events=events,
        clock=clock,
        compromise_threshold=settings.recruitment_compromise_threshold,
    )

    event_journal = None
    if journal:
        event_journal = EventJournal(Database(settings.data_dir))
        event_journal.attach(events)

    return Runtime(
        settings=settings,
        clock=clock,
        events=events,
        registry=registry,
        advertisements=advertisements,
        negotiator=negotiator,
        voting=voting,
        recruitment=recruitment,
        contracts=contracts,
        breakdowns=breakdowns,
        performance=performance,
        facilitator=facilitator,
        journal=event_journal,
    )


class Sweeper:
    """Calls ``Facilitator.sweep`` every ``interval`` seconds on the running loop."""

    def __init__(self, facilitator: Facilitator, interval: float = 60.0) -> None:
        self.facilitator = facilitator
        self.interval = interval
        self.runs = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def run_once(self) -> dict[str, int]:
        self.runs += 1
        counts = self.facilitator.sweep()
        if any(counts.values()):
            logger.info("Sweep: %s", counts)
        return counts

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep failed")
