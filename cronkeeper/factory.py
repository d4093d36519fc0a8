"""Wire a keeper and its in-memory collaborators from configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import KeeperConfig
from .errors import NotFound
from .events import EventLog
from .jobs import CooldownJob, JobRegistry
from .keeper import DispatchEngine
from .ledger import Ledger, ManualClock, OracleExchange, SurplusBuffer, UpkeepAccounts, VestingStreams
from .pricing import StaticPriceFeed, SwapParameters
from .scheduler import Sequencer
from .treasury import TreasuryRefillEngine, TreasuryState


@dataclass
class Simulation:
    """A keeper together with the simulated world it acts on."""

    config: KeeperConfig
    clock: ManualClock
    ledger: Ledger
    events: EventLog
    sequencer: Sequencer
    jobs: JobRegistry
    keeper: DispatchEngine
    accounts: UpkeepAccounts
    streams: VestingStreams
    exchange: OracleExchange
    surplus: SurplusBuffer
    source_feed: StaticPriceFeed
    target_feed: StaticPriceFeed
    refill_engine: Optional[TreasuryRefillEngine] = None
    cooldown_jobs: Dict[str, CooldownJob] = field(default_factory=dict)

    def advance(self, ticks: int = 1) -> int:
        return self.clock.advance(ticks)


def build_simulation(config: KeeperConfig) -> Simulation:
    """Build a fully wired keeper for ``config``.

    The keeper's own network is registered in the sequencer when the
    configuration does not list it, so a single-network setup works without a
    ``participants`` section.
    """

    sim = config.simulation
    clock = ManualClock(sim.start_tick)
    ledger = Ledger()
    events = EventLog()

    sequencer = Sequencer(default_window=config.default_window, owner=config.owner)
    for participant in config.participants:
        sequencer.add_participant(participant.name, participant.window, caller=config.owner)
    if not sequencer.has_participant(config.network):
        sequencer.add_participant(config.network, caller=config.owner)

    jobs = JobRegistry()
    cooldown_jobs: Dict[str, CooldownJob] = {}
    for job_config in config.jobs:
        job = CooldownJob(clock, job_config.max_duration)
        jobs.add_job(job_config.handle, job)
        cooldown_jobs[job_config.handle] = job
        ledger.track(job)

    source_feed = StaticPriceFeed(sim.source_feed.price, sim.source_feed.decimals)
    target_feed = StaticPriceFeed(sim.target_feed.price, sim.target_feed.decimals)
    accounts = UpkeepAccounts()
    streams = VestingStreams(clock)
    exchange = OracleExchange(source_feed, target_feed, fee_bps=sim.exchange_fee_bps)
    surplus = SurplusBuffer()
    ledger.track(accounts, streams, exchange, surplus)

    refill_engine: Optional[TreasuryRefillEngine] = None
    treasury = config.treasury
    if treasury is not None:
        accounts.set_balance(treasury.account_id, sim.operating_balance)
        if sim.vesting_total > 0:
            streams.create(
                treasury.stream_id,
                total=sim.vesting_total,
                duration=sim.vesting_duration,
                cliff=sim.vesting_cliff,
            )
        refill_engine = TreasuryRefillEngine(
            TreasuryState(
                threshold=treasury.threshold,
                max_deposit=treasury.max_deposit,
                min_withdraw=treasury.min_withdraw,
            ),
            SwapParameters(tolerance_bps=treasury.slippage_tolerance_bps, path=treasury.path),
            account_id=treasury.account_id,
            stream_id=treasury.stream_id,
            accrual=_StreamOrEmpty(streams),
            exchange=exchange,
            accounts=accounts,
            source_feed=source_feed,
            target_feed=target_feed,
            surplus_sink=surplus if treasury.route_surplus else None,
            allow_idle_refill=treasury.allow_idle_refill,
            events=events,
            transaction=ledger.transaction,
            owner=config.owner,
        )
        ledger.track(refill_engine)

    keeper = DispatchEngine(
        sequencer,
        jobs,
        config.network,
        clock=clock,
        refill_engine=refill_engine,
        events=events,
        transaction=ledger.transaction,
        owner=config.owner,
    )
    return Simulation(
        config=config,
        clock=clock,
        ledger=ledger,
        events=events,
        sequencer=sequencer,
        jobs=jobs,
        keeper=keeper,
        accounts=accounts,
        streams=streams,
        exchange=exchange,
        surplus=surplus,
        source_feed=source_feed,
        target_feed=target_feed,
        refill_engine=refill_engine,
        cooldown_jobs=cooldown_jobs,
    )


class _StreamOrEmpty:
    """Treat a stream that was never created as one with nothing unlocked."""

    def __init__(self, streams: VestingStreams) -> None:
        self._streams = streams

    def unlocked_amount(self, stream_id: str) -> int:
        try:
            return self._streams.unlocked_amount(stream_id)
        except NotFound:
            return 0

    def claim(self, stream_id: str, amount: int) -> int:
        try:
            return self._streams.claim(stream_id, amount)
        except NotFound:
            return 0


__all__ = ["Simulation", "build_simulation"]
