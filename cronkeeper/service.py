"""Keeper service driving evaluate/execute on an interval."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .config import KeeperConfig, dump_mapping, load_config
from .errors import ActionNoLongerValid, KeeperError
from .factory import Simulation, build_simulation
from .keeper import ExecutionOutcome
from .ledger import Ledger
from .metrics import KeeperMetrics

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TickReport:
    """Result of one evaluate/execute round."""

    tick: int
    upkeep_needed: bool
    outcome: Optional[ExecutionOutcome] = None
    error: Optional[str] = None


class KeeperService:
    """Plays the automation registry for a simulated keeper.

    Each round advances the simulated chain, asks the keeper whether work is
    needed and, when it is, performs the returned payload and charges the
    upkeep fee. Rounds never overlap. When constructed with a config path the
    service re-reads the file whenever it changes and applies the new
    administrative parameters through the owner-only setters.
    """

    def __init__(
        self,
        simulation: Simulation,
        *,
        config_path: Optional[Path] = None,
        metrics: Optional[KeeperMetrics] = None,
    ) -> None:
        self._sim = simulation
        self._config_path = config_path
        self._config_mtime = config_path.stat().st_mtime if config_path is not None else 0.0
        self._metrics = metrics or KeeperMetrics()
        self._round_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._reload_task: Optional[asyncio.Task[None]] = None
        self._last_report: Optional[TickReport] = None

    @classmethod
    def from_config_path(cls, path: str | Path, *, metrics: Optional[KeeperMetrics] = None) -> "KeeperService":
        config_path = Path(path)
        return cls(build_simulation(load_config(config_path)), config_path=config_path, metrics=metrics)

    @property
    def simulation(self) -> Simulation:
        return self._sim

    @property
    def config(self) -> KeeperConfig:
        return self._sim.config

    @property
    def metrics(self) -> KeeperMetrics:
        return self._metrics

    @property
    def last_report(self) -> Optional[TickReport]:
        return self._last_report

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_loop(), name="keeper-loop")
        if self._config_path is not None and (self._reload_task is None or self._reload_task.done()):
            self._reload_task = asyncio.create_task(self._reload_loop(), name="keeper-reload")

    async def close(self) -> None:
        for task in (self._loop_task, self._reload_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._loop_task = None
        self._reload_task = None

    # ------------------------------------------------------------------
    # Registry-facing calls
    async def check(self, context: bytes = b"") -> Tuple[bool, bytes]:
        async with self._round_lock:
            return self._check(context)

    async def perform(self, perform_data: bytes) -> ExecutionOutcome:
        async with self._round_lock:
            return self._perform(perform_data)

    async def run_round(self) -> TickReport:
        """Advance the clock and run one evaluate/execute round.

        Failures never escape. A keeper error from ``execute`` is already
        counted as a rejection; any other failure is logged and counted as a
        failed round. Either way the error text lands in the returned report.
        """

        async with self._round_lock:
            tick = self._sim.advance(self.config.ticks_per_interval)
            try:
                needed, data = self._check(b"")
            except Exception as exc:
                report = self._failed_round(tick, False, exc)
            else:
                report = TickReport(tick=tick, upkeep_needed=needed)
                if needed:
                    try:
                        outcome = self._perform(data)
                    except KeeperError as exc:
                        report = TickReport(tick=tick, upkeep_needed=True, error=str(exc))
                    except Exception as exc:
                        report = self._failed_round(tick, True, exc)
                    else:
                        report = TickReport(tick=tick, upkeep_needed=True, outcome=outcome)
            self._last_report = report
            return report

    def _failed_round(self, tick: int, needed: bool, exc: Exception) -> TickReport:
        LOGGER.error("Keeper round at tick %d failed", tick, exc_info=exc)
        self._metrics.round_failures.labels(type(exc).__name__).inc()
        return TickReport(tick=tick, upkeep_needed=needed, error=f"{type(exc).__name__}: {exc}")

    async def health(self) -> Dict[str, Any]:
        sim = self._sim
        engine = sim.refill_engine
        status: Dict[str, Any] = {
            "status": "ok",
            "network": sim.keeper.network,
            "tick": sim.clock(),
            "leader": sim.sequencer.leader_at(sim.clock()),
            "config": dump_mapping(self.config),
            "jobs": [
                {"job": job.handle, "due": job.due, "reason": job.reason}
                for job in sim.jobs.workable_jobs()
            ],
        }
        if engine is not None:
            buffer = engine.buffer_size()
            status.update(
                {
                    "operatingBalance": engine.operating_balance(),
                    "bufferSize": buffer,
                    "threshold": engine.state.threshold,
                    "idleBalance": engine.idle_balance(),
                }
            )
            if buffer < engine.state.threshold:
                status["status"] = "degraded"
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    def _check(self, context: bytes) -> Tuple[bool, bytes]:
        needed, data = self._sim.keeper.evaluate(context)
        self._metrics.evaluations.labels("action" if needed else "idle").inc()
        return needed, data

    def _perform(self, perform_data: bytes) -> ExecutionOutcome:
        sim = self._sim
        try:
            outcome = sim.keeper.execute(perform_data)
        except ActionNoLongerValid as exc:
            self._metrics.rejections.labels("no_longer_valid").inc()
            LOGGER.warning("Rejected stale action: %s", exc)
            raise
        except KeeperError as exc:
            self._metrics.rejections.labels(type(exc).__name__).inc()
            LOGGER.warning("Keeper action failed: %s", exc)
            raise
        self._metrics.actions.labels(outcome.kind).inc()
        if outcome.refill is not None:
            self._metrics.refilled_in.inc(outcome.refill.amount_converted)
            self._metrics.refilled_out.inc(outcome.refill.amount_received)
        engine = sim.refill_engine
        if engine is not None:
            fee = self.config.simulation.upkeep_fee
            if fee:
                sim.accounts.charge(engine.account_id, fee)
            self._metrics.operating_balance.set(engine.operating_balance())
        return outcome

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.interval_seconds)
            report = await self.run_round()
            LOGGER.debug("Round at tick %d: needed=%s error=%s", report.tick, report.upkeep_needed, report.error)

    async def _reload_loop(self) -> None:
        assert self._config_path is not None
        while True:
            await asyncio.sleep(max(1, self.config.reload_interval_seconds))
            try:
                stat = self._config_path.stat()
            except FileNotFoundError:
                continue
            if stat.st_mtime <= self._config_mtime:
                continue
            try:
                await self.reload()
            except (KeeperError, yaml.YAMLError) as exc:
                self._config_mtime = stat.st_mtime
                LOGGER.error("Keeping previous configuration; reload of %s failed: %s", self._config_path, exc)

    async def reload(self) -> None:
        """Re-read the config file and apply changed administrative settings.

        The new settings are applied all-or-nothing: if any setter rejects
        them, the sequencer, keeper and refill engine are restored and the
        error propagates.
        """

        assert self._config_path is not None
        new_config = load_config(self._config_path)
        async with self._round_lock:
            self._apply(new_config)
            self._config_mtime = self._config_path.stat().st_mtime
        LOGGER.info("Reloaded keeper configuration from %s", self._config_path)

    def _apply(self, new: KeeperConfig) -> None:
        sim = self._sim
        ledger = Ledger()
        ledger.track(sim.sequencer, sim.keeper)
        if sim.refill_engine is not None:
            ledger.track(sim.refill_engine)
        with ledger.transaction():
            self._apply_schedule(new)
            self._apply_treasury(new)
        for name in _restart_only_changes(self.config, new):
            LOGGER.warning("Configuration change to %s needs a restart; ignored on reload", name)
        old = self.config
        sim.config = replace(
            new,
            owner=old.owner,
            jobs=old.jobs,
            simulation=old.simulation,
            treasury=new.treasury if (new.treasury is None) == (old.treasury is None) else old.treasury,
        )

    def _apply_schedule(self, new: KeeperConfig) -> None:
        sim = self._sim
        caller = self.config.owner
        sequencer = sim.sequencer
        sequencer.set_default_window(new.default_window, caller=caller)
        wanted = {participant.name: participant for participant in new.participants}
        for participant in sequencer.participants():
            if participant.name not in wanted and participant.name != new.network:
                sequencer.remove_participant(participant.name, caller=caller)
        for name, participant in wanted.items():
            window = participant.window or new.default_window
            if sequencer.has_participant(name):
                if sequencer.window_of(name) != window:
                    sequencer.set_window(name, window, caller=caller)
            else:
                sequencer.add_participant(name, window, caller=caller)
        if not sequencer.has_participant(new.network):
            sequencer.add_participant(new.network, caller=caller)
        if new.network != sim.keeper.network:
            sim.keeper.set_network(new.network, caller=caller)

    def _apply_treasury(self, new: KeeperConfig) -> None:
        engine = self._sim.refill_engine
        treasury = new.treasury
        if engine is None or treasury is None:
            return
        caller = self.config.owner
        if treasury.max_deposit >= engine.state.min_withdraw:
            engine.set_max_deposit(treasury.max_deposit, caller=caller)
            engine.set_min_withdraw(treasury.min_withdraw, caller=caller)
        else:
            engine.set_min_withdraw(treasury.min_withdraw, caller=caller)
            engine.set_max_deposit(treasury.max_deposit, caller=caller)
        engine.set_threshold(treasury.threshold, caller=caller)
        engine.set_slippage_tolerance(treasury.slippage_tolerance_bps, caller=caller)
        engine.set_path(treasury.path, caller=caller)
        engine.set_account(treasury.account_id, caller=caller)
        engine.set_stream(treasury.stream_id, caller=caller)
        engine.set_surplus_sink(self._sim.surplus if treasury.route_surplus else None, caller=caller)
        engine.allow_idle_refill = treasury.allow_idle_refill


def _restart_only_changes(old: KeeperConfig, new: KeeperConfig) -> List[str]:
    """Name the sections a reload cannot apply to a running keeper."""

    changed = []
    if old.owner != new.owner:
        changed.append("owner")
    if [(job.handle, job.max_duration) for job in old.jobs] != [(job.handle, job.max_duration) for job in new.jobs]:
        changed.append("jobs")
    if (old.treasury is None) != (new.treasury is None):
        changed.append("treasury")
    if old.simulation != new.simulation:
        changed.append("simulation")
    return changed


__all__ = ["KeeperService", "TickReport"]
