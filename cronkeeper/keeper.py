"""Keeper deciding and performing one maintenance action per invocation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from .access import DEPLOYER, Ownable
from .actions import Action, Refill, RunJob, decode_action, encode_action
from .errors import ActionNoLongerValid, InvalidParam
from .events import EventLog, job_executed
from .jobs import JobRegistry
from .scheduler import Sequencer
from .treasury import RefillResult, TransactionFactory, TreasuryRefillEngine

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], int]


class KeeperPhase(str, Enum):
    IDLE = "idle"
    ACTION_SELECTED = "action_selected"


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """What a successful ``execute`` call did."""

    action: Action
    tick: int
    refill: Optional[RefillResult] = None

    @property
    def kind(self) -> str:
        return self.action.kind


class DispatchEngine(Ownable):
    """Selects and applies at most one action for ``network`` per call.

    ``evaluate`` is read-only and walks the priority order on every call:
    the network must hold the turn, then the first due job wins, then a
    treasury refill, otherwise nothing. ``execute`` re-checks the predicate
    behind the decoded action before applying it, because other keepers may
    have acted in between.
    """

    def __init__(
        self,
        sequencer: Sequencer,
        jobs: JobRegistry,
        network: str,
        *,
        clock: Clock,
        refill_engine: Optional[TreasuryRefillEngine] = None,
        events: Optional[EventLog] = None,
        transaction: Optional[TransactionFactory] = None,
        owner: str = DEPLOYER,
    ) -> None:
        super().__init__(owner)
        if sequencer is None:
            raise InvalidParam("sequencer")
        if jobs is None:
            raise InvalidParam("jobs")
        if not isinstance(network, str) or not network:
            raise InvalidParam("network")
        if clock is None:
            raise InvalidParam("clock")
        self._sequencer = sequencer
        self._jobs = jobs
        self._network = network
        self._clock = clock
        self._refill_engine = refill_engine
        self._events = events or (refill_engine.events if refill_engine is not None else EventLog())
        self._transaction = transaction
        self._lock = threading.Lock()
        self._phase = KeeperPhase.IDLE

    # ------------------------------------------------------------------
    # Properties
    @property
    def sequencer(self) -> Sequencer:
        return self._sequencer

    @property
    def jobs(self) -> JobRegistry:
        return self._jobs

    @property
    def network(self) -> str:
        return self._network

    @property
    def refill_engine(self) -> Optional[TreasuryRefillEngine]:
        return self._refill_engine

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def phase(self) -> KeeperPhase:
        return self._phase

    def current_tick(self) -> int:
        return self._clock()

    # ------------------------------------------------------------------
    # Evaluate / execute
    def select_action(self, tick: Optional[int] = None) -> Optional[Action]:
        """Return the action due at ``tick`` (defaults to now), if any."""

        tick = self._clock() if tick is None else tick
        if not self._sequencer.is_leader(self._network, tick):
            LOGGER.debug("Network %s is not leader at tick %d", self._network, tick)
            return None
        handle = self._jobs.first_due()
        if handle is not None:
            return RunJob(handle=handle)
        if self._refill_engine is not None and self._refill_engine.should_refill():
            return Refill()
        return None

    def evaluate(self, context: bytes = b"") -> Tuple[bool, bytes]:
        """Return ``(action_needed, encoded_action)`` without side effects."""

        with self._lock:
            action = self.select_action()
            if action is None:
                self._phase = KeeperPhase.IDLE
                return False, b""
            self._phase = KeeperPhase.ACTION_SELECTED
            LOGGER.debug("Selected %s for network %s (context=%s)", action.kind, self._network, context.hex())
            return True, encode_action(action)

    def execute(self, encoded_action: bytes) -> ExecutionOutcome:
        """Apply the action produced by :meth:`evaluate`.

        Raises ``ActionNoLongerValid`` when the condition behind the action no
        longer holds. Collaborator failures propagate unchanged and leave no
        partial effects inside the transaction scope.
        """

        action = decode_action(encoded_action)
        with self._lock:
            try:
                scope = self._transaction() if self._transaction is not None else None
                with self._events.staged(scope):
                    tick = self._clock()
                    self._revalidate(action, tick)
                    if isinstance(action, RunJob):
                        self._jobs.get(action.handle).execute(action.args)
                        self._events.emit(job_executed(action.handle, self._network))
                        LOGGER.info("Executed job %s for network %s at tick %d", action.handle, self._network, tick)
                        return ExecutionOutcome(action=action, tick=tick)
                    engine = self._refill_engine
                    if engine is None:
                        raise ActionNoLongerValid(action.kind, "no refill engine configured")
                    result = engine.refill()
                    return ExecutionOutcome(action=action, tick=tick, refill=result)
            finally:
                self._phase = KeeperPhase.IDLE

    def _revalidate(self, action: Action, tick: int) -> None:
        if not self._sequencer.is_leader(self._network, tick):
            raise ActionNoLongerValid(action.kind, f"network {self._network} is not leader at tick {tick}")
        if isinstance(action, RunJob):
            if action.handle not in self._jobs:
                raise ActionNoLongerValid(action.kind, f"job {action.handle} is not registered")
            if not self._jobs.is_due(action.handle):
                raise ActionNoLongerValid(action.kind, f"job {action.handle} is not due")
            return
        if self._refill_engine is None:
            raise ActionNoLongerValid(action.kind, "no refill engine configured")
        if not self._refill_engine.should_refill():
            raise ActionNoLongerValid(action.kind, "refill not needed")

    def snapshot(self) -> Tuple[Sequencer, JobRegistry, str, Optional[TreasuryRefillEngine]]:
        return self._sequencer, self._jobs, self._network, self._refill_engine

    def restore(self, state: Tuple[Sequencer, JobRegistry, str, Optional[TreasuryRefillEngine]]) -> None:
        self._sequencer, self._jobs, self._network, self._refill_engine = state

    # ------------------------------------------------------------------
    # Administration
    def set_sequencer(self, sequencer: Sequencer, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if sequencer is None:
            raise InvalidParam("sequencer")
        with self._lock:
            self._sequencer = sequencer
        LOGGER.info("Sequencer replaced for network %s", self._network)

    def set_jobs(self, jobs: JobRegistry, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if jobs is None:
            raise InvalidParam("jobs")
        with self._lock:
            self._jobs = jobs

    def set_network(self, network: str, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if not isinstance(network, str) or not network:
            raise InvalidParam("network")
        with self._lock:
            self._network = network
        LOGGER.info("Keeper network set to %s", network)

    def set_refill_engine(
        self,
        engine: Optional[TreasuryRefillEngine],
        *,
        caller: Optional[str] = None,
    ) -> None:
        """Install the refill engine; ``None`` disables treasury refills."""

        self._require_owner(caller)
        with self._lock:
            self._refill_engine = engine
        LOGGER.info("Refill engine %s", "installed" if engine is not None else "removed")


__all__ = ["DispatchEngine", "ExecutionOutcome", "KeeperPhase"]
