"""In-memory collaborators and an all-or-nothing transaction scope.

These stand in for the vesting contract, the automation registry, the swap
router and the surplus buffer when the keeper runs as a local simulation.
Every collaborator exposes ``snapshot()``/``restore()`` so that
:meth:`Ledger.transaction` can undo a failed action completely.
"""

from __future__ import annotations

import contextlib
import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from .errors import InvalidParam, NotFound, SwapBelowMinimum
from .pricing import PriceConverter, PriceFeed, validate_tolerance

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], int]


class Journaled(Protocol):
    def snapshot(self) -> Any:  # pragma: no cover - protocol
        ...

    def restore(self, state: Any) -> None:  # pragma: no cover - protocol
        ...


def is_journaled(obj: object) -> bool:
    return (
        obj is not None
        and callable(getattr(obj, "snapshot", None))
        and callable(getattr(obj, "restore", None))
    )


class Ledger:
    """Groups journaled objects under one rollback scope."""

    def __init__(self) -> None:
        self._tracked: List[Journaled] = []
        self._lock = threading.RLock()

    def track(self, *objects: Journaled) -> None:
        for obj in objects:
            if not is_journaled(obj):
                raise InvalidParam("tracked", f"{obj!r} does not support snapshot/restore")
            if all(obj is not existing for existing in self._tracked):
                self._tracked.append(obj)

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """Restore every tracked object if the block raises."""

        with self._lock:
            saved = [(obj, obj.snapshot()) for obj in self._tracked]
            try:
                yield self
            except BaseException:
                for obj, state in reversed(saved):
                    obj.restore(state)
                LOGGER.debug("Rolled back %d journaled objects", len(saved))
                raise


class ManualClock:
    """Tick source advanced explicitly; ticks model block numbers."""

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise InvalidParam("tick", "must be non-negative")
        self._tick = start

    def __call__(self) -> int:
        return self._tick

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            raise InvalidParam("ticks", "cannot move the clock backwards")
        self._tick += ticks
        return self._tick

    def set(self, tick: int) -> None:
        if tick < self._tick:
            raise InvalidParam("tick", "cannot move the clock backwards")
        self._tick = tick


@dataclass(slots=True)
class VestingPlan:
    """Linear vesting schedule with an optional cliff."""

    total: int
    start: int
    duration: int
    cliff: int = 0
    claimed: int = 0

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise InvalidParam("total", "must be positive")
        if self.duration <= 0:
            raise InvalidParam("duration", "must be positive")
        if not 0 <= self.cliff <= self.duration:
            raise InvalidParam("cliff", "must lie within the vesting duration")

    def accrued(self, now: int) -> int:
        if now < self.start + self.cliff:
            return 0
        if now >= self.start + self.duration:
            return self.total
        return self.total * (now - self.start) // self.duration


class VestingStreams:
    """Accrual source paying out linear vesting plans."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._plans: Dict[str, VestingPlan] = {}

    def create(self, stream_id: str, *, total: int, duration: int, start: Optional[int] = None, cliff: int = 0) -> VestingPlan:
        if not stream_id:
            raise InvalidParam("stream_id")
        if stream_id in self._plans:
            raise InvalidParam("stream_id", f"{stream_id!r} already exists")
        plan = VestingPlan(
            total=total,
            start=self._clock() if start is None else start,
            duration=duration,
            cliff=cliff,
        )
        self._plans[stream_id] = plan
        return plan

    def plan(self, stream_id: str) -> VestingPlan:
        plan = self._plans.get(stream_id)
        if plan is None:
            raise NotFound("stream", stream_id)
        return plan

    def unlocked_amount(self, stream_id: str) -> int:
        plan = self.plan(stream_id)
        return max(0, plan.accrued(self._clock()) - plan.claimed)

    def claim(self, stream_id: str, amount: int) -> int:
        if amount < 0:
            raise InvalidParam("amount", "must be non-negative")
        paid = min(amount, self.unlocked_amount(stream_id))
        self.plan(stream_id).claimed += paid
        return paid

    def snapshot(self) -> Dict[str, VestingPlan]:
        return copy.deepcopy(self._plans)

    def restore(self, state: Dict[str, VestingPlan]) -> None:
        self._plans = state


class UpkeepAccounts:
    """Operating balances kept by the automation registry."""

    def __init__(self, balances: Optional[Dict[str, int]] = None) -> None:
        self._balances: Dict[str, int] = dict(balances or {})

    def balance(self, account_id: str) -> int:
        return self._balances.get(account_id, 0)

    def set_balance(self, account_id: str, amount: int) -> None:
        if amount < 0:
            raise InvalidParam("amount", "must be non-negative")
        self._balances[account_id] = amount

    def top_up(self, account_id: str, amount: int) -> None:
        if amount < 0:
            raise InvalidParam("amount", "must be non-negative")
        self._balances[account_id] = self.balance(account_id) + amount

    def charge(self, account_id: str, amount: int) -> int:
        """Debit a performed upkeep's fee, never below zero."""

        charged = min(amount, self.balance(account_id))
        self._balances[account_id] = self.balance(account_id) - charged
        return charged

    def snapshot(self) -> Dict[str, int]:
        return dict(self._balances)

    def restore(self, state: Dict[str, int]) -> None:
        self._balances = dict(state)


class OracleExchange:
    """Swap venue filling at the oracle rate minus a pool fee.

    A swap whose output would fall short of the caller's minimum fails as a
    whole with ``SwapBelowMinimum``; nothing is partially filled.
    """

    def __init__(self, source_feed: PriceFeed, target_feed: PriceFeed, *, fee_bps: int = 0) -> None:
        self._converter = PriceConverter(source_feed, target_feed)
        self.fee_bps = validate_tolerance(fee_bps)
        self.total_in = 0
        self.total_out = 0
        self.swaps: List[tuple[int, int, bytes]] = []

    def quote(self, amount_in: int) -> int:
        gross = self._converter.to_target(amount_in)
        return gross * (10_000 - self.fee_bps) // 10_000

    def swap(self, amount_in: int, min_amount_out: int, path: bytes) -> int:
        if amount_in <= 0:
            raise InvalidParam("amount_in", "must be positive")
        if not path:
            raise InvalidParam("path")
        amount_out = self.quote(amount_in)
        if amount_out < min_amount_out:
            raise SwapBelowMinimum(min_amount_out)
        self.total_in += amount_in
        self.total_out += amount_out
        self.swaps.append((amount_in, min_amount_out, bytes(path)))
        return amount_out

    def snapshot(self) -> tuple[int, int, int]:
        return self.total_in, self.total_out, len(self.swaps)

    def restore(self, state: tuple[int, int, int]) -> None:
        self.total_in, self.total_out, count = state
        del self.swaps[count:]


class SurplusBuffer:
    """Collects accrued funds returned above the refill cap."""

    def __init__(self) -> None:
        self.total = 0

    def absorb(self, amount: int) -> None:
        if amount < 0:
            raise InvalidParam("amount", "must be non-negative")
        self.total += amount

    def snapshot(self) -> int:
        return self.total

    def restore(self, state: int) -> None:
        self.total = state


__all__ = [
    "Journaled",
    "Ledger",
    "ManualClock",
    "OracleExchange",
    "SurplusBuffer",
    "UpkeepAccounts",
    "VestingPlan",
    "VestingStreams",
    "is_journaled",
]
