"""Treasury refill engine keeping the keeper's operating account funded.

The engine watches the operating (upkeep) balance of the keeper in the
automation payment token. When that balance, valued in the treasury's source
asset, falls below ``threshold`` it claims accrued funds from a vesting
stream, swaps them for the payment token with an oracle-derived minimum
output and tops the operating account up with the proceeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, ContextManager, Optional, Protocol, Tuple

from .access import DEPLOYER, Ownable
from .errors import CollaboratorFailure, InvalidParam, RefillNotNeeded, SwapBelowMinimum
from .events import EventLog, surplus_returned, swapped_for_payment, upkeep_refunded
from .ledger import Ledger, is_journaled
from .pricing import PriceConverter, PriceFeed, SwapParameters, validate_tolerance

LOGGER = logging.getLogger(__name__)

TransactionFactory = Callable[[], ContextManager[object]]


class AccrualSource(Protocol):
    """Vesting stream paying the treasury over time."""

    def unlocked_amount(self, stream_id: str) -> int:  # pragma: no cover - protocol
        """Amount currently claimable from ``stream_id``."""

    def claim(self, stream_id: str, amount: int) -> int:  # pragma: no cover - protocol
        """Claim up to ``amount`` and return what was actually paid out."""


class Exchange(Protocol):
    """Swap venue converting the source asset into the payment token."""

    def swap(self, amount_in: int, min_amount_out: int, path: bytes) -> int:  # pragma: no cover - protocol
        """Swap ``amount_in`` and fail unless at least ``min_amount_out`` is delivered."""


class OperatingAccountRegistry(Protocol):
    """Automation registry holding the keeper's operating balance."""

    def balance(self, account_id: str) -> int:  # pragma: no cover - protocol
        """Current operating balance in payment token units."""

    def top_up(self, account_id: str, amount: int) -> None:  # pragma: no cover - protocol
        """Credit ``amount`` payment token units to ``account_id``."""


class SurplusSink(Protocol):
    """Destination for accrued funds above the per-refill cap."""

    def absorb(self, amount: int) -> None:  # pragma: no cover - protocol
        """Take ownership of ``amount`` source asset units."""


def _positive_int(field: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidParam(field, "must be a positive integer")
    return value


def _non_empty(field: str, value: object) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidParam(field, "must be a non-empty string")
    return value


@dataclass(slots=True)
class TreasuryState:
    """Refill thresholds plus the source asset already held by the treasury.

    Attributes:
        threshold: Operating balance, valued in the source asset, below which
            a refill becomes necessary.
        max_deposit: Most source asset a single refill may draw into the swap.
        min_withdraw: Smallest amount worth a refill transaction.
        idle_balance: Source asset held from earlier claims or direct
            deposits and not yet swapped.
    """

    threshold: int
    max_deposit: int
    min_withdraw: int
    idle_balance: int = 0

    def __post_init__(self) -> None:
        _positive_int("threshold", self.threshold)
        _positive_int("max_deposit", self.max_deposit)
        _positive_int("min_withdraw", self.min_withdraw)
        if self.min_withdraw > self.max_deposit:
            raise InvalidParam("min_withdraw", "cannot exceed max_deposit")
        if not isinstance(self.idle_balance, int) or self.idle_balance < 0:
            raise InvalidParam("idle_balance", "must be a non-negative integer")


@dataclass(frozen=True, slots=True)
class RefillResult:
    """Outcome of a completed refill."""

    amount_converted: int
    amount_received: int
    amount_claimed: int = 0
    surplus: int = 0
    expected_output: int = 0
    minimum_output: int = 0


class TreasuryRefillEngine(Ownable):
    """Decides when the operating account needs funds and provides them."""

    def __init__(
        self,
        state: TreasuryState,
        swap: SwapParameters,
        *,
        account_id: str,
        stream_id: str,
        accrual: AccrualSource,
        exchange: Exchange,
        accounts: OperatingAccountRegistry,
        source_feed: PriceFeed,
        target_feed: PriceFeed,
        surplus_sink: Optional[SurplusSink] = None,
        allow_idle_refill: bool = True,
        events: Optional[EventLog] = None,
        transaction: Optional[TransactionFactory] = None,
        owner: str = DEPLOYER,
    ) -> None:
        super().__init__(owner)
        for field, value in (("accrual", accrual), ("exchange", exchange), ("accounts", accounts)):
            if value is None:
                raise InvalidParam(field)
        self._state = state
        self._swap = swap
        self._account_id = _non_empty("account_id", account_id)
        self._stream_id = _non_empty("stream_id", stream_id)
        self._accrual = accrual
        self._exchange = exchange
        self._accounts = accounts
        self._converter = PriceConverter(source_feed, target_feed)
        self._surplus_sink = surplus_sink
        self.allow_idle_refill = bool(allow_idle_refill)
        self._events = events or EventLog()
        self._transaction = transaction

    # ------------------------------------------------------------------
    # Read-only views
    @property
    def state(self) -> TreasuryState:
        return self._state

    @property
    def swap_parameters(self) -> SwapParameters:
        return self._swap

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def stream_id(self) -> str:
        return self._stream_id

    @property
    def surplus_sink(self) -> Optional[SurplusSink]:
        return self._surplus_sink

    @property
    def converter(self) -> PriceConverter:
        return self._converter

    @property
    def events(self) -> EventLog:
        return self._events

    def operating_balance(self) -> int:
        return self._accounts.balance(self._account_id)

    def buffer_size(self) -> int:
        """Operating balance valued in the source asset."""

        return self._converter.to_source(self.operating_balance())

    def idle_balance(self) -> int:
        return self._state.idle_balance

    def claimable(self) -> int:
        return self._accrual.unlocked_amount(self._stream_id)

    def should_refill(self) -> bool:
        """Return ``True`` when the buffer is low and a refill can be funded."""

        state = self._state
        buffer = self.buffer_size()
        if buffer >= state.threshold:
            LOGGER.debug("Refill not needed: buffer %d >= threshold %d", buffer, state.threshold)
            return False
        unlocked = self.claimable()
        if unlocked >= state.min_withdraw:
            return True
        if self.allow_idle_refill and state.idle_balance >= state.min_withdraw:
            LOGGER.debug("Idle balance %d allows an emergency refill", state.idle_balance)
            return True
        LOGGER.debug(
            "Refill not fundable: unlocked %d and idle %d below minimum %d",
            unlocked,
            state.idle_balance,
            state.min_withdraw,
        )
        return False

    # ------------------------------------------------------------------
    # Refill
    def refill(self) -> RefillResult:
        """Claim, swap and top up in one all-or-nothing step.

        Without an injected transaction factory the engine journals itself and
        every collaborator exposing ``snapshot()``/``restore()``. Collaborators
        that cannot be journaled are only rolled back by a scope that covers
        them, so production wiring should always pass ``transaction``.
        """

        scope = self._transaction() if self._transaction is not None else self._local_scope()
        with self._events.staged(scope):
            return self._refill()

    def _local_scope(self) -> ContextManager[object]:
        ledger = Ledger()
        ledger.track(self)
        for collaborator in (self._accrual, self._accounts, self._exchange, self._surplus_sink):
            if is_journaled(collaborator):
                ledger.track(collaborator)
        return ledger.transaction()

    def _refill(self) -> RefillResult:
        if not self.should_refill():
            raise RefillNotNeeded()
        state = self._state

        claimed, surplus = self._claim()
        state.idle_balance += claimed

        available = min(state.idle_balance, state.max_deposit)
        if available < state.min_withdraw:
            raise RefillNotNeeded(
                f"available {available} below minimum withdrawal {state.min_withdraw}"
            )

        expected = self._converter.to_target(available)
        floor = self._swap.minimum_output(expected)
        received = self._exchange.swap(available, floor, self._swap.path)
        if received < floor:
            raise SwapBelowMinimum(floor, received)
        state.idle_balance -= available
        self._events.emit(swapped_for_payment(available, received))

        self._accounts.top_up(self._account_id, received)
        self._events.emit(upkeep_refunded(received))
        LOGGER.info(
            "Refilled account %s: converted=%d received=%d minimum=%d claimed=%d surplus=%d",
            self._account_id,
            available,
            received,
            floor,
            claimed,
            surplus,
        )
        return RefillResult(
            amount_converted=available,
            amount_received=received,
            amount_claimed=claimed,
            surplus=surplus,
            expected_output=expected,
            minimum_output=floor,
        )

    def _claim(self) -> tuple[int, int]:
        """Claim accrued funds; return ``(kept, routed_to_surplus)``."""

        unlocked = self.claimable()
        if unlocked <= 0:
            return 0, 0
        cap = self._state.max_deposit
        if self._surplus_sink is None:
            requested = min(unlocked, cap)
            paid = self._accrual.claim(self._stream_id, requested)
            if paid > requested:
                raise CollaboratorFailure(f"accrual source paid {paid}, more than requested {requested}")
            return paid, 0

        paid = self._accrual.claim(self._stream_id, unlocked)
        if paid > unlocked:
            raise CollaboratorFailure(f"accrual source paid {paid}, more than requested {unlocked}")
        kept = min(paid, cap)
        surplus = paid - kept
        if surplus:
            self._surplus_sink.absorb(surplus)
            self._events.emit(surplus_returned(surplus))
        return kept, surplus

    def deposit_idle(self, amount: int) -> None:
        """Record source asset sent straight to the treasury."""

        _positive_int("amount", amount)
        self._state.idle_balance += amount

    def snapshot(self) -> Tuple[Any, ...]:
        return (
            replace(self._state),
            self._swap,
            self.allow_idle_refill,
            self._account_id,
            self._stream_id,
            self._surplus_sink,
        )

    def restore(self, state: Tuple[Any, ...]) -> None:
        (
            saved,
            self._swap,
            self.allow_idle_refill,
            self._account_id,
            self._stream_id,
            self._surplus_sink,
        ) = state
        for item in fields(saved):
            setattr(self._state, item.name, getattr(saved, item.name))

    # ------------------------------------------------------------------
    # Administration
    def set_threshold(self, threshold: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._state.threshold = _positive_int("threshold", threshold)
        LOGGER.info("Refill threshold set to %d", threshold)

    def set_max_deposit(self, max_deposit: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        _positive_int("max_deposit", max_deposit)
        if max_deposit < self._state.min_withdraw:
            raise InvalidParam("max_deposit", "cannot be below min_withdraw")
        self._state.max_deposit = max_deposit
        LOGGER.info("Refill cap set to %d", max_deposit)

    def set_min_withdraw(self, min_withdraw: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        _positive_int("min_withdraw", min_withdraw)
        if min_withdraw > self._state.max_deposit:
            raise InvalidParam("min_withdraw", "cannot exceed max_deposit")
        self._state.min_withdraw = min_withdraw
        LOGGER.info("Minimum withdrawal set to %d", min_withdraw)

    def set_slippage_tolerance(self, tolerance_bps: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        validate_tolerance(tolerance_bps)
        self._swap = SwapParameters(tolerance_bps=tolerance_bps, path=self._swap.path)
        LOGGER.info("Slippage tolerance set to %d bps", tolerance_bps)

    def set_path(self, path: bytes, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._swap = SwapParameters(tolerance_bps=self._swap.tolerance_bps, path=path)
        LOGGER.info("Swap path updated (%d bytes)", len(self._swap.path))

    def set_account(self, account_id: str, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._account_id = _non_empty("account_id", account_id)
        LOGGER.info("Operating account set to %s", account_id)

    def set_stream(self, stream_id: str, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._stream_id = _non_empty("stream_id", stream_id)
        LOGGER.info("Accrual stream set to %s", stream_id)

    def set_price_feeds(
        self,
        source_feed: PriceFeed,
        target_feed: PriceFeed,
        *,
        caller: Optional[str] = None,
    ) -> None:
        self._require_owner(caller)
        self._converter = PriceConverter(source_feed, target_feed)
        LOGGER.info("Price feeds updated (precision %d)", self._converter.precision)

    def set_exchange(self, exchange: Exchange, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if exchange is None:
            raise InvalidParam("exchange")
        self._exchange = exchange

    def set_accounts(self, accounts: OperatingAccountRegistry, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if accounts is None:
            raise InvalidParam("accounts")
        self._accounts = accounts

    def set_surplus_sink(self, sink: Optional[SurplusSink], *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._surplus_sink = sink


__all__ = [
    "AccrualSource",
    "Exchange",
    "OperatingAccountRegistry",
    "RefillResult",
    "SurplusSink",
    "TransactionFactory",
    "TreasuryRefillEngine",
    "TreasuryState",
]
