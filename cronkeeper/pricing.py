"""Oracle-based price conversion and slippage floors.

Both helpers operate on integer token units. Feeds report a price for their
asset in a shared quote unit (for example USD) together with a decimal
precision; a pair of feeds must agree on that precision before any amount is
converted between the two assets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Tuple

from .errors import InvalidParam, PriceFeedMismatch

BPS_DENOMINATOR = 10_000


class PriceFeed(Protocol):
    """Subset of an oracle aggregator consumed by the converter."""

    @property
    def decimals(self) -> int:  # pragma: no cover - protocol
        """Precision the feed reports its answers in."""

    def latest_price(self) -> Tuple[int, int]:  # pragma: no cover - protocol
        """Return ``(value, precision)`` for the most recent round."""


@dataclass(slots=True)
class StaticPriceFeed:
    """Feed returning a fixed answer; mirrors a mock aggregator."""

    value: int
    precision: int = 8

    def __post_init__(self) -> None:
        if not isinstance(self.precision, int) or self.precision < 0:
            raise InvalidParam("precision", "must be a non-negative integer")

    @property
    def decimals(self) -> int:
        return self.precision

    def latest_price(self) -> Tuple[int, int]:
        return self.value, self.precision

    def update(self, value: int) -> None:
        self.value = value


def ensure_matching_precision(feed_a: PriceFeed, feed_b: PriceFeed) -> int:
    """Return the shared precision of two feeds or raise ``PriceFeedMismatch``."""

    if feed_a.decimals != feed_b.decimals:
        raise PriceFeedMismatch(feed_a.decimals, feed_b.decimals)
    return feed_a.decimals


def convert(amount: int, feed_a: PriceFeed, feed_b: PriceFeed) -> int:
    """Convert ``amount`` of asset A into asset B using two oracle answers.

    The A/B price is first expressed at the feeds' common precision and only
    then applied to the amount, so the intermediate ratio keeps ``precision``
    digits instead of truncating to a whole number.
    """

    if amount < 0:
        raise InvalidParam("amount", "must be non-negative")
    price_a, precision_a = feed_a.latest_price()
    price_b, precision_b = feed_b.latest_price()
    if precision_a != precision_b:
        raise PriceFeedMismatch(precision_a, precision_b)
    if price_a <= 0 or price_b <= 0:
        raise InvalidParam("price", f"feeds must report positive answers ({price_a}, {price_b})")
    scale = 10**precision_a
    price = price_a * scale // price_b
    return amount * price // scale


def minimum_output(expected: int, tolerance_bps: int) -> int:
    """Return the smallest acceptable swap output for a slippage tolerance."""

    validate_tolerance(tolerance_bps)
    if expected < 0:
        raise InvalidParam("expected", "must be non-negative")
    return expected * (BPS_DENOMINATOR - tolerance_bps) // BPS_DENOMINATOR


def validate_tolerance(tolerance_bps: int) -> int:
    if not isinstance(tolerance_bps, int) or not 0 <= tolerance_bps <= BPS_DENOMINATOR:
        raise InvalidParam("tolerance_bps", f"must lie within [0, {BPS_DENOMINATOR}]")
    return tolerance_bps


class PriceConverter:
    """A checked pair of feeds converting between two assets.

    The precision check runs once, when the pair is bound. ``convert`` still
    compares the precision attached to each answer, which catches a feed that
    was reconfigured after binding.
    """

    def __init__(self, source_feed: PriceFeed, target_feed: PriceFeed) -> None:
        if source_feed is None:
            raise InvalidParam("source_feed")
        if target_feed is None:
            raise InvalidParam("target_feed")
        self.precision = ensure_matching_precision(source_feed, target_feed)
        self.source_feed = source_feed
        self.target_feed = target_feed

    def to_target(self, amount: int) -> int:
        """Convert an amount of the source asset into the target asset."""

        return convert(amount, self.source_feed, self.target_feed)

    def to_source(self, amount: int) -> int:
        """Convert an amount of the target asset back into the source asset."""

        return convert(amount, self.target_feed, self.source_feed)


@dataclass(slots=True)
class SwapParameters:
    """Slippage tolerance and routing path used for treasury swaps."""

    tolerance_bps: int
    path: bytes

    def __post_init__(self) -> None:
        validate_tolerance(self.tolerance_bps)
        if not isinstance(self.path, (bytes, bytearray)) or len(self.path) == 0:
            raise InvalidParam("path", "routing path must be non-empty bytes")
        self.path = bytes(self.path)

    def minimum_output(self, expected: int) -> int:
        return minimum_output(expected, self.tolerance_bps)


__all__ = [
    "BPS_DENOMINATOR",
    "PriceConverter",
    "PriceFeed",
    "StaticPriceFeed",
    "SwapParameters",
    "convert",
    "ensure_matching_precision",
    "minimum_output",
    "validate_tolerance",
]
