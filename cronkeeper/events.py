"""Events emitted by the keeper and the treasury refill engine."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeeperEvent:
    """Base event; ``name`` identifies the kind for subscribers and logs."""

    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def job_executed(handle: str, network: str) -> KeeperEvent:
    return KeeperEvent("ExecutedJob", {"job": handle, "network": network})


def swapped_for_payment(amount_in: int, amount_out: int) -> KeeperEvent:
    return KeeperEvent("SwappedForPayment", {"amountIn": amount_in, "amountOut": amount_out})


def upkeep_refunded(amount: int) -> KeeperEvent:
    return KeeperEvent("UpkeepRefunded", {"amount": amount})


def surplus_returned(amount: int) -> KeeperEvent:
    return KeeperEvent("SurplusReturned", {"amount": amount})


Subscriber = Callable[[KeeperEvent], None]


class EventLog:
    """Append-only record of emitted events with synchronous subscribers.

    Events are staged while a transaction scope is open and only published
    once it commits, so subscribers never see events of a rolled back action.
    """

    def __init__(self) -> None:
        self._events: List[KeeperEvent] = []
        self._subscribers: List[Subscriber] = []
        self._depth = 0

    @contextlib.contextmanager
    def staged(self, scope: Optional[ContextManager[Any]] = None) -> Iterator[None]:
        """Run a block inside ``scope``; keep its events only if it succeeds.

        Nested stages publish nothing themselves; the outermost stage
        publishes everything emitted since it opened.
        """

        mark = self.mark()
        self._depth += 1
        try:
            with scope if scope is not None else contextlib.nullcontext():
                yield
        except BaseException:
            self._depth -= 1
            self.discard_since(mark)
            raise
        self._depth -= 1
        if self._depth == 0:
            self.publish_since(mark)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def emit(self, event: KeeperEvent) -> None:
        self._events.append(event)
        LOGGER.debug("Event %s %s", event.name, event.payload)
        if self._depth == 0:
            self.publish_since(len(self._events) - 1)

    def mark(self) -> int:
        return len(self._events)

    def discard_since(self, mark: int) -> None:
        del self._events[mark:]

    def publish_since(self, mark: int) -> None:
        for event in self._events[mark:]:
            for subscriber in list(self._subscribers):
                subscriber(event)

    @property
    def events(self) -> List[KeeperEvent]:
        return list(self._events)

    def named(self, name: str) -> List[KeeperEvent]:
        return [event for event in self._events if event.name == name]


__all__ = [
    "EventLog",
    "KeeperEvent",
    "job_executed",
    "surplus_returned",
    "swapped_for_payment",
    "upkeep_refunded",
]
