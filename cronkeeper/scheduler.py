"""Round-robin leader election across cooperating keeper networks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .access import DEPLOYER, Ownable
from .errors import InvalidParam, NotFound

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW = 10


def _validate_window(window: object) -> int:
    if isinstance(window, bool) or not isinstance(window, int) or window <= 0:
        raise InvalidParam("window", "must be a positive integer")
    return window


def _validate_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidParam("network", "name must be a non-empty string")
    return name


@dataclass(slots=True)
class Participant:
    """A network taking turns with the others; ``window`` is in ticks."""

    name: str
    window: int

    def __post_init__(self) -> None:
        _validate_name(self.name)
        _validate_window(self.window)


class Sequencer(Ownable):
    """Assigns every tick to exactly one registered network.

    Each participant owns a contiguous slice of length ``window`` inside a
    cycle of ``total_window()`` ticks, laid out in registration order. The
    leader at tick ``t`` is the owner of slot ``t % total_window()``. Nothing
    about the current leader is stored: membership changes apply to every
    subsequent tick at once. Changing membership or windows is restricted to
    the schedule's owner.
    """

    def __init__(self, *, default_window: int = DEFAULT_WINDOW, owner: str = DEPLOYER) -> None:
        super().__init__(owner)
        self._default_window = _validate_window(default_window)
        self._participants: Dict[str, Participant] = {}

    @property
    def default_window(self) -> int:
        return self._default_window

    def set_default_window(self, window: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        self._default_window = _validate_window(window)

    def add_participant(
        self,
        name: str,
        window: Optional[int] = None,
        *,
        caller: Optional[str] = None,
    ) -> Participant:
        """Register ``name`` at the end of the rotation."""

        self._require_owner(caller)
        _validate_name(name)
        if name in self._participants:
            raise InvalidParam("network", f"{name!r} is already registered")
        participant = Participant(name=name, window=self._default_window if window is None else window)
        self._participants[name] = participant
        LOGGER.info("Registered network %s with window %d", name, participant.window)
        return participant

    def remove_participant(self, name: str, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if name not in self._participants:
            raise NotFound("network", name)
        del self._participants[name]
        LOGGER.info("Removed network %s", name)

    def set_window(self, name: str, window: int, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        _validate_window(window)
        participant = self._participants.get(name)
        if participant is None:
            raise NotFound("network", name)
        participant.window = window
        LOGGER.info("Network %s window set to %d", name, window)

    def has_participant(self, name: str) -> bool:
        return name in self._participants

    def window_of(self, name: str) -> int:
        participant = self._participants.get(name)
        if participant is None:
            raise NotFound("network", name)
        return participant.window

    def participants(self) -> List[Participant]:
        return [Participant(p.name, p.window) for p in self._participants.values()]

    def total_window(self) -> int:
        return sum(p.window for p in self._participants.values())

    def slots(self) -> List[Tuple[str, int, int]]:
        """Return ``(name, start, end)`` ranges partitioning one cycle."""

        ranges: List[Tuple[str, int, int]] = []
        start = 0
        for participant in self._participants.values():
            end = start + participant.window
            ranges.append((participant.name, start, end))
            start = end
        return ranges

    def leader_at(self, tick: int) -> Optional[str]:
        """Return the network holding the turn at ``tick``, if any."""

        if tick < 0:
            raise InvalidParam("tick", "must be non-negative")
        total = self.total_window()
        if total == 0:
            return None
        slot = tick % total
        for name, start, end in self.slots():
            if start <= slot < end:
                return name
        raise AssertionError("slot ranges must cover the whole cycle")  # pragma: no cover

    def is_leader(self, name: str, tick: int) -> bool:
        return self.leader_at(tick) == name

    def snapshot(self) -> Tuple[int, List[Participant]]:
        return self._default_window, self.participants()

    def restore(self, state: Tuple[int, List[Participant]]) -> None:
        default_window, participants = state
        self._default_window = default_window
        self._participants = {p.name: Participant(p.name, p.window) for p in participants}

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, name: object) -> bool:
        return name in self._participants


__all__ = ["DEFAULT_WINDOW", "Participant", "Sequencer"]
