"""Exception hierarchy shared by the keeper components."""

from __future__ import annotations


class KeeperError(RuntimeError):
    """Base class for every failure raised by :mod:`cronkeeper`."""


class ConfigurationError(KeeperError):
    """Raised eagerly when a setup or administrative call is invalid."""


class InvalidParam(ConfigurationError):
    """A null, empty, zero or out-of-range argument was supplied."""

    def __init__(self, field: str, detail: str | None = None) -> None:
        message = f"invalid {field}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.field = field
        self.detail = detail


class PriceFeedMismatch(ConfigurationError):
    """The two feeds of a price pair report different precisions."""

    def __init__(self, precision_a: int, precision_b: int) -> None:
        super().__init__(
            f"price feed precision mismatch ({precision_a} != {precision_b})"
        )
        self.precision_a = precision_a
        self.precision_b = precision_b


class PreconditionFailure(KeeperError):
    """Expected outcome signalling that there is no work to do right now."""


class NotFound(PreconditionFailure):
    """The referenced participant or job is not registered."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class RefillNotNeeded(PreconditionFailure):
    """The treasury does not need (or cannot afford) a refill."""

    def __init__(self, reason: str = "refill not needed") -> None:
        super().__init__(reason)
        self.reason = reason


class ActionNoLongerValid(PreconditionFailure):
    """The action selected by ``evaluate`` no longer holds at ``execute``."""

    def __init__(self, action: str, reason: str) -> None:
        super().__init__(f"{action} no longer valid: {reason}")
        self.action = action
        self.reason = reason


class CollaboratorFailure(KeeperError):
    """An external collaborator (exchange, accrual source) refused the call."""


class SwapBelowMinimum(CollaboratorFailure):
    """The exchange could not deliver the guaranteed minimum output."""

    def __init__(self, minimum: int, received: int | None = None) -> None:
        if received is None:
            message = f"swap cannot meet minimum output {minimum}"
        else:
            message = f"swap returned {received}, below minimum output {minimum}"
        super().__init__(message)
        self.minimum = minimum
        self.received = received


class NotAuthorized(KeeperError):
    """An administrative call was made by someone other than the owner."""

    def __init__(self, caller: str | None) -> None:
        super().__init__(f"caller is not the owner: {caller!r}")
        self.caller = caller


__all__ = [
    "ActionNoLongerValid",
    "CollaboratorFailure",
    "ConfigurationError",
    "InvalidParam",
    "KeeperError",
    "NotAuthorized",
    "NotFound",
    "PreconditionFailure",
    "PriceFeedMismatch",
    "RefillNotNeeded",
    "SwapBelowMinimum",
]
