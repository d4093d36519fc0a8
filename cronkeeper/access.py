"""Single-owner access control for administrative setters."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import InvalidParam, NotAuthorized

LOGGER = logging.getLogger(__name__)

DEPLOYER = "deployer"


class Ownable:
    """Restricts administrative calls to one privileged caller.

    Every instance has an owner. Components constructed without one are owned
    by :data:`DEPLOYER`, so an administrative call must always name a caller
    that matches.
    """

    def __init__(self, owner: str = DEPLOYER) -> None:
        if not isinstance(owner, str) or not owner:
            raise InvalidParam("owner", "must be a non-empty string")
        self._owner = owner

    @property
    def owner(self) -> str:
        return self._owner

    def _require_owner(self, caller: Optional[str]) -> None:
        if caller != self._owner:
            LOGGER.warning("Rejected administrative call from %r on %s", caller, type(self).__name__)
            raise NotAuthorized(caller)

    def transfer_ownership(self, new_owner: str, *, caller: Optional[str] = None) -> None:
        self._require_owner(caller)
        if not isinstance(new_owner, str) or not new_owner:
            raise InvalidParam("owner", "must be a non-empty string")
        LOGGER.info("Ownership of %s transferred to %s", type(self).__name__, new_owner)
        self._owner = new_owner


__all__ = ["DEPLOYER", "Ownable"]
