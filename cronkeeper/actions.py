"""Actions selected by the keeper and their byte encoding.

``evaluate`` hands the invoking registry an opaque payload which comes back
unchanged to ``execute``. The payload is canonical JSON so the same decision
always encodes to the same bytes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Union

from .errors import InvalidParam

RUN_JOB = "runJob"
REFILL = "refundUpkeep"


@dataclass(frozen=True, slots=True)
class RunJob:
    """Execute the registered job ``handle`` with ``args``."""

    handle: str
    args: bytes = b""

    @property
    def kind(self) -> str:
        return RUN_JOB


@dataclass(frozen=True, slots=True)
class Refill:
    """Top up the operating account from the treasury."""

    @property
    def kind(self) -> str:
        return REFILL


Action = Union[RunJob, Refill]


def encode_action(action: Action) -> bytes:
    if isinstance(action, RunJob):
        payload = {"action": RUN_JOB, "job": action.handle, "args": action.args.hex()}
    elif isinstance(action, Refill):
        payload = {"action": REFILL}
    else:
        raise InvalidParam("action", f"unsupported action type {type(action).__name__}")
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_action(data: bytes) -> Action:
    if not isinstance(data, (bytes, bytearray)) or not data:
        raise InvalidParam("action", "payload must be non-empty bytes")
    try:
        payload = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidParam("action", f"malformed payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidParam("action", "payload must be an object")

    kind = payload.get("action")
    if kind == REFILL:
        return Refill()
    if kind == RUN_JOB:
        handle = payload.get("job")
        if not isinstance(handle, str) or not handle:
            raise InvalidParam("action", "runJob requires a job handle")
        raw_args = payload.get("args") or ""
        try:
            args = bytes.fromhex(raw_args)
        except (TypeError, ValueError) as exc:
            raise InvalidParam("action", "runJob args must be hex encoded") from exc
        return RunJob(handle=handle, args=args)
    raise InvalidParam("action", f"unknown action {kind!r}")


__all__ = ["Action", "REFILL", "RUN_JOB", "Refill", "RunJob", "decode_action", "encode_action"]
