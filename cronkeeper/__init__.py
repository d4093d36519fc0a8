"""Keeper for a recurring job network.

The package elects which cooperating network holds the turn
(:class:`~cronkeeper.scheduler.Sequencer`), dispatches at most one due job per
invocation (:class:`~cronkeeper.keeper.DispatchEngine`) and keeps the keeper's
operating balance funded from a vesting stream
(:class:`~cronkeeper.treasury.TreasuryRefillEngine`).
"""

from .access import DEPLOYER, Ownable
from .actions import Refill, RunJob, decode_action, encode_action
from .errors import (
    ActionNoLongerValid,
    CollaboratorFailure,
    ConfigurationError,
    InvalidParam,
    KeeperError,
    NotAuthorized,
    NotFound,
    PreconditionFailure,
    PriceFeedMismatch,
    RefillNotNeeded,
    SwapBelowMinimum,
)
from .events import EventLog, KeeperEvent
from .jobs import CooldownJob, Job, JobRegistry
from .keeper import DispatchEngine, ExecutionOutcome, KeeperPhase
from .pricing import PriceConverter, StaticPriceFeed, SwapParameters, convert, minimum_output
from .scheduler import Participant, Sequencer
from .treasury import RefillResult, TreasuryRefillEngine, TreasuryState

__all__ = [
    "DEPLOYER",
    "ActionNoLongerValid",
    "CollaboratorFailure",
    "ConfigurationError",
    "CooldownJob",
    "DispatchEngine",
    "EventLog",
    "ExecutionOutcome",
    "InvalidParam",
    "Job",
    "JobRegistry",
    "KeeperError",
    "KeeperEvent",
    "KeeperPhase",
    "NotAuthorized",
    "NotFound",
    "Ownable",
    "Participant",
    "PreconditionFailure",
    "PriceConverter",
    "PriceFeedMismatch",
    "Refill",
    "RefillNotNeeded",
    "RefillResult",
    "RunJob",
    "Sequencer",
    "StaticPriceFeed",
    "SwapBelowMinimum",
    "SwapParameters",
    "TreasuryRefillEngine",
    "TreasuryState",
    "convert",
    "decode_action",
    "encode_action",
    "minimum_output",
]
