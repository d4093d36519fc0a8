"""Configuration models for the keeper service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .access import DEPLOYER
from .errors import InvalidParam
from .pricing import validate_tolerance

CONFIG_ENV = "CRONKEEPER_CONFIG"
_DEFAULT_PATH = Path(__file__).resolve().parents[1] / "config" / "cronkeeper.yaml"


def _resolve(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _int(field_name: str, value: Any, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise InvalidParam(field_name, "must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParam(field_name, "must be an integer") from exc
    if number < minimum:
        raise InvalidParam(field_name, f"must be >= {minimum}")
    return number


def _bool(field_name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidParam(field_name, "must be true or false")
    return value


def _path_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value.startswith("0x") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise InvalidParam("path", "must be hex encoded") from exc
    else:
        raise InvalidParam("path", "must be hex encoded")
    if not raw:
        raise InvalidParam("path", "routing path must be non-empty")
    return raw


@dataclass
class ParticipantConfig:
    name: str
    window: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidParam("network", "participant name must be a non-empty string")
        if self.window is not None:
            self.window = _int("window", self.window, minimum=1)


@dataclass
class JobConfig:
    """A bundled cooldown job, due every ``max_duration`` ticks."""

    handle: str
    max_duration: int

    def __post_init__(self) -> None:
        if not isinstance(self.handle, str) or not self.handle:
            raise InvalidParam("job", "handle must be a non-empty string")
        self.max_duration = _int("max_duration", self.max_duration, minimum=1)


@dataclass
class FeedConfig:
    price: int
    decimals: int = 8

    def __post_init__(self) -> None:
        self.price = _int("price", self.price, minimum=1)
        self.decimals = _int("decimals", self.decimals)


@dataclass
class TreasuryConfig:
    """Refill policy; amounts are integer token units."""

    threshold: int
    max_deposit: int
    min_withdraw: int
    slippage_tolerance_bps: int
    path: bytes
    account_id: str
    stream_id: str
    allow_idle_refill: bool = True
    route_surplus: bool = False

    def __post_init__(self) -> None:
        self.threshold = _int("threshold", self.threshold, minimum=1)
        self.max_deposit = _int("max_deposit", self.max_deposit, minimum=1)
        self.min_withdraw = _int("min_withdraw", self.min_withdraw, minimum=1)
        if self.min_withdraw > self.max_deposit:
            raise InvalidParam("min_withdraw", "cannot exceed max_deposit")
        self.slippage_tolerance_bps = validate_tolerance(
            _int("tolerance_bps", self.slippage_tolerance_bps)
        )
        self.path = _path_bytes(self.path)
        self.allow_idle_refill = _bool("allow_idle_refill", self.allow_idle_refill)
        self.route_surplus = _bool("route_surplus", self.route_surplus)
        for name in ("account_id", "stream_id"):
            value = getattr(self, name)
            if value is None or str(value) == "":
                raise InvalidParam(name, "must be non-empty")
            setattr(self, name, str(value))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TreasuryConfig":
        return cls(
            threshold=_resolve(data, "threshold"),
            max_deposit=_resolve(data, "max_deposit", "maxDeposit", "maxDepositAmt"),
            min_withdraw=_resolve(data, "min_withdraw", "minWithdraw", "minWithdrawAmt"),
            slippage_tolerance_bps=_resolve(
                data, "slippage_tolerance_bps", "slippageToleranceBps", default=100
            ),
            path=_resolve(data, "path", "swapPath", "uniswapPath"),
            account_id=_resolve(data, "account_id", "accountId", "upkeepId"),
            stream_id=_resolve(data, "stream_id", "streamId", "vestId"),
            allow_idle_refill=_resolve(data, "allow_idle_refill", "allowIdleRefill", default=True),
            route_surplus=_resolve(data, "route_surplus", "routeSurplus", default=False),
        )


@dataclass
class SimulationConfig:
    """Initial state for the in-memory collaborators."""

    start_tick: int = 0
    operating_balance: int = 0
    vesting_total: int = 0
    vesting_duration: int = 1
    vesting_cliff: int = 0
    exchange_fee_bps: int = 0
    upkeep_fee: int = 0
    source_feed: FeedConfig = field(default_factory=lambda: FeedConfig(price=100_000_000))
    target_feed: FeedConfig = field(default_factory=lambda: FeedConfig(price=100_000_000))

    def __post_init__(self) -> None:
        self.start_tick = _int("start_tick", self.start_tick)
        self.operating_balance = _int("operating_balance", self.operating_balance)
        self.vesting_total = _int("vesting_total", self.vesting_total)
        self.vesting_duration = _int("vesting_duration", self.vesting_duration, minimum=1)
        self.vesting_cliff = _int("vesting_cliff", self.vesting_cliff)
        self.exchange_fee_bps = validate_tolerance(_int("exchange_fee_bps", self.exchange_fee_bps))
        self.upkeep_fee = _int("upkeep_fee", self.upkeep_fee)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SimulationConfig":
        feeds = _resolve(data, "feeds", default={}) or {}
        source = _resolve(feeds, "source", default=None)
        target = _resolve(feeds, "target", default=None)
        defaults = cls()
        return cls(
            start_tick=_resolve(data, "start_tick", "startTick", default=0),
            operating_balance=_resolve(data, "operating_balance", "operatingBalance", default=0),
            vesting_total=_resolve(data, "vesting_total", "vestingTotal", default=0),
            vesting_duration=_resolve(data, "vesting_duration", "vestingDuration", default=1),
            vesting_cliff=_resolve(data, "vesting_cliff", "vestingCliff", default=0),
            exchange_fee_bps=_resolve(data, "exchange_fee_bps", "exchangeFeeBps", default=0),
            upkeep_fee=_resolve(data, "upkeep_fee", "upkeepFee", default=0),
            source_feed=FeedConfig(**source) if source else defaults.source_feed,
            target_feed=FeedConfig(**target) if target else defaults.target_feed,
        )


@dataclass
class KeeperConfig:
    """Loaded keeper configuration."""

    network: str
    participants: List[ParticipantConfig] = field(default_factory=list)
    default_window: int = 10
    jobs: List[JobConfig] = field(default_factory=list)
    treasury: Optional[TreasuryConfig] = None
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    owner: str = DEPLOYER
    interval_seconds: float = 1.0
    ticks_per_interval: int = 1
    reload_interval_seconds: int = 10

    def __post_init__(self) -> None:
        if not isinstance(self.network, str) or not self.network:
            raise InvalidParam("network", "must be a non-empty string")
        if not isinstance(self.owner, str) or not self.owner:
            raise InvalidParam("owner", "must be a non-empty string")
        self.default_window = _int("window", self.default_window, minimum=1)
        names = [participant.name for participant in self.participants]
        if len(names) != len(set(names)):
            raise InvalidParam("network", "participant names must be unique")
        handles = [job.handle for job in self.jobs]
        if len(handles) != len(set(handles)):
            raise InvalidParam("job", "job handles must be unique")
        if not isinstance(self.interval_seconds, (int, float)) or self.interval_seconds <= 0:
            raise InvalidParam("interval_seconds", "must be positive")
        self.ticks_per_interval = _int("ticks_per_interval", self.ticks_per_interval)
        if not 1 <= int(self.reload_interval_seconds) <= 3600:
            raise InvalidParam("reload_interval_seconds", "must be between 1 and 3600 seconds")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "KeeperConfig":
        participants_data = _resolve(data, "participants", "networks", default=[]) or []
        participants = [ParticipantConfig(**item) for item in participants_data]
        jobs_data = _resolve(data, "jobs", default=[]) or []
        jobs = [
            JobConfig(
                handle=_resolve(item, "handle", "name"),
                max_duration=_resolve(item, "max_duration", "maxDuration"),
            )
            for item in jobs_data
        ]
        treasury_data = _resolve(data, "treasury", "topUp", default=None)
        simulation_data = _resolve(data, "simulation", default={}) or {}
        owner = _resolve(data, "owner", default=DEPLOYER)
        return cls(
            network=str(_resolve(data, "network", "networkName", default="")),
            participants=participants,
            default_window=_resolve(data, "default_window", "defaultWindow", "window", default=10),
            jobs=jobs,
            treasury=TreasuryConfig.from_mapping(treasury_data) if treasury_data else None,
            simulation=SimulationConfig.from_mapping(simulation_data),
            owner=str(owner) if owner is not None else DEPLOYER,
            interval_seconds=float(_resolve(data, "interval_seconds", "intervalSeconds", default=1.0)),
            ticks_per_interval=_resolve(data, "ticks_per_interval", "ticksPerInterval", default=1),
            reload_interval_seconds=int(
                _resolve(data, "reload_interval_seconds", "reloadIntervalSeconds", default=10)
            ),
        )


def default_config_path() -> Path:
    raw = os.getenv(CONFIG_ENV)
    return Path(raw).expanduser() if raw else _DEFAULT_PATH


def load_config(path: str | Path | None = None) -> KeeperConfig:
    """Load keeper configuration from a YAML (or JSON) file."""

    config_path = Path(path) if path is not None else default_config_path()
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise InvalidParam("config", "keeper configuration must be a mapping")
    return KeeperConfig.from_mapping(data)


def dump_mapping(config: KeeperConfig) -> Dict[str, Any]:
    """Return a summary of the configuration suitable for health output."""

    return {
        "network": config.network,
        "participants": [{"name": p.name, "window": p.window} for p in config.participants],
        "jobs": [job.handle for job in config.jobs],
        "treasury": config.treasury is not None,
    }


__all__ = [
    "CONFIG_ENV",
    "FeedConfig",
    "JobConfig",
    "KeeperConfig",
    "ParticipantConfig",
    "SimulationConfig",
    "TreasuryConfig",
    "default_config_path",
    "dump_mapping",
    "load_config",
]
