from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml


def base_config() -> Dict[str, Any]:
    return {
        "network": "test",
        "participants": [{"name": "test", "window": 1}],
        "jobs": [{"handle": "job", "max_duration": 5}],
        "treasury": {
            "threshold": 1000,
            "max_deposit": 1000,
            "min_withdraw": 100,
            "slippage_tolerance_bps": 200,
            "path": "0x01",
            "account_id": "1",
            "stream_id": "1",
        },
        "simulation": {
            "operating_balance": 50,
            "vesting_total": 10_000,
            "vesting_duration": 1,
            "feeds": {
                "source": {"price": 100_000_000, "decimals": 8},
                "target": {"price": 500_000_000, "decimals": 8},
            },
        },
        "reload_interval_seconds": 1,
    }


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    path = tmp_path / "cronkeeper.yaml"

    def _write(overrides: Dict[str, Any] | None = None) -> Path:
        data = _merge(base_config(), overrides or {})
        path.write_text(yaml.safe_dump(data))
        return path

    return _write
