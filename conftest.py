"""Repository-wide pytest configuration.

Pins the repository root on ``sys.path`` so ``cronkeeper`` imports the same way
regardless of the invocation directory, and keeps a developer's
``CRONKEEPER_CONFIG`` from leaking into the suites.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolated_keeper_env(monkeypatch, caplog):
    monkeypatch.delenv("CRONKEEPER_CONFIG", raising=False)
    caplog.set_level(logging.DEBUG, logger="cronkeeper")
    yield
