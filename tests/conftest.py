"""Shared test fixtures."""

import os

# The module-level settings singleton requires an API key at import time.
os.environ.setdefault("API_KEY", "test-key")

import pytest

from vigil.config.settings import Settings
from vigil.core.services import SecurityMonitor

# 2023-11-14T22:13:20Z
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self.now += seconds + minutes * 60


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {"API_KEY": "test-key", "ENVIRONMENT": "development"}
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def monitor(make_settings, clock):
    return SecurityMonitor(make_settings(), clock=clock)
