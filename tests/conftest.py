"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from gentree.tree import NodeStore
from gentree.usage import UsageLedger

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


class FakeClock:
    """Monotonic clock advanced by one second per call."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> NodeStore:
    """Empty NodeStore with a deterministic clock."""
    return NodeStore(clock=clock)


@pytest.fixture
def ledger() -> UsageLedger:
    return UsageLedger()
