"""Shared fixtures: a controllable millisecond clock and governor factories."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator

import pytest

from quotagate.governor import RequestGovernor
from quotagate.quota import QuotaEntry, QuotaTable, Role

# 2024-01-01T00:00:00Z
START_MS = 1_704_067_200_000


class FakeClock:
    """Millisecond clock that only moves when told to (or when slept on)."""

    def __init__(self, start_ms: int = START_MS) -> None:
        self.start_ms = start_ms
        self.now_ms = start_ms
        self.sleeps: list[int] = []

    def __call__(self) -> int:
        return self.now_ms

    @property
    def elapsed_ms(self) -> int:
        return self.now_ms - self.start_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def set_elapsed(self, ms: int) -> None:
        self.now_ms = self.start_ms + ms

    async def sleep(self, seconds: float) -> None:
        ms = int(round(seconds * 1000))
        self.sleeps.append(ms)
        self.now_ms += ms
        await asyncio.sleep(0)


@pytest.fixture()
def clock() -> FakeClock:
    """Fresh fake clock at START_MS."""
    return FakeClock()


@pytest.fixture()
def governor(clock: FakeClock) -> RequestGovernor:
    """Governor with the stock quota table on the fake clock."""
    return RequestGovernor(quotas=QuotaTable.default(), _time_fn=clock, _sleep_fn=clock.sleep)


@pytest.fixture()
def small_quotas() -> QuotaTable:
    """Small limits so tests can exhaust windows quickly."""
    return QuotaTable(
        [
            QuotaEntry(role=Role.ANONYMOUS, limit=10, window_ms=60_000),
            QuotaEntry(role=Role.STUDENT, limit=3, window_ms=1_000),
            QuotaEntry(role=Role.TEACHER, limit=200, window_ms=60_000),
        ]
    )


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Undo setup_logging() side effects between tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
