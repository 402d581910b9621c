"""
Fixed-window request counters keyed by (role, endpoint).

Rollover is lazy: a window is reset the moment a reader observes
now >= window_end, never by a background timer. Window boundaries stay
aligned to the first window's start rather than drifting with read times.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from quotagate.quota.roles import Role

if TYPE_CHECKING:
    from collections.abc import Callable

    from quotagate.quota.table import QuotaTable

DEFAULT_ENDPOINT = "default"

# Bucket for a blank role; such callers get the most restrictive quota
UNKNOWN_ROLE = "unknown"


@dataclass(frozen=True)
class WindowKey:
    """Counter key: role plus endpoint (or the shared "default" bucket)."""

    role: str
    endpoint: str = DEFAULT_ENDPOINT

    @classmethod
    def of(cls, role: Role | str, endpoint: str | None = None) -> WindowKey:
        """Build a key, normalizing the role and a blank endpoint."""
        parsed = Role.parse(role)
        if parsed is not None:
            role_name = parsed.value
        else:
            role_name = str(role).strip().lower() or UNKNOWN_ROLE
        if endpoint is None or not endpoint.strip():
            endpoint = DEFAULT_ENDPOINT
        return cls(role=role_name, endpoint=endpoint)

    def __str__(self) -> str:
        return f"{self.role}:{self.endpoint}"


@dataclass
class WindowState:
    """Mutable counter for the current window of one key."""

    count: int = 0
    window_start_ms: int = 0
    window_end_ms: int = 0


@dataclass(frozen=True)
class WindowSnapshot:
    """Point-in-time view of a key's window."""

    count: int
    limit: int
    remaining: int
    reset_at_ms: int


@dataclass
class WindowStore:
    """
    Per-key fixed-window counters.

    The store does not enforce limits: recording past the limit is
    tolerated here and must be prevented by consulting the gate first.
    """

    quotas: QuotaTable
    _windows: dict[WindowKey, WindowState] = field(default_factory=dict)

    # Optional time provider for deterministic testing
    _time_fn: Callable[[], int] | None = field(default=None)

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    def _roll(self, state: WindowState, window_ms: int, now_ms: int) -> None:
        """Advance an expired window by whole windows until it covers now."""
        if now_ms < state.window_end_ms:
            return
        skipped = (now_ms - state.window_end_ms) // window_ms
        state.window_start_ms = state.window_end_ms + skipped * window_ms
        state.window_end_ms = state.window_start_ms + window_ms
        state.count = 0

    def status_of(self, key: WindowKey) -> WindowSnapshot:
        """
        Snapshot a key's window, rolling it forward first if expired.

        A key that has never been recorded reports an empty window ending
        one full window from now; no state is created for it.
        """
        now_ms = self._now_ms()
        quota = self.quotas.limit_for(key.role)
        state = self._windows.get(key)

        if state is None:
            return WindowSnapshot(
                count=0,
                limit=quota.limit,
                remaining=quota.limit,
                reset_at_ms=now_ms + quota.window_ms,
            )

        self._roll(state, quota.window_ms, now_ms)
        return WindowSnapshot(
            count=state.count,
            limit=quota.limit,
            remaining=max(0, quota.limit - state.count),
            reset_at_ms=state.window_end_ms,
        )

    def record_request(self, key: WindowKey) -> int:
        """
        Count one issued request against the key's current window.

        Returns:
            The count after incrementing.
        """
        now_ms = self._now_ms()
        quota = self.quotas.limit_for(key.role)
        state = self._windows.get(key)

        if state is None:
            state = WindowState(window_start_ms=now_ms, window_end_ms=now_ms + quota.window_ms)
            self._windows[key] = state
        else:
            self._roll(state, quota.window_ms, now_ms)

        state.count += 1
        return state.count

    def keys(self) -> list[WindowKey]:
        """Keys with a tracked window."""
        return list(self._windows)

    def purge_expired(self) -> int:
        """
        Drop windows that have ended.

        An ended window would read as count 0 anyway; the only thing lost
        is its boundary grid, so the key's next request opens a fresh
        window at that moment.

        Returns:
            Number of windows removed.
        """
        now_ms = self._now_ms()
        ended = [key for key, state in self._windows.items() if state.window_end_ms <= now_ms]
        for key in ended:
            del self._windows[key]
        return len(ended)

    def clear(self) -> None:
        """Drop all windows."""
        self._windows.clear()
