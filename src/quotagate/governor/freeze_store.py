"""
Explicit cooldowns ("freezes") keyed by (role, endpoint).

A freeze is independent of the window counters: it can outlast a window
reset, and it only ends once now >= freeze_until.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from quotagate.governor.window_store import WindowKey


@dataclass
class FreezeStore:
    """Per-key freeze-until timestamps."""

    _freezes: dict[WindowKey, int] = field(default_factory=dict)

    # Optional time provider for deterministic testing
    _time_fn: Callable[[], int] | None = field(default=None)

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    def freeze(self, key: WindowKey, duration_ms: int) -> int:
        """
        Freeze a key for duration_ms from now.

        Any existing freeze is overwritten, even a longer one: the newest
        signal from the backend wins.

        Returns:
            The new freeze_until timestamp.
        """
        freeze_until_ms = self._now_ms() + max(0, duration_ms)
        self._freezes[key] = freeze_until_ms
        return freeze_until_ms

    def freeze_end_time(self, key: WindowKey) -> int | None:
        """
        Get when the key's freeze ends.

        Returns:
            freeze_until while now < freeze_until, otherwise None. Expired
            entries are dropped on the way out.
        """
        freeze_until_ms = self._freezes.get(key)
        if freeze_until_ms is None:
            return None

        if self._now_ms() < freeze_until_ms:
            return freeze_until_ms

        del self._freezes[key]
        return None

    def is_frozen(self, key: WindowKey) -> bool:
        """Check if the key is currently frozen."""
        return self.freeze_end_time(key) is not None

    def active_keys(self) -> list[WindowKey]:
        """Keys frozen right now (expired entries are purged first)."""
        self.purge_expired()
        return list(self._freezes)

    def purge_expired(self) -> int:
        """
        Remove expired freezes.

        Returns:
            Number of entries removed.
        """
        now_ms = self._now_ms()
        expired = [key for key, until in self._freezes.items() if until <= now_ms]
        for key in expired:
            del self._freezes[key]
        return len(expired)

    def clear(self) -> None:
        """Drop all freezes."""
        self._freezes.clear()
