"""
Request governor: per-role quotas, freezes, a synchronous gate and an
asynchronous waiter.

State machine per (role, endpoint) key:
- OPEN: count < limit and not frozen, the gate returns True
- QUOTA_EXCEEDED: count >= limit, back to OPEN once now >= reset_at
- FROZEN: explicit cooldown from report_frozen(), reachable from any state,
  back to the natural window state once now >= freeze_until

FROZEN takes precedence at the gate: a key whose window has reset but whose
freeze is still running stays closed.

The governor is a plain state query/mutation surface. It never logs and
never raises in normal operation; user feedback is the observer's job.
It is single-threaded by design: all methods run to completion except
wait_for_available_slot(), which yields to the event loop between polls.

Usage:
    governor = RequestGovernor(quotas=QuotaTable.default())
    if await governor.wait_for_available_slot(Role.STUDENT, "/courses", 5000):
        governor.record_request(Role.STUDENT, "/courses")
        ...  # issue the HTTP request
        # on HTTP 429:
        governor.report_frozen(Role.STUDENT, "/courses", duration_ms=60_000)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import orjson
from pydantic import BaseModel, ConfigDict, Field

from quotagate.governor.freeze_store import FreezeStore
from quotagate.governor.window_store import WindowKey, WindowStore
from quotagate.quota.table import QuotaTable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from quotagate.config import GovernorConfig
    from quotagate.quota.roles import Role

DEFAULT_WAIT_POLL_INTERVAL_MS = 100
DEFAULT_MAX_WAIT_MS = 5000
DEFAULT_FREEZE_MS = 120_000


class BlockReason(str, Enum):
    """Why the gate is closed for a key (OPEN = it is not)."""

    OPEN = "OPEN"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FROZEN = "FROZEN"


class GovernorStatus(BaseModel):
    """
    Window usage for one key. Freeze state is reported separately.

    Attributes:
        role: Role name the status was computed for.
        endpoint: Endpoint bucket ("default" when none was given).
        limit: Requests allowed per window.
        current: Requests recorded in the current window.
        remaining: max(0, limit - current).
        reset_time_ms: When the current window ends.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)
    limit: int = Field(..., ge=1)
    current: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    reset_time_ms: int = Field(..., ge=0)

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))


class GovernorEventType(str, Enum):
    """Kind of state mutation published to listeners."""

    REQUEST_RECORDED = "REQUEST_RECORDED"
    FROZEN = "FROZEN"
    CLEARED = "CLEARED"


@dataclass(frozen=True)
class GovernorEvent:
    """Mutation notice. key is None for CLEARED."""

    type: GovernorEventType
    key: WindowKey | None
    ts_ms: int


@dataclass
class GovernorMetrics:
    """Counters for governor observability. Gate and status calls never touch these."""

    requests_recorded: int = 0
    requests_over_limit: int = 0  # Recorded past the limit (gate bypassed)
    freezes_reported: int = 0
    waits_granted: int = 0
    waits_timed_out: int = 0
    total_wait_ms: int = 0
    max_wait_ms: int = 0

    def reset(self) -> None:
        """Reset all counters."""
        self.requests_recorded = 0
        self.requests_over_limit = 0
        self.freezes_reported = 0
        self.waits_granted = 0
        self.waits_timed_out = 0
        self.total_wait_ms = 0
        self.max_wait_ms = 0


@dataclass
class RequestGovernor:
    """
    Client-side request governor.

    One instance is owned by the application's composition root and passed
    to every caller and observer that needs it.
    """

    quotas: QuotaTable = field(default_factory=QuotaTable.default)
    wait_poll_interval_ms: int = DEFAULT_WAIT_POLL_INTERVAL_MS
    default_max_wait_ms: int = DEFAULT_MAX_WAIT_MS
    default_freeze_ms: int = DEFAULT_FREEZE_MS

    metrics: GovernorMetrics = field(default_factory=GovernorMetrics, init=False)

    _windows: WindowStore = field(init=False)
    _freezes: FreezeStore = field(init=False)
    _listeners: list[Callable[[GovernorEvent], None]] = field(default_factory=list, init=False)

    # Optional time/sleep providers for deterministic testing
    _time_fn: Callable[[], int] | None = field(default=None)
    _sleep_fn: Callable[[float], Awaitable[None]] | None = field(default=None)

    def __post_init__(self) -> None:
        if not 0 < self.wait_poll_interval_ms < 1000:
            raise ValueError(
                f"wait_poll_interval_ms must be in (0, 1000), got {self.wait_poll_interval_ms}"
            )
        if self.default_max_wait_ms < 0:
            raise ValueError(f"default_max_wait_ms must be >= 0, got {self.default_max_wait_ms}")
        if self.default_freeze_ms < 0:
            raise ValueError(f"default_freeze_ms must be >= 0, got {self.default_freeze_ms}")
        self._windows = WindowStore(quotas=self.quotas, _time_fn=self._time_fn)
        self._freezes = FreezeStore(_time_fn=self._time_fn)

    @classmethod
    def from_config(
        cls,
        config: GovernorConfig,
        *,
        _time_fn: Callable[[], int] | None = None,
        _sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> RequestGovernor:
        """Build a governor from a validated GovernorConfig."""
        return cls(
            quotas=config.quotas,
            wait_poll_interval_ms=config.wait_poll_interval_ms,
            default_max_wait_ms=config.default_max_wait_ms,
            default_freeze_ms=config.freeze_policy.default_freeze_ms,
            _time_fn=_time_fn,
            _sleep_fn=_sleep_fn,
        )

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    async def _sleep(self, seconds: float) -> None:
        if self._sleep_fn is not None:
            await self._sleep_fn(seconds)
        else:
            await asyncio.sleep(seconds)

    # ------------------------------------------------------------------
    # Queries (side-effect free)
    # ------------------------------------------------------------------

    def status(self, role: Role | str, endpoint: str | None = None) -> GovernorStatus:
        """
        Get window usage for a key.

        Args:
            role: Caller role.
            endpoint: Endpoint bucket (None = shared default bucket).

        Returns:
            GovernorStatus. Does not reflect freezes; see freeze_end_time().
        """
        key = WindowKey.of(role, endpoint)
        snapshot = self._windows.status_of(key)
        return GovernorStatus(
            role=key.role,
            endpoint=key.endpoint,
            limit=snapshot.limit,
            current=snapshot.count,
            remaining=snapshot.remaining,
            reset_time_ms=snapshot.reset_at_ms,
        )

    def freeze_end_time(self, role: Role | str, endpoint: str | None = None) -> int | None:
        """Get when the key's freeze ends, or None if it is not frozen."""
        return self._freezes.freeze_end_time(WindowKey.of(role, endpoint))

    def block_reason(self, role: Role | str, endpoint: str | None = None) -> BlockReason:
        """Classify the gate state for a key. FROZEN wins over QUOTA_EXCEEDED."""
        return self._block_reason(WindowKey.of(role, endpoint))

    def can_make_request(self, role: Role | str, endpoint: str | None = None) -> bool:
        """
        Synchronous gate.

        Returns:
            True iff the key is not frozen and current < limit. Calling it
            never changes governor state.
        """
        return self._block_reason(WindowKey.of(role, endpoint)) == BlockReason.OPEN

    def _block_reason(self, key: WindowKey) -> BlockReason:
        if self._freezes.is_frozen(key):
            return BlockReason.FROZEN
        snapshot = self._windows.status_of(key)
        if snapshot.count >= snapshot.limit:
            return BlockReason.QUOTA_EXCEEDED
        return BlockReason.OPEN

    def _time_until_open_ms(self, key: WindowKey, now_ms: int) -> int:
        """Time until every currently known blocking condition clears."""
        waits = [0]
        freeze_until_ms = self._freezes.freeze_end_time(key)
        if freeze_until_ms is not None:
            waits.append(freeze_until_ms - now_ms)
        snapshot = self._windows.status_of(key)
        if snapshot.count >= snapshot.limit:
            waits.append(snapshot.reset_at_ms - now_ms)
        return max(waits)

    # ------------------------------------------------------------------
    # Waiter
    # ------------------------------------------------------------------

    async def wait_for_available_slot(
        self,
        role: Role | str,
        endpoint: str | None = None,
        max_wait_ms: int | None = None,
    ) -> bool:
        """
        Wait until the gate opens or max_wait_ms elapses.

        Polls can_make_request() every wait_poll_interval_ms, sleeping on
        the event loop between polls. A sleep is cut short so the next poll
        lands exactly when the blocking freeze/window is due to clear.
        The deadline is checked before every poll after the first, so the
        waiter never reports success past max_wait_ms and never gives up
        before it.

        Does not record a request: call record_request() before issuing it.

        Args:
            role: Caller role.
            endpoint: Endpoint bucket (None = shared default bucket).
            max_wait_ms: Upper bound on suspension (None = default_max_wait_ms).

        Returns:
            True if a slot became available, False on timeout.
        """
        key = WindowKey.of(role, endpoint)
        max_wait = self.default_max_wait_ms if max_wait_ms is None else max(0, max_wait_ms)
        start_ms = self._now_ms()
        deadline_ms = start_ms + max_wait

        if self._block_reason(key) == BlockReason.OPEN:
            self.metrics.waits_granted += 1
            return True

        while True:
            now_ms = self._now_ms()
            remaining_ms = deadline_ms - now_ms
            if remaining_ms <= 0:
                self.metrics.waits_timed_out += 1
                return False

            delay_ms = min(remaining_ms, self.wait_poll_interval_ms)
            clears_in_ms = self._time_until_open_ms(key, now_ms)
            if clears_in_ms > 0:
                delay_ms = min(delay_ms, clears_in_ms)
            await self._sleep(delay_ms / 1000.0)

            now_ms = self._now_ms()
            if now_ms >= deadline_ms:
                self.metrics.waits_timed_out += 1
                return False

            if self._block_reason(key) == BlockReason.OPEN:
                waited_ms = now_ms - start_ms
                self.metrics.waits_granted += 1
                self.metrics.total_wait_ms += waited_ms
                self.metrics.max_wait_ms = max(self.metrics.max_wait_ms, waited_ms)
                return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_request(self, role: Role | str, endpoint: str | None = None) -> int:
        """
        Count one issued request.

        Call exactly once per request actually sent, after a successful gate
        check and before its response is known. Never call it speculatively.

        Returns:
            The key's count in the current window after recording.
        """
        key = WindowKey.of(role, endpoint)
        count = self._windows.record_request(key)
        self.metrics.requests_recorded += 1
        if count > self.quotas.limit_for(key.role).limit:
            self.metrics.requests_over_limit += 1
        self._publish(GovernorEventType.REQUEST_RECORDED, key)
        return count

    def report_frozen(
        self,
        role: Role | str,
        endpoint: str | None = None,
        duration_ms: int | None = None,
    ) -> int:
        """
        Freeze a key after the backend rejected a request for rate-limit reasons.

        Args:
            role: Caller role.
            endpoint: Endpoint bucket (None = shared default bucket).
            duration_ms: Freeze length (None = default_freeze_ms). Overwrites
                any running freeze for the key.

        Returns:
            The freeze_until timestamp.
        """
        key = WindowKey.of(role, endpoint)
        duration = self.default_freeze_ms if duration_ms is None else duration_ms
        freeze_until_ms = self._freezes.freeze(key, duration)
        self.metrics.freezes_reported += 1
        self._publish(GovernorEventType.FROZEN, key)
        return freeze_until_ms

    def clear(self) -> None:
        """Drop all windows and freezes (e.g. on logout)."""
        self._windows.clear()
        self._freezes.clear()
        self._publish(GovernorEventType.CLEARED, None)

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[GovernorEvent], None]) -> Callable[[], None]:
        """
        Register a listener called synchronously after every mutation.

        Listeners must not raise; they run inside the mutating call.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event_type: GovernorEventType, key: WindowKey | None) -> None:
        event = GovernorEvent(type=event_type, key=key, ts_ms=self._now_ms())
        for listener in list(self._listeners):
            listener(event)

    def purge_expired(self) -> int:
        """
        Drop ended windows and expired freezes.

        Endpoint buckets are caller-defined, so a long-running process
        accumulates keys; get_status() runs this on every call, and callers
        without a monitoring loop can call it directly.

        Returns:
            Number of entries removed.
        """
        return self._windows.purge_expired() + self._freezes.purge_expired()

    def get_status(self) -> dict[str, int]:
        """Get aggregate governor status for observability."""
        self.purge_expired()
        return {
            "tracked_windows": len(self._windows.keys()),
            "active_freezes": len(self._freezes.active_keys()),
            "listeners": len(self._listeners),
            "requests_recorded": self.metrics.requests_recorded,
            "freezes_reported": self.metrics.freezes_reported,
        }
