"""
Governor observer for presentation code.

Reads a governor's status and freeze state for one (role, endpoint) key,
derives display flags, and raises edge-triggered notifications:
- blocked (at limit or frozen) newly true -> error
- near limit newly true while not blocked -> warning
- blocked newly false -> info, followed by the near-limit warning when
  usage is still above the threshold

The observer refreshes on its own poll interval and immediately after any
governor mutation touching its key. It never mutates governor state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel, ConfigDict, Field

from quotagate.config import ObserverConfig
from quotagate.governor.core import BlockReason
from quotagate.governor.window_store import WindowKey
from quotagate.observer import messages
from quotagate.observer.notifications import Notification, NotificationFeed, NotificationType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from quotagate.governor.core import GovernorEvent, RequestGovernor
    from quotagate.quota.roles import Role

logger = logging.getLogger(__name__)


class ObservedStatus(BaseModel):
    """
    Display-ready view of one key.

    Attributes:
        role: Role name.
        endpoint: Endpoint bucket.
        limit: Requests allowed per window.
        current: Requests recorded in the current window.
        remaining: max(0, limit - current).
        reset_time_ms: When the current window ends.
        percentage: current / limit * 100.
        is_near_limit: percentage >= warning threshold.
        is_at_limit: current >= limit.
        is_frozen: A freeze is running.
        freeze_end_time_ms: When the freeze ends (None if not frozen).
        time_until_reset_s: Whole seconds until the window resets, rounded up.
        time_until_unfreeze_s: Whole seconds until the freeze ends, rounded up.
        can_make_request: Gate result at observation time.
        block_reason: Why the gate is closed (OPEN if it is not).
        observed_at_ms: Observation timestamp.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: str
    endpoint: str
    limit: int = Field(..., ge=1)
    current: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    reset_time_ms: int
    percentage: float = Field(..., ge=0)
    is_near_limit: bool
    is_at_limit: bool
    is_frozen: bool
    freeze_end_time_ms: int | None = None
    time_until_reset_s: int = Field(..., ge=0)
    time_until_unfreeze_s: int = Field(..., ge=0)
    can_make_request: bool
    block_reason: BlockReason
    observed_at_ms: int

    @property
    def is_blocked(self) -> bool:
        """At limit or frozen."""
        return self.is_at_limit or self.is_frozen

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))


def _ceil_seconds(delta_ms: int) -> int:
    return max(0, math.ceil(delta_ms / 1000))


class GovernorObserver:
    """
    Observes one governor key and feeds presentation code.

    Usage:
        observer = GovernorObserver(governor, Role.STUDENT, endpoint="/courses")
        observer.subscribe(render_banner)
        await observer.start()
        ...
        await observer.stop()
    """

    def __init__(
        self,
        governor: RequestGovernor,
        role: Role | str,
        endpoint: str | None = None,
        config: ObserverConfig | None = None,
        feed: NotificationFeed | None = None,
        *,
        _time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize observer.

        Args:
            governor: Shared governor instance (read-only use).
            role: Role to observe.
            endpoint: Endpoint bucket (None = shared default bucket).
            config: Observer configuration.
            feed: Notification feed (default: a new feed on the same clock).
            _time_fn: Optional time provider for deterministic testing.
        """
        self._governor = governor
        self._key = WindowKey.of(role, endpoint)
        self._config = config or ObserverConfig()
        self._time_fn = _time_fn
        self._feed = feed or NotificationFeed(_time_fn=_time_fn)

        self._latest: ObservedStatus | None = None
        self._was_blocked = False
        self._was_near = False
        self._callbacks: list[Callable[[ObservedStatus], Awaitable[None] | None]] = []
        self._background_tasks: set[asyncio.Task[None]] = set()

        self._running = False
        self._poll_task: asyncio.Task[None] | None = None
        self._unsubscribe_governor: Callable[[], None] | None = None

        self._refresh_count = 0
        self._callback_errors = 0

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    @property
    def key(self) -> WindowKey:
        """Get observed key."""
        return self._key

    @property
    def config(self) -> ObserverConfig:
        """Get observer configuration."""
        return self._config

    @property
    def feed(self) -> NotificationFeed:
        """Get notification feed."""
        return self._feed

    @property
    def latest(self) -> ObservedStatus | None:
        """Get the most recent observation, if any."""
        return self._latest

    @property
    def is_running(self) -> bool:
        """Check if the polling loop is running."""
        return self._running

    def notifications(self) -> list[Notification]:
        """Get live notifications."""
        return self._feed.live()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self) -> ObservedStatus:
        """Read governor state and derive the display view. No notifications."""
        now_ms = self._now_ms()
        role, endpoint = self._key.role, self._key.endpoint
        status = self._governor.status(role, endpoint)
        freeze_end_ms = self._governor.freeze_end_time(role, endpoint)
        reason = self._governor.block_reason(role, endpoint)

        percentage = status.current * 100 / status.limit
        return ObservedStatus(
            role=status.role,
            endpoint=status.endpoint,
            limit=status.limit,
            current=status.current,
            remaining=status.remaining,
            reset_time_ms=status.reset_time_ms,
            percentage=percentage,
            is_near_limit=percentage >= self._config.warning_threshold_pct,
            is_at_limit=status.current >= status.limit,
            is_frozen=freeze_end_ms is not None,
            freeze_end_time_ms=freeze_end_ms,
            time_until_reset_s=_ceil_seconds(status.reset_time_ms - now_ms),
            time_until_unfreeze_s=(
                _ceil_seconds(freeze_end_ms - now_ms) if freeze_end_ms is not None else 0
            ),
            can_make_request=reason == BlockReason.OPEN,
            block_reason=reason,
            observed_at_ms=now_ms,
        )

    def refresh(self) -> ObservedStatus:
        """
        Observe, raise transition notifications, and push to subscribers.

        Returns:
            The new observation.
        """
        observed = self.observe()
        self._raise_transitions(observed)
        self._latest = observed
        self._refresh_count += 1
        self._push(observed)
        return observed

    def _raise_transitions(self, observed: ObservedStatus) -> None:
        blocked = observed.is_blocked
        near = observed.is_near_limit and not blocked

        if blocked and not self._was_blocked:
            text = messages.FROZEN if observed.is_frozen else messages.LIMIT_REACHED
            self._notify(NotificationType.ERROR, text)
        elif not blocked:
            if self._was_blocked:
                self._notify(NotificationType.INFO, messages.AVAILABLE_AGAIN)
            if near and not self._was_near:
                self._notify(
                    NotificationType.WARNING, messages.near_limit_message(observed.percentage)
                )

        self._was_blocked = blocked
        self._was_near = near

    def _notify(self, notification_type: NotificationType, text: str) -> None:
        if not self._config.notifications_enabled:
            return
        notification = self._feed.add(notification_type, text)
        if notification is not None:
            logger.info(
                "Rate limit notification raised",
                extra={"key": str(self._key), "type": notification_type.value},
            )

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self, callback: Callable[[ObservedStatus], Awaitable[None] | None]
    ) -> Callable[[], None]:
        """
        Register a callback receiving every new observation.

        Coroutine callbacks are scheduled on the running loop.

        Returns:
            A callable that removes the callback.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _push(self, observed: ObservedStatus) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(observed)
                if asyncio.iscoroutine(result):
                    self._schedule_callback(result)
            except Exception as e:
                self._callback_errors += 1
                logger.exception("Observer callback error for %s: %s", self._key, e)

    def _schedule_callback(self, coro: Coroutine[Any, Any, None]) -> None:
        """Run a coroutine callback as a tracked task on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self._callback_errors += 1
            logger.warning(
                "Async observer callback dropped: no running event loop",
                extra={"key": str(self._key)},
            )
            return

        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task[None]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._callback_errors += 1
            logger.error(
                "Observer callback error for %s: %s", self._key, exc, exc_info=exc
            )

    def _on_governor_event(self, event: GovernorEvent) -> None:
        if event.key is None or event.key == self._key:
            self.refresh()

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Refresh every poll interval until stop() is called."""
        while self._running:
            self.refresh()
            await asyncio.sleep(self._config.poll_interval_ms / 1000)

    async def start(self) -> None:
        """Subscribe to governor mutations and start polling."""
        if self._running:
            return

        self._running = True
        self._unsubscribe_governor = self._governor.subscribe(self._on_governor_event)
        self._poll_task = asyncio.create_task(self.run())
        logger.info(
            "Governor observer started with interval %dms for %s",
            self._config.poll_interval_ms,
            self._key,
        )

    async def stop(self) -> None:
        """Stop polling and detach from the governor."""
        self._running = False
        if self._unsubscribe_governor is not None:
            self._unsubscribe_governor()
            self._unsubscribe_governor = None
        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        pending = list(self._background_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Governor observer stopped for %s", self._key)

    def get_status(self) -> dict[str, object]:
        """Get observer status for monitoring."""
        return {
            "key": str(self._key),
            "running": self._running,
            "refresh_count": self._refresh_count,
            "callback_errors": self._callback_errors,
            "pending_callbacks": len(self._background_tasks),
            "subscribers": len(self._callbacks),
            "live_notifications": len(self._feed.live()),
        }
