"""
Wrapping a request coroutine in the governor's inbound contract.

GovernedCaller.call():
1. waits for a slot (WaitTimedOutError if none opens in time)
2. records the request, strictly before it is sent
3. awaits the request
4. on RateLimitSignal, freezes the key per FreezePolicy and re-raises
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from quotagate.governor.signals import FreezePolicy, RateLimitSignal
from quotagate.governor.window_store import WindowKey

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from quotagate.governor.core import RequestGovernor
    from quotagate.quota.roles import Role

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WaitTimedOutError(Exception):
    """Raised when no slot opened within max_wait_ms."""

    def __init__(self, message: str, waited_ms: int = 0) -> None:
        super().__init__(message)
        self.waited_ms = waited_ms


class GovernedCaller:
    """
    Runs request coroutines under a shared RequestGovernor.

    Usage:
        caller = GovernedCaller(governor)
        data = await caller.call(Role.STUDENT, lambda: fetch_courses(), endpoint="/courses")
    """

    def __init__(
        self,
        governor: RequestGovernor,
        policy: FreezePolicy | None = None,
    ) -> None:
        """
        Initialize caller.

        Args:
            governor: Shared governor instance.
            policy: Freeze duration policy (default FreezePolicy()).
        """
        self._governor = governor
        self._policy = policy or FreezePolicy()

    @property
    def policy(self) -> FreezePolicy:
        """Get freeze policy."""
        return self._policy

    async def call(
        self,
        role: Role | str,
        request_fn: Callable[[], Awaitable[T]],
        endpoint: str | None = None,
        max_wait_ms: int | None = None,
    ) -> T:
        """
        Wait for a slot, record, and run request_fn.

        Args:
            role: Caller role.
            request_fn: Zero-argument coroutine factory issuing the request.
            endpoint: Endpoint bucket (None = shared default bucket).
            max_wait_ms: Wait bound (None = governor default).

        Returns:
            Whatever request_fn returns.

        Raises:
            WaitTimedOutError: If no slot opened in time. Nothing is recorded.
            RateLimitSignal: Re-raised after freezing the key.
        """
        start = time.monotonic()
        available = await self._governor.wait_for_available_slot(role, endpoint, max_wait_ms)
        if not available:
            waited_ms = int((time.monotonic() - start) * 1000)
            logger.warning(
                "Timed out waiting for request slot",
                extra={"key": str(WindowKey.of(role, endpoint)), "waited_ms": waited_ms},
            )
            raise WaitTimedOutError(
                f"No request slot available after {waited_ms}ms",
                waited_ms=waited_ms,
            )

        self._governor.record_request(role, endpoint)

        try:
            return await request_fn()
        except RateLimitSignal as signal:
            duration_ms = self._policy.duration_for_signal(signal)
            self._governor.report_frozen(role, endpoint, duration_ms=duration_ms)
            logger.warning(
                "Backend rate limit hit, key frozen",
                extra={
                    "key": str(WindowKey.of(role, endpoint)),
                    "status": signal.status,
                    "retry_after_ms": signal.retry_after_ms,
                    "freeze_ms": duration_ms,
                },
            )
            raise

    def observe_response(
        self,
        role: Role | str,
        status: int,
        headers: dict[str, str] | None = None,
        endpoint: str | None = None,
    ) -> int | None:
        """
        Feed a finished response's status into the governor.

        For callers that issue requests themselves instead of going through
        call(). Non rate-limit statuses are ignored.

        Returns:
            The freeze duration applied, or None.
        """
        duration_ms = self._policy.freeze_duration_for(status, headers)
        if duration_ms is None:
            return None
        self._governor.report_frozen(role, endpoint, duration_ms=duration_ms)
        logger.warning(
            "Backend rate limit response, key frozen",
            extra={
                "key": str(WindowKey.of(role, endpoint)),
                "status": status,
                "freeze_ms": duration_ms,
            },
        )
        return duration_ms
