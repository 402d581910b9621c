"""
Mapping backend rate-limit responses to freeze durations.

The backend decides how long a client should back off; this module turns
whatever it communicated (status code, Retry-After) into the duration
passed to RequestGovernor.report_frozen(). The mapping is configurable via
FreezePolicy rather than hard-coded.

Retry-After may be delta-seconds ("120") or an HTTP-date
("Wed, 21 Oct 2015 07:28:00 GMT"). Server hints are honored but capped at
max_freeze_ms.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES: frozenset[int] = frozenset({429})


class RateLimitSignal(Exception):
    """Raised by request code when the backend rejected a call for rate-limit reasons."""

    def __init__(
        self,
        message: str,
        status: int = 429,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after_ms = retry_after_ms


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def parse_retry_after(value: str | None, now_ms: int | None = None) -> int | None:
    """
    Parse a Retry-After header value.

    Args:
        value: Raw header value.
        now_ms: Reference time for HTTP-date values (default: wall clock).

    Returns:
        Delay in milliseconds (>= 0), or None if absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if value.isdigit():
        return int(value) * 1000

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Retry-After", extra={"retry_after": value})
        return None
    if retry_at is None or retry_at.tzinfo is None:
        return None

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return max(0, int(retry_at.timestamp() * 1000) - now_ms)


@dataclass
class FreezePolicy:
    """
    How long to freeze a key after a rate-limit response.

    Attributes:
        default_freeze_ms: Used when the server gives no usable hint.
        max_freeze_ms: Cap applied to server hints.
        respect_retry_after: Honor Retry-After when present.
        rate_limit_statuses: HTTP statuses treated as rate-limit rejections.
    """

    default_freeze_ms: int = 120_000
    max_freeze_ms: int = 600_000
    respect_retry_after: bool = True
    rate_limit_statuses: frozenset[int] = field(default_factory=lambda: RATE_LIMIT_STATUSES)

    def __post_init__(self) -> None:
        self.rate_limit_statuses = frozenset(self.rate_limit_statuses)
        if self.default_freeze_ms < 1000:
            raise ValueError(f"default_freeze_ms must be >= 1000, got {self.default_freeze_ms}")
        if self.max_freeze_ms < self.default_freeze_ms:
            raise ValueError(
                f"max_freeze_ms ({self.max_freeze_ms}) must be >= "
                f"default_freeze_ms ({self.default_freeze_ms})"
            )
        if not self.rate_limit_statuses:
            raise ValueError("rate_limit_statuses must not be empty")
        for status in self.rate_limit_statuses:
            if not 400 <= status <= 599:
                raise ValueError(f"rate_limit_statuses must be HTTP error codes, got {status}")

    def is_rate_limited(self, status: int) -> bool:
        """Check if a response status is a rate-limit rejection."""
        return status in self.rate_limit_statuses

    def _bounded(self, retry_after_ms: int | None) -> int:
        if not self.respect_retry_after or retry_after_ms is None or retry_after_ms <= 0:
            return self.default_freeze_ms
        return min(retry_after_ms, self.max_freeze_ms)

    def freeze_duration_for(
        self,
        status: int,
        headers: Mapping[str, str] | None = None,
        *,
        now_ms: int | None = None,
    ) -> int | None:
        """
        Compute the freeze duration for a response.

        Args:
            status: HTTP status code.
            headers: Response headers (case-insensitive lookup).
            now_ms: Reference time for HTTP-date Retry-After values.

        Returns:
            Freeze duration in ms, or None if the status is not a rate-limit
            rejection.
        """
        if not self.is_rate_limited(status):
            return None
        retry_after_ms = None
        if headers:
            retry_after_ms = parse_retry_after(_header(headers, "Retry-After"), now_ms)
        return self._bounded(retry_after_ms)

    def duration_for_signal(self, signal: RateLimitSignal) -> int:
        """Compute the freeze duration for a raised RateLimitSignal."""
        return self._bounded(signal.retry_after_ms)
