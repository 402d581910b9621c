"""
Deduplicated, self-expiring notifications for rate-limit feedback.

Anti-spam rule: a notification is suppressed when the last one raised had
the same type and message and was raised less than dedup_window_ms ago.
This keeps a 1-2 second poll from repeating the same warning.

Expiry is lazy: expired notifications are dropped whenever the feed is
read, each after its own type-dependent display duration.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import orjson
from pydantic import BaseModel, ConfigDict, Field

from quotagate.config import NotificationConfig

if TYPE_CHECKING:
    from collections.abc import Callable


class NotificationType(str, Enum):
    """Notification severity."""

    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


class Notification(BaseModel):
    """
    A user-facing notification.

    Attributes:
        id: Unique id ("<timestamp>_<random>").
        type: Severity.
        message: Text to display.
        timestamp_ms: When it was raised.
        expires_at_ms: When it stops being live.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    type: NotificationType
    message: str = Field(..., min_length=1)
    timestamp_ms: int = Field(..., ge=0)
    expires_at_ms: int = Field(..., ge=0)

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))


@dataclass
class NotificationMetrics:
    """Counters for notification decisions."""

    raised: int = 0
    suppressed_duplicate: int = 0
    suppressed_disabled: int = 0
    expired: int = 0


@dataclass
class _LastRaised:
    type: NotificationType
    message: str
    timestamp_ms: int


@dataclass
class NotificationFeed:
    """Live notification list with dedup and per-type expiry."""

    config: NotificationConfig = field(default_factory=NotificationConfig)
    enabled: bool = True

    metrics: NotificationMetrics = field(default_factory=NotificationMetrics, init=False)
    _live: list[Notification] = field(default_factory=list, init=False)
    _last: _LastRaised | None = field(default=None, init=False)

    # Optional time provider for deterministic testing
    _time_fn: Callable[[], int] | None = field(default=None)

    def _now_ms(self) -> int:
        """Get current time in milliseconds."""
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    def display_ms(self, notification_type: NotificationType) -> int:
        """Display duration for a notification type."""
        if notification_type == NotificationType.ERROR:
            return self.config.error_display_ms
        if notification_type == NotificationType.WARNING:
            return self.config.warning_display_ms
        return self.config.info_display_ms

    def _is_duplicate(self, notification_type: NotificationType, message: str, now_ms: int) -> bool:
        last = self._last
        if last is None:
            return False
        return (
            last.type == notification_type
            and last.message == message
            and (now_ms - last.timestamp_ms) < self.config.dedup_window_ms
        )

    def add(self, notification_type: NotificationType, message: str) -> Notification | None:
        """
        Raise a notification.

        Returns:
            The new notification, or None if it was suppressed.
        """
        if not self.enabled:
            self.metrics.suppressed_disabled += 1
            return None

        now_ms = self._now_ms()
        if self._is_duplicate(notification_type, message, now_ms):
            self.metrics.suppressed_duplicate += 1
            return None

        self._last = _LastRaised(type=notification_type, message=message, timestamp_ms=now_ms)
        notification = Notification(
            id=f"{now_ms}_{uuid.uuid4().hex[:9]}",
            type=notification_type,
            message=message,
            timestamp_ms=now_ms,
            expires_at_ms=now_ms + self.display_ms(notification_type),
        )
        self._live.append(notification)
        self.metrics.raised += 1
        return notification

    def live(self) -> list[Notification]:
        """Get unexpired notifications, oldest first."""
        now_ms = self._now_ms()
        kept = [n for n in self._live if n.expires_at_ms > now_ms]
        self.metrics.expired += len(self._live) - len(kept)
        self._live = kept
        return list(kept)

    def remove(self, notification_id: str) -> bool:
        """
        Dismiss a notification.

        Returns:
            True if it was live and removed.
        """
        before = len(self._live)
        self._live = [n for n in self._live if n.id != notification_id]
        return len(self._live) != before

    def clear(self) -> None:
        """Dismiss all notifications. The dedup memory is kept."""
        self._live.clear()
