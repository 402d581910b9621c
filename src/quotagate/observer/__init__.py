"""Observer layer: display flags, notifications and user-facing messages."""

from quotagate.observer.messages import banner_text, format_duration
from quotagate.observer.monitor import GovernorObserver, ObservedStatus
from quotagate.observer.notifications import (
    Notification,
    NotificationFeed,
    NotificationMetrics,
    NotificationType,
)

__all__ = [
    "GovernorObserver",
    "Notification",
    "NotificationFeed",
    "NotificationMetrics",
    "NotificationType",
    "ObservedStatus",
    "banner_text",
    "format_duration",
]
