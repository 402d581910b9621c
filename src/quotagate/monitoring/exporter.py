"""
Prometheus metrics exporter for the request governor.

Exports low-cardinality metrics only. Role and endpoint are never used as
labels: endpoint buckets are caller-defined and unbounded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from quotagate.governor.core import RequestGovernor
    from quotagate.observer.notifications import NotificationFeed


# Forbidden labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "role",
        "endpoint",
        "path",
        "query",
        "ip",
        "user_id",
        "token",
        "notification_id",
    }
)


class MetricsExporter:
    """
    Prometheus metrics exporter for governor and notification counters.

    Metric families:
    - quotagate_gov_*   : RequestGovernor metrics
    - quotagate_notif_* : NotificationFeed metrics

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(governor=gov, feed=observer.feed)
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a fresh registry is used.
        """
        self._registry = registry or CollectorRegistry()

        # === Governor gauges ===
        self._gov_tracked_windows = Gauge(
            "quotagate_gov_tracked_windows",
            "Number of (role, endpoint) windows currently tracked",
            registry=self._registry,
        )
        self._gov_active_freezes = Gauge(
            "quotagate_gov_active_freezes",
            "Number of keys currently frozen",
            registry=self._registry,
        )
        self._gov_max_wait_ms = Gauge(
            "quotagate_gov_max_wait_ms",
            "Longest successful wait for a request slot in milliseconds",
            registry=self._registry,
        )

        # === Governor counters ===
        self._gov_requests_recorded = Counter(
            "quotagate_gov_requests_recorded",
            "Total requests recorded against a window",
            registry=self._registry,
        )
        self._gov_requests_over_limit = Counter(
            "quotagate_gov_requests_over_limit",
            "Total requests recorded after the window limit was reached",
            registry=self._registry,
        )
        self._gov_freezes_reported = Counter(
            "quotagate_gov_freezes_reported",
            "Total freezes reported after backend rate-limit responses",
            registry=self._registry,
        )
        self._gov_waits_granted = Counter(
            "quotagate_gov_waits_granted",
            "Total waits that obtained a request slot",
            registry=self._registry,
        )
        self._gov_waits_timed_out = Counter(
            "quotagate_gov_waits_timed_out",
            "Total waits that gave up at max_wait_ms",
            registry=self._registry,
        )

        # === Notification counters ===
        self._notif_raised = Counter(
            "quotagate_notif_raised",
            "Total user notifications raised",
            registry=self._registry,
        )
        self._notif_suppressed_duplicate = Counter(
            "quotagate_notif_suppressed_duplicate",
            "Total notifications suppressed as duplicates",
            registry=self._registry,
        )

        # Track last seen values for counter increments (counters are monotonic)
        self._last: dict[str, int] = {}

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def update(
        self,
        governor: RequestGovernor | None = None,
        feed: NotificationFeed | None = None,
    ) -> None:
        """
        Sync component metrics to Prometheus.

        Call this periodically (e.g. on every scrape).

        Args:
            governor: Governor whose counters and status are exported.
            feed: Notification feed whose counters are exported.
        """
        if governor is not None:
            self._update_governor_metrics(governor)

        if feed is not None:
            self._update_notification_metrics(feed)

    def _inc_delta(self, name: str, counter: Counter, current: int) -> None:
        """Increment a counter by the delta since the last update."""
        delta = current - self._last.get(name, 0)
        if delta > 0:
            counter.inc(delta)
        self._last[name] = current

    def _update_governor_metrics(self, governor: RequestGovernor) -> None:
        status = governor.get_status()
        m = governor.metrics

        # Gauges: set directly
        self._gov_tracked_windows.set(status["tracked_windows"])
        self._gov_active_freezes.set(status["active_freezes"])
        self._gov_max_wait_ms.set(m.max_wait_ms)

        self._inc_delta("requests_recorded", self._gov_requests_recorded, m.requests_recorded)
        self._inc_delta("requests_over_limit", self._gov_requests_over_limit, m.requests_over_limit)
        self._inc_delta("freezes_reported", self._gov_freezes_reported, m.freezes_reported)
        self._inc_delta("waits_granted", self._gov_waits_granted, m.waits_granted)
        self._inc_delta("waits_timed_out", self._gov_waits_timed_out, m.waits_timed_out)

    def _update_notification_metrics(self, feed: NotificationFeed) -> None:
        m = feed.metrics
        self._inc_delta("notif_raised", self._notif_raised, m.raised)
        self._inc_delta(
            "notif_suppressed_duplicate",
            self._notif_suppressed_duplicate,
            m.suppressed_duplicate,
        )

    def reset_counter_tracking(self) -> None:
        """
        Reset internal counter tracking.

        Use after GovernorMetrics.reset(). Does NOT reset the Prometheus
        counters themselves.
        """
        self._last.clear()


# Note: Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        # Governor (Gauges)
        "quotagate_gov_tracked_windows",
        "quotagate_gov_active_freezes",
        "quotagate_gov_max_wait_ms",
        # Governor (Counters)
        "quotagate_gov_requests_recorded_total",
        "quotagate_gov_requests_over_limit_total",
        "quotagate_gov_freezes_reported_total",
        "quotagate_gov_waits_granted_total",
        "quotagate_gov_waits_timed_out_total",
        # Notifications (Counters)
        "quotagate_notif_raised_total",
        "quotagate_notif_suppressed_duplicate_total",
    }
)
