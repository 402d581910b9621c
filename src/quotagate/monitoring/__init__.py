"""Prometheus export and HTTP monitoring surface."""

from quotagate.monitoring.exporter import FORBIDDEN_LABELS, REQUIRED_METRIC_NAMES, MetricsExporter
from quotagate.monitoring.metrics_server import (
    METRICS_CONTENT_TYPE,
    create_monitoring_app,
    start_monitoring_server,
    stop_monitoring_server,
)

__all__ = [
    "FORBIDDEN_LABELS",
    "METRICS_CONTENT_TYPE",
    "REQUIRED_METRIC_NAMES",
    "MetricsExporter",
    "create_monitoring_app",
    "start_monitoring_server",
    "stop_monitoring_server",
]
