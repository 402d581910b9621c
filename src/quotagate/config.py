"""
Configuration for the request governor and its observers.

All tunables are fixed at construction time. Values are validated in
__post_init__; YAML files are read with load_config().

Example YAML:

    governor:
      wait_poll_interval_ms: 100
      default_max_wait_ms: 5000
      window_ms: 60000
      quotas:
        anonymous: 30
        student: {limit: 100, window_ms: 60000}
    freeze:
      default_freeze_ms: 120000
      max_freeze_ms: 600000
      respect_retry_after: true
      rate_limit_statuses: [429]
    observer:
      poll_interval_ms: 2000
      warning_threshold_pct: 80
    notifications:
      dedup_window_ms: 3000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from quotagate.governor.signals import FreezePolicy
from quotagate.quota.table import DEFAULT_WINDOW_MS, QuotaTable


@dataclass
class GovernorConfig:
    """Governor configuration."""

    quotas: QuotaTable = field(default_factory=QuotaTable.default)

    # Waiter poll interval; must stay sub-second
    wait_poll_interval_ms: int = 100
    default_max_wait_ms: int = 5000

    freeze_policy: FreezePolicy = field(default_factory=FreezePolicy)

    def __post_init__(self) -> None:
        if not 0 < self.wait_poll_interval_ms < 1000:
            raise ValueError(
                f"wait_poll_interval_ms must be in (0, 1000), got {self.wait_poll_interval_ms}"
            )
        if self.default_max_wait_ms < 0:
            raise ValueError(f"default_max_wait_ms must be >= 0, got {self.default_max_wait_ms}")


@dataclass
class ObserverConfig:
    """Observer polling and derived-flag configuration."""

    poll_interval_ms: int = 2000

    # Percentage of the limit at which is_near_limit turns on
    warning_threshold_pct: float = 80.0

    notifications_enabled: bool = True

    def __post_init__(self) -> None:
        if not 100 <= self.poll_interval_ms <= 60_000:
            raise ValueError(
                f"poll_interval_ms must be in [100, 60000], got {self.poll_interval_ms}"
            )
        if not 0 < self.warning_threshold_pct <= 100:
            raise ValueError(
                f"warning_threshold_pct must be in (0, 100], got {self.warning_threshold_pct}"
            )


@dataclass
class NotificationConfig:
    """Notification dedup and display durations."""

    # Identical type+message within this window is suppressed
    dedup_window_ms: int = 3000

    error_display_ms: int = 8000
    warning_display_ms: int = 6000
    info_display_ms: int = 4000

    def __post_init__(self) -> None:
        if self.dedup_window_ms < 0:
            raise ValueError(f"dedup_window_ms must be >= 0, got {self.dedup_window_ms}")
        for name in ("error_display_ms", "warning_display_ms", "info_display_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")


@dataclass
class QuotagateConfig:
    """Top-level configuration."""

    governor: GovernorConfig = field(default_factory=GovernorConfig)
    observer: ObserverConfig = field(default_factory=ObserverConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


def config_from_dict(raw: dict[str, Any]) -> QuotagateConfig:
    """
    Build a validated config from plain data (e.g. parsed YAML).

    Missing sections and keys fall back to defaults.

    Raises:
        ValueError: On invalid values or unknown roles.
        pydantic.ValidationError: On out-of-range quota entries.
    """
    gov_raw = raw.get("governor") or {}
    freeze_raw = raw.get("freeze") or {}
    observer_raw = raw.get("observer") or {}
    notifications_raw = raw.get("notifications") or {}

    if "quotas" in gov_raw:
        quotas = QuotaTable.from_mapping(
            gov_raw["quotas"],
            default_window_ms=gov_raw.get("window_ms", DEFAULT_WINDOW_MS),
        )
    else:
        quotas = QuotaTable.default()

    freeze_policy = FreezePolicy(
        default_freeze_ms=freeze_raw.get("default_freeze_ms", 120_000),
        max_freeze_ms=freeze_raw.get("max_freeze_ms", 600_000),
        respect_retry_after=freeze_raw.get("respect_retry_after", True),
        rate_limit_statuses=frozenset(freeze_raw.get("rate_limit_statuses", [429])),
    )

    governor = GovernorConfig(
        quotas=quotas,
        wait_poll_interval_ms=gov_raw.get("wait_poll_interval_ms", 100),
        default_max_wait_ms=gov_raw.get("default_max_wait_ms", 5000),
        freeze_policy=freeze_policy,
    )

    observer = ObserverConfig(
        poll_interval_ms=observer_raw.get("poll_interval_ms", 2000),
        warning_threshold_pct=observer_raw.get("warning_threshold_pct", 80.0),
        notifications_enabled=observer_raw.get("notifications_enabled", True),
    )

    notifications = NotificationConfig(
        dedup_window_ms=notifications_raw.get("dedup_window_ms", 3000),
        error_display_ms=notifications_raw.get("error_display_ms", 8000),
        warning_display_ms=notifications_raw.get("warning_display_ms", 6000),
        info_display_ms=notifications_raw.get("info_display_ms", 4000),
    )

    return QuotagateConfig(governor=governor, observer=observer, notifications=notifications)


def load_config(path: str | Path) -> QuotagateConfig:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a mapping or holds invalid values.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")

    return config_from_dict(raw)
