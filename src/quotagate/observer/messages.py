"""User-facing rate-limit messages and banner copy."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from quotagate.governor.core import GovernorStatus
    from quotagate.observer.monitor import ObservedStatus

LIMIT_REACHED = "Request limit reached. Please wait before trying again."
FROZEN = "Requests are paused after the server rate-limited this account. Please wait."
AVAILABLE_AGAIN = "Requests are available again."
WAIT_TIMED_OUT = "Timed out waiting for a request slot. Please try again later."


def _round_pct(percentage: float) -> int:
    # Half-up, as displayed to users
    return int(math.floor(percentage + 0.5))


def format_duration(seconds: int) -> str:
    """Format seconds as "1m 5s" / "42s" / "0s"."""
    if seconds <= 0:
        return "0s"
    minutes, rest = divmod(int(seconds), 60)
    if minutes > 0:
        return f"{minutes}m {rest}s"
    return f"{rest}s"


def near_limit_message(percentage: float) -> str:
    """Warning shown when usage crosses the near-limit threshold."""
    return f"Approaching the request limit ({_round_pct(percentage)}%). Please slow down."


def frozen_message(seconds_left: int) -> str:
    """Frozen notice with the remaining cooldown."""
    return f"{FROZEN} Resuming in {format_duration(seconds_left)}."


def rate_limit_summary(status: GovernorStatus, now_ms: int) -> str:
    """One-line summary with usage and minutes until the window resets."""
    minutes = max(0, math.ceil((status.reset_time_ms - now_ms) / 60_000))
    return (
        f"Request limit exceeded ({status.current}/{status.limit}). "
        f"Please try again in {minutes} minute(s)."
    )


def banner_text(observed: ObservedStatus) -> tuple[str, str]:
    """
    Title and detail line for a status banner.

    Returns:
        (title, detail)
    """
    if observed.is_frozen:
        title = "Requests paused"
        detail = f"Resuming in {format_duration(observed.time_until_unfreeze_s)}"
        return title, detail

    if observed.is_at_limit:
        title = "Request limit reached"
    elif observed.is_near_limit:
        title = f"Approaching the request limit ({_round_pct(observed.percentage)}%)"
    else:
        title = "Request usage normal"

    detail = f"Used {observed.current} of {observed.limit} requests."
    if observed.is_at_limit or observed.is_near_limit:
        detail += f" Resets in {format_duration(observed.time_until_reset_s)}"
    else:
        detail += f" Remaining: {observed.remaining}"
    return title, detail
