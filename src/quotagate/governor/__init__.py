"""Request governor: window counters, freezes, gate and waiter.

The governor owns a WindowStore and a FreezeStore and is the only thing
that mutates them. GovernedCaller and FreezePolicy implement the inbound
contract for code that issues HTTP requests.
"""

from quotagate.governor.caller import GovernedCaller, WaitTimedOutError
from quotagate.governor.core import (
    BlockReason,
    GovernorEvent,
    GovernorEventType,
    GovernorMetrics,
    GovernorStatus,
    RequestGovernor,
)
from quotagate.governor.freeze_store import FreezeStore
from quotagate.governor.signals import FreezePolicy, RateLimitSignal, parse_retry_after
from quotagate.governor.window_store import (
    DEFAULT_ENDPOINT,
    UNKNOWN_ROLE,
    WindowKey,
    WindowSnapshot,
    WindowStore,
)

__all__ = [
    "DEFAULT_ENDPOINT",
    "BlockReason",
    "FreezePolicy",
    "FreezeStore",
    "GovernedCaller",
    "GovernorEvent",
    "GovernorEventType",
    "GovernorMetrics",
    "GovernorStatus",
    "RateLimitSignal",
    "RequestGovernor",
    "UNKNOWN_ROLE",
    "WaitTimedOutError",
    "WindowKey",
    "WindowSnapshot",
    "WindowStore",
    "parse_retry_after",
]
