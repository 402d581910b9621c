"""Role classification and per-role request quotas."""

from quotagate.quota.roles import Role, resolve_role
from quotagate.quota.table import DEFAULT_LIMITS, DEFAULT_WINDOW_MS, QuotaEntry, QuotaTable

__all__ = [
    "DEFAULT_LIMITS",
    "DEFAULT_WINDOW_MS",
    "QuotaEntry",
    "QuotaTable",
    "Role",
    "resolve_role",
]
