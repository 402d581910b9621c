"""
Quota table: static role -> (limit, window) mapping.

Lookups never fail. An unrecognized role gets the most restrictive entry,
never an unlimited one.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quotagate.quota.roles import Role

DEFAULT_WINDOW_MS = 60_000

# Requests per window for each role
DEFAULT_LIMITS: dict[Role, int] = {
    Role.ANONYMOUS: 30,
    Role.STUDENT: 100,
    Role.TEACHER: 200,
    Role.SUPERVISOR: 500,
    Role.GENERAL_SUPERVISOR: 500,
    Role.ACADEMIC_SUPERVISOR: 500,
    Role.ADMIN: 1000,
}


class QuotaEntry(BaseModel):
    """
    Request quota for one role.

    Attributes:
        role: Role the quota applies to.
        limit: Requests allowed per window.
        window_ms: Fixed window length in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Role = Field(..., description="Role the quota applies to")
    limit: int = Field(..., ge=1, description="Requests allowed per window")
    window_ms: int = Field(default=DEFAULT_WINDOW_MS, ge=1000, description="Window length (ms)")


class QuotaTable:
    """Immutable role -> QuotaEntry lookup."""

    def __init__(self, entries: Mapping[Role, QuotaEntry] | list[QuotaEntry]) -> None:
        if isinstance(entries, Mapping):
            items = dict(entries)
        else:
            items = {entry.role: entry for entry in entries}
        if not items:
            raise ValueError("QuotaTable requires at least one entry")
        for role, entry in items.items():
            if entry.role != role:
                raise ValueError(f"Entry for {role.value} declares role {entry.role.value}")

        self._entries: dict[Role, QuotaEntry] = items
        # Lowest limit wins; longer window breaks ties
        self._most_restrictive = min(
            items.values(), key=lambda e: (e.limit, -e.window_ms)
        )

    @classmethod
    def default(cls) -> QuotaTable:
        """Build the stock table (see DEFAULT_LIMITS)."""
        return cls([QuotaEntry(role=role, limit=limit) for role, limit in DEFAULT_LIMITS.items()])

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        default_window_ms: int = DEFAULT_WINDOW_MS,
    ) -> QuotaTable:
        """
        Build a table from plain config data.

        Each value is either a bare limit or a mapping with "limit" and an
        optional "window_ms".

        Raises:
            ValueError: On unknown roles or an empty mapping.
            pydantic.ValidationError: On out-of-range limits or windows.
        """
        entries: list[QuotaEntry] = []
        for raw_role, value in data.items():
            role = Role.parse(raw_role)
            if role is None:
                raise ValueError(f"Unknown role in quota table: {raw_role!r}")
            if isinstance(value, Mapping):
                entries.append(
                    QuotaEntry(
                        role=role,
                        limit=value["limit"],
                        window_ms=value.get("window_ms", default_window_ms),
                    )
                )
            else:
                entries.append(QuotaEntry(role=role, limit=value, window_ms=default_window_ms))
        return cls(entries)

    @property
    def most_restrictive(self) -> QuotaEntry:
        """Entry applied to unrecognized roles."""
        return self._most_restrictive

    def limit_for(self, role: Role | str) -> QuotaEntry:
        """
        Look up the quota for a role.

        Args:
            role: Role or raw role string.

        Returns:
            The role's entry, or the most restrictive entry when the role is
            unknown or missing from the table.
        """
        parsed = Role.parse(role)
        if parsed is None:
            return self._most_restrictive
        return self._entries.get(parsed, self._most_restrictive)

    def __contains__(self, role: object) -> bool:
        return isinstance(role, (Role, str)) and Role.parse(role) in self._entries

    def __iter__(self) -> Iterator[QuotaEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)
