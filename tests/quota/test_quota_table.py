"""Tests for the role -> quota table."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from quotagate.quota import DEFAULT_LIMITS, DEFAULT_WINDOW_MS, QuotaEntry, QuotaTable, Role


class TestQuotaEntry:
    """Tests for QuotaEntry validation."""

    def test_default_window(self) -> None:
        """Window defaults to one minute."""
        entry = QuotaEntry(role=Role.STUDENT, limit=100)
        assert entry.window_ms == DEFAULT_WINDOW_MS == 60_000

    def test_limit_must_be_positive(self) -> None:
        """Zero limit is rejected."""
        with pytest.raises(ValidationError):
            QuotaEntry(role=Role.STUDENT, limit=0)

    def test_window_has_floor(self) -> None:
        """Sub-second windows are rejected."""
        with pytest.raises(ValidationError):
            QuotaEntry(role=Role.STUDENT, limit=10, window_ms=500)

    def test_entry_is_frozen(self) -> None:
        """Entries are immutable."""
        entry = QuotaEntry(role=Role.STUDENT, limit=100)
        with pytest.raises(ValidationError):
            entry.limit = 5  # type: ignore[misc]

    def test_extra_fields_forbidden(self) -> None:
        """Unknown fields are rejected."""
        with pytest.raises(ValidationError):
            QuotaEntry(role=Role.STUDENT, limit=1, burst=3)  # type: ignore[call-arg]


class TestDefaultTable:
    """Tests for the stock quota table."""

    def test_all_roles_present(self) -> None:
        """Every role has an entry."""
        table = QuotaTable.default()
        assert len(table) == len(Role)
        for role in Role:
            assert role in table

    @pytest.mark.parametrize(
        ("role", "limit"),
        [
            (Role.ANONYMOUS, 30),
            (Role.STUDENT, 100),
            (Role.TEACHER, 200),
            (Role.SUPERVISOR, 500),
            (Role.GENERAL_SUPERVISOR, 500),
            (Role.ACADEMIC_SUPERVISOR, 500),
            (Role.ADMIN, 1000),
        ],
    )
    def test_default_limits(self, role: Role, limit: int) -> None:
        """Stock limits per role, one-minute windows."""
        entry = QuotaTable.default().limit_for(role)
        assert entry.limit == limit == DEFAULT_LIMITS[role]
        assert entry.window_ms == 60_000

    def test_string_roles_accepted(self) -> None:
        """Raw strings are normalized before lookup."""
        table = QuotaTable.default()
        assert table.limit_for(" Teacher ").limit == 200
        assert table.limit_for("admin").limit == 1000

    def test_unknown_role_gets_most_restrictive(self) -> None:
        """Unrecognized roles never get a generous quota."""
        table = QuotaTable.default()
        entry = table.limit_for("superhero")
        assert entry.limit == 30
        assert entry is table.most_restrictive


class TestCustomTable:
    """Tests for tables built from config data."""

    def test_from_mapping_bare_and_nested(self) -> None:
        """Values may be bare limits or {limit, window_ms} mappings."""
        table = QuotaTable.from_mapping(
            {"student": 5, "teacher": {"limit": 50, "window_ms": 120_000}},
            default_window_ms=30_000,
        )
        assert table.limit_for(Role.STUDENT).limit == 5
        assert table.limit_for(Role.STUDENT).window_ms == 30_000
        assert table.limit_for(Role.TEACHER).limit == 50
        assert table.limit_for(Role.TEACHER).window_ms == 120_000

    def test_from_mapping_unknown_role(self) -> None:
        """Unknown roles in config are an error, not a silent default."""
        with pytest.raises(ValueError, match="Unknown role"):
            QuotaTable.from_mapping({"wizard": 10})

    def test_from_mapping_invalid_limit(self) -> None:
        """Out-of-range limits surface as validation errors."""
        with pytest.raises(ValidationError):
            QuotaTable.from_mapping({"student": 0})

    def test_empty_table_rejected(self) -> None:
        """A table needs at least one entry."""
        with pytest.raises(ValueError, match="at least one"):
            QuotaTable([])

    def test_mismatched_mapping_rejected(self) -> None:
        """Mapping keys must match entry roles."""
        with pytest.raises(ValueError, match="declares role"):
            QuotaTable({Role.ADMIN: QuotaEntry(role=Role.STUDENT, limit=1)})

    def test_missing_role_falls_back(self) -> None:
        """Known roles absent from a partial table get the most restrictive entry."""
        table = QuotaTable.from_mapping({"student": 100, "teacher": 200})
        assert Role.ADMIN not in table
        assert table.limit_for(Role.ADMIN).limit == 100

    def test_most_restrictive_tie_prefers_longer_window(self) -> None:
        """Equal limits: the longer window is the stricter one."""
        table = QuotaTable(
            [
                QuotaEntry(role=Role.STUDENT, limit=10, window_ms=60_000),
                QuotaEntry(role=Role.TEACHER, limit=10, window_ms=120_000),
                QuotaEntry(role=Role.ADMIN, limit=50, window_ms=60_000),
            ]
        )
        assert table.most_restrictive.role == Role.TEACHER

    def test_iteration_yields_entries(self) -> None:
        """Iterating a table yields its entries."""
        table = QuotaTable.from_mapping({"student": 1, "admin": 2})
        assert {e.role for e in table} == {Role.STUDENT, Role.ADMIN}
