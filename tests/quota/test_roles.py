"""Tests for role parsing and profile-based role resolution."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from quotagate.quota import Role, resolve_role


class TestRoleParse:
    """Tests for Role.parse."""

    def test_parse_role_instance(self) -> None:
        """Role instances pass through."""
        assert Role.parse(Role.TEACHER) is Role.TEACHER

    def test_parse_normalizes(self) -> None:
        """Case and surrounding whitespace are ignored."""
        assert Role.parse(" ADMIN ") is Role.ADMIN

    def test_parse_unknown(self) -> None:
        """Unknown strings parse to None."""
        assert Role.parse("moderator") is None


class TestResolveRole:
    """Tests for resolve_role precedence."""

    @pytest.mark.parametrize(
        ("profile", "expected"),
        [
            (None, Role.ANONYMOUS),
            ({}, Role.ANONYMOUS),
            ({"role": "guest"}, Role.ANONYMOUS),
            ({"is_superuser": True, "role": "student"}, Role.ADMIN),
            ({"role": "admin"}, Role.ADMIN),
            ({"role": "general_supervisor"}, Role.GENERAL_SUPERVISOR),
            ({"role": "academic_supervisor"}, Role.ACADEMIC_SUPERVISOR),
            ({"role": "supervisor"}, Role.SUPERVISOR),
            ({"is_supervisor": True, "is_teacher": True}, Role.SUPERVISOR),
            ({"role": "teacher"}, Role.TEACHER),
            ({"is_teacher": True, "is_student": True}, Role.TEACHER),
            ({"role": "Student"}, Role.STUDENT),
            ({"is_student": True}, Role.STUDENT),
        ],
    )
    def test_precedence(self, profile: dict[str, Any] | None, expected: Role) -> None:
        """Higher-privilege markers win over lower ones."""
        assert resolve_role(profile) is expected

    def test_legacy_supervisor_academic_type(self) -> None:
        """Legacy supervisors with an academic type map to ACADEMIC_SUPERVISOR."""
        assert resolve_role({"role": "supervisor"}, supervisor_type="academic") is (
            Role.ACADEMIC_SUPERVISOR
        )
        assert resolve_role({"is_supervisor": True}, supervisor_type="Academic") is (
            Role.ACADEMIC_SUPERVISOR
        )

    def test_legacy_supervisor_general_type(self) -> None:
        """Any other supervisor type stays SUPERVISOR."""
        assert resolve_role({"role": "supervisor"}, supervisor_type="general") is Role.SUPERVISOR

    def test_explicit_role_ignores_supervisor_type(self) -> None:
        """Explicit general supervisors are not reinterpreted."""
        assert resolve_role({"role": "general_supervisor"}, supervisor_type="academic") is (
            Role.GENERAL_SUPERVISOR
        )

    def test_malformed_profile(self, caplog: pytest.LogCaptureFixture) -> None:
        """Non-mapping profiles resolve to ANONYMOUS with a warning."""
        with caplog.at_level(logging.WARNING, logger="quotagate.quota.roles"):
            assert resolve_role(["admin"]) is Role.ANONYMOUS  # type: ignore[arg-type]
        assert "malformed user profile" in caplog.text
