"""
Caller roles.

The governor never derives a role on its own: the embedding application
resolves one per session (usually with resolve_role) and passes it in.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Caller classification used to select a quota."""

    ANONYMOUS = "anonymous"
    STUDENT = "student"
    TEACHER = "teacher"
    SUPERVISOR = "supervisor"  # Legacy supervisor accounts
    GENERAL_SUPERVISOR = "general_supervisor"
    ACADEMIC_SUPERVISOR = "academic_supervisor"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Role | str) -> Role | None:
        """Return the matching Role, or None if value is not a known role."""
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


def resolve_role(
    profile: Mapping[str, Any] | None,
    supervisor_type: str | None = None,
) -> Role:
    """
    Derive a Role from a user profile mapping.

    Precedence:
    - superuser flag or role "admin" -> ADMIN
    - explicit general/academic supervisor roles
    - legacy supervisor role/flag: ACADEMIC_SUPERVISOR when supervisor_type
      is "academic", otherwise SUPERVISOR
    - teacher, then student (role or is_* flag)
    - anything else -> ANONYMOUS

    Args:
        profile: User profile as stored by the application (None = logged out).
        supervisor_type: Stored supervisor flavour for legacy accounts.

    Returns:
        Resolved Role. Malformed profiles resolve to ANONYMOUS.
    """
    if not profile:
        return Role.ANONYMOUS

    if not isinstance(profile, Mapping):
        logger.warning("Ignoring malformed user profile", extra={"kind": type(profile).__name__})
        return Role.ANONYMOUS

    role = str(profile.get("role") or "").lower()

    if profile.get("is_superuser") or role == Role.ADMIN.value:
        return Role.ADMIN

    if role == Role.GENERAL_SUPERVISOR.value:
        return Role.GENERAL_SUPERVISOR
    if role == Role.ACADEMIC_SUPERVISOR.value:
        return Role.ACADEMIC_SUPERVISOR

    if role == Role.SUPERVISOR.value or profile.get("is_supervisor"):
        if (supervisor_type or "general").lower() == "academic":
            return Role.ACADEMIC_SUPERVISOR
        return Role.SUPERVISOR

    if role == Role.TEACHER.value or profile.get("is_teacher"):
        return Role.TEACHER
    if role == Role.STUDENT.value or profile.get("is_student"):
        return Role.STUDENT

    return Role.ANONYMOUS
