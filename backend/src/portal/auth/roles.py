"""Caller roles for the application portal.

Roles arrive from the authenticating gateway in the X-Role header.

Visibility:
┌─────────────┬────────────────┬─────────────────┐
│ Role        │ Own records    │ Every record    │
├─────────────┼────────────────┼─────────────────┤
│ STUDENT     │       ✓        │                 │
│ FACULTY     │       ✓        │                 │
│ VALIDATOR   │       ✓        │        ✓        │
│ COORDINATOR │       ✓        │        ✓        │
│ HOD         │       ✓        │        ✓        │
│ ADMIN       │       ✓        │        ✓        │
└─────────────┴────────────────┴─────────────────┘

The elevated set is configurable through ELEVATED_ROLES.
"""

from enum import Enum
from typing import Iterable, Optional


class Role(str, Enum):
    """Known caller roles. Values are lowercase, as sent by the gateway."""
    STUDENT = "student"
    FACULTY = "faculty"
    VALIDATOR = "validator"
    COORDINATOR = "coordinator"
    HOD = "hod"
    ADMIN = "admin"


DEFAULT_ELEVATED_ROLES = frozenset({Role.VALIDATOR, Role.COORDINATOR, Role.ADMIN, Role.HOD})


def normalize_role(role: Optional[str]) -> str:
    """Lowercase and trim a role string; missing roles become 'student'.

    Examples:
        >>> normalize_role(" HOD ")
        'hod'
        >>> normalize_role(None)
        'student'
    """
    if not role or not role.strip():
        return Role.STUDENT.value
    return role.strip().lower()


def is_elevated(role: Optional[str], elevated_roles: Optional[Iterable[str]] = None) -> bool:
    """Check whether a role may see every owner's records.

    Examples:
        >>> is_elevated("Coordinator")
        True
        >>> is_elevated("student")
        False
        >>> is_elevated("faculty", ["faculty"])
        True
    """
    if elevated_roles is None:
        allowed = {r.value for r in DEFAULT_ELEVATED_ROLES}
    else:
        allowed = {normalize_role(r) for r in elevated_roles}
    return normalize_role(role) in allowed
