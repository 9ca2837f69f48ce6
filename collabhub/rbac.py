"""
collabhub/rbac.py

Project role hierarchy: owner > admin > member.

Pure Python logic - no FastAPI imports, no database access.
"""

from typing import Optional, Union

from collabhub.models import MemberRole


# ============================================================================
# Role Hierarchy
# ============================================================================

ROLE_HIERARCHY: dict[str, int] = {
    MemberRole.member.value: 1,
    MemberRole.admin.value: 2,
    MemberRole.owner.value: 3,
}


def role_level(role: Optional[Union[str, MemberRole]]) -> int:
    """Numeric level of a role; unknown or missing roles are 0 (no access)."""
    if role is None:
        return 0
    value = role.value if isinstance(role, MemberRole) else str(role).lower()
    return ROLE_HIERARCHY.get(value, 0)


def role_at_least(role: Optional[Union[str, MemberRole]], required: Union[str, MemberRole]) -> bool:
    """
    Check whether a member's role meets a minimum role.

    Examples:
        role_at_least("owner", "admin")  -> True
        role_at_least("member", "admin") -> False
        role_at_least(None, "member")    -> False
    """
    return role_level(role) >= role_level(required) > 0
