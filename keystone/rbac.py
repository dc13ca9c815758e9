"""
Role hierarchy — the policy oracle for role-based access control.

Roles form a strict total order. Every authorization decision in the system
compares levels from ROLE_HIERARCHY; nothing mutates the table at runtime.

    OWNER (7) > ADMINISTRATOR (6) > MANAGER (5) > STAFF (4)
        > USER (3) > CUSTOMER (2) > SUBSCRIBER (1)

Role assignment rules (checked before any mutation):
  - Only an OWNER may change the role of another OWNER.
  - A non-OWNER may only assign roles strictly below their own level.
"""

import enum
from types import MappingProxyType

from keystone.exceptions import ForbiddenError


class UserRole(str, enum.Enum):
    """
    The role a user holds within the system.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    OWNER = "OWNER"
    ADMINISTRATOR = "ADMINISTRATOR"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    USER = "USER"
    CUSTOMER = "CUSTOMER"
    SUBSCRIBER = "SUBSCRIBER"


# Read-only view so no caller can re-rank roles at runtime
ROLE_HIERARCHY = MappingProxyType({
    UserRole.OWNER: 7,
    UserRole.ADMINISTRATOR: 6,
    UserRole.MANAGER: 5,
    UserRole.STAFF: 4,
    UserRole.USER: 3,
    UserRole.CUSTOMER: 2,
    UserRole.SUBSCRIBER: 1,
})


def role_level(role: UserRole) -> int:
    """Return the hierarchy level of a role (OWNER=7 ... SUBSCRIBER=1)."""
    return ROLE_HIERARCHY[UserRole(role)]


def has_role(user_role: UserRole, required_role: UserRole) -> bool:
    """Exact role match."""
    return UserRole(user_role) == UserRole(required_role)


def has_any_role(user_role: UserRole, required_roles: list[UserRole]) -> bool:
    return UserRole(user_role) in {UserRole(r) for r in required_roles}


def has_min_role(user_role: UserRole, min_role: UserRole) -> bool:
    """Hierarchical check: True if user_role is at least min_role."""
    return role_level(user_role) >= role_level(min_role)


def is_admin_or_above(role: UserRole) -> bool:
    return has_min_role(role, UserRole.ADMINISTRATOR)


def is_owner(role: UserRole) -> bool:
    return UserRole(role) == UserRole.OWNER


def roles_at_or_below(role: UserRole) -> list[UserRole]:
    """All roles whose level is <= the given role's level, highest first."""
    level = role_level(role)
    return [r for r, lvl in ROLE_HIERARCHY.items() if lvl <= level]


def roles_above(role: UserRole) -> list[UserRole]:
    """All roles whose level is > the given role's level, highest first."""
    level = role_level(role)
    return [r for r, lvl in ROLE_HIERARCHY.items() if lvl > level]


def ensure_can_assign_role(
    actor_role: UserRole,
    target_current_role: UserRole,
    new_role: UserRole,
) -> None:
    """
    Enforce the role assignment rules.

    Args:
        actor_role: Role of the user performing the change.
        target_current_role: Role the target user holds right now.
        new_role: Role the actor wants to assign.

    Raises:
        ForbiddenError: If a non-OWNER touches an OWNER, or assigns a role
            equal to or higher than their own.
    """
    if is_owner(actor_role):
        return

    if is_owner(target_current_role):
        raise ForbiddenError("Only owners can modify owner roles")

    if role_level(new_role) >= role_level(actor_role):
        raise ForbiddenError("Cannot assign a role equal to or higher than your own")
