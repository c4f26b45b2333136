"""
services/auth/roles.py
Identity & role ledger: which role an account is acting as, and switching it.

The active role lives on the users row. Token claims are never consulted for
authorization; every check here reads the persisted account.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Role, RoleGrant, User
from shared.utils.exceptions import RoleNotActive, RoleNotGranted
from shared.utils.security import issue_token_for

logger = logging.getLogger(__name__)


def get_active_role(user: User) -> Role:
    return user.active_role


def require_acting_role(user: User, *allowed: Role) -> Role:
    """
    Ensure `user` is currently acting in one of `allowed` roles.
    Raises RoleNotGranted when the account holds none of them,
    RoleNotActive when it holds one but has another role active.
    """
    granted = user.roles
    active = user.active_role
    if active not in granted:
        # Active role was revoked underneath the account
        raise RoleNotGranted()
    if active in allowed:
        return active
    if granted.intersection(allowed):
        wanted = ", ".join(sorted(r.value for r in allowed))
        raise RoleNotActive(f"Switch your active role to {wanted} to perform this action")
    raise RoleNotGranted()


async def switch_active_role(db: AsyncSession, user: User, requested: Role) -> tuple[User, str]:
    """Persist a new active role and return (user, freshly signed token)."""
    requested = Role(requested)
    if requested not in user.roles:
        raise RoleNotGranted(f"Role '{requested.value}' has not been granted to this account")

    if user.active_role != requested:
        logger.info(f"User {user.id} switched active role {user.active_role.value} -> {requested.value}")
        user.active_role = requested
        await db.flush()

    token, _ = issue_token_for(user)
    return user, token


def grant_role(user: User, role: Role) -> None:
    """Append (or re-activate) a role grant on the account."""
    for grant in user.role_grants:
        if grant.role == role:
            grant.is_active = True
            return
    user.role_grants.append(RoleGrant(role=role, is_active=True))
