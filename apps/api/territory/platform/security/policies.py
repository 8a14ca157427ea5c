from __future__ import annotations

from territory.platform.security.context import ROLE_ADMIN, ROLE_SALES_MANAGER, Actor
from territory.platform.security.errors import AuthorizationError


ASSIGNMENT_MANAGER_ROLES = frozenset({ROLE_ADMIN, ROLE_SALES_MANAGER})


def require_role(actor: Actor, roles: frozenset[str] | set[str], *, action: str) -> None:
    if actor.role not in roles:
        raise AuthorizationError(f"Role '{actor.role}' may not perform '{action}'")
