from territory.platform.security.context import ROLE_ADMIN, ROLE_SALES, ROLE_SALES_MANAGER, Actor
from territory.platform.security.errors import AuthorizationError, OutOfScopeError
from territory.platform.security.policies import ASSIGNMENT_MANAGER_ROLES, require_role
from territory.platform.security.repository import BaseRepository
from territory.platform.security.scope import Scope, apply_scope_filter, resolve_scope

__all__ = [
    "ASSIGNMENT_MANAGER_ROLES",
    "Actor",
    "AuthorizationError",
    "BaseRepository",
    "OutOfScopeError",
    "ROLE_ADMIN",
    "ROLE_SALES",
    "ROLE_SALES_MANAGER",
    "Scope",
    "apply_scope_filter",
    "require_role",
    "resolve_scope",
]
