from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import false, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from territory.crm.models import ClientAssignment, EmployeeProject
from territory.platform.security.context import ROLE_ADMIN, ROLE_SALES, ROLE_SALES_MANAGER, Actor
from territory.platform.store import in_chunks, read_all


logger = logging.getLogger("territory.security.scope")

ScopeKind = Literal["all", "projects", "clients"]


@dataclass(slots=True, frozen=True)
class Scope:
    """Records an actor may see.

    ``all`` is unrestricted. ``projects`` limits clients to those interested in one
    of ``ids``; ``clients`` limits them to exactly ``ids``. A restricted scope with
    no ids is empty and must yield no rows.
    """

    kind: ScopeKind
    ids: frozenset[uuid.UUID] = frozenset()

    @classmethod
    def unrestricted(cls) -> Scope:
        return cls(kind="all")

    @classmethod
    def for_projects(cls, ids: Iterable[uuid.UUID]) -> Scope:
        return cls(kind="projects", ids=frozenset(ids))

    @classmethod
    def for_clients(cls, ids: Iterable[uuid.UUID]) -> Scope:
        return cls(kind="clients", ids=frozenset(ids))

    @property
    def is_unrestricted(self) -> bool:
        return self.kind == "all"

    @property
    def is_empty(self) -> bool:
        return self.kind != "all" and not self.ids

    def sorted_ids(self) -> list[uuid.UUID]:
        return sorted(self.ids, key=str)


def resolve_scope(session: Session, actor: Actor) -> Scope:
    if actor.role == ROLE_ADMIN:
        return Scope.unrestricted()

    if actor.role == ROLE_SALES_MANAGER:
        stmt = (
            select(EmployeeProject.project_id)
            .where(EmployeeProject.employee_id == actor.employee_id)
            .order_by(EmployeeProject.project_id)
        )
        rows = read_all(session, stmt, source="employee_projects").rows
        scope = Scope.for_projects(rows)
    elif actor.role == ROLE_SALES:
        stmt = (
            select(ClientAssignment.client_id)
            .where(ClientAssignment.employee_id == actor.employee_id)
            .order_by(ClientAssignment.client_id)
        )
        rows = read_all(session, stmt, source="client_assignments").rows
        scope = Scope.for_clients(rows)
    else:
        scope = Scope.for_clients([])

    if scope.is_empty:
        logger.info("scope.empty", extra={"actor_id": str(actor.employee_id)})
    return scope


def apply_scope_filter(
    query: Select[Any],
    scope: Scope,
    *,
    project_column: Any,
    client_column: Any,
) -> Select[Any]:
    """Add the scope predicate to ``query``; an empty scope matches nothing."""

    if scope.is_unrestricted:
        return query
    if scope.is_empty:
        return query.where(false())
    if scope.kind == "projects":
        return query.where(in_chunks(project_column, scope.sorted_ids()))
    return query.where(in_chunks(client_column, scope.sorted_ids()))
