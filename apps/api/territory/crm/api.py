from __future__ import annotations

import uuid
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from territory.context import get_correlation_id
from territory.core.auth import AuthUser, get_current_user as get_auth_user
from territory.core.database import get_db
from territory.crm.repositories import EmployeeRepository
from territory.crm.schemas import (
    AssignedClientIdsRead,
    AssignmentDiffRead,
    AssignmentReconcileRead,
    AssignmentSetRequest,
    ClientListQuery,
    ClientPageRead,
    EmployeeRead,
    ScopeRead,
)
from territory.crm.service import assignment_reconciler, client_listing_service, scope_read, team_service
from territory.platform.security import Actor, resolve_scope


scope_router = APIRouter(prefix="/api/scope", tags=["crm.scope"])
router = APIRouter(prefix="/api/assignments", tags=["crm.assignments"])


def _parse_str_list(raw: str | None) -> list[str]:
    if raw is None:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def get_current_actor(
    request: Request,
    auth_user: AuthUser = Depends(get_auth_user),
    db: Session = Depends(get_db),
) -> Actor:
    """Resolve the bearer subject to an employee; the role always comes from the store."""

    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    try:
        employee_id = uuid.UUID(auth_user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown employee")

    employee = EmployeeRepository.get(db, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown employee")
    return Actor(employee_id=employee.id, role=employee.role, correlation_id=correlation_id)


@scope_router.get("/me", response_model=ScopeRead)
def my_scope(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ScopeRead:
    return scope_read(resolve_scope(db, actor))


@router.get("/employees", response_model=list[EmployeeRead])
def list_assignable_employees(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[EmployeeRead]:
    return team_service.list_assignable(db, actor)


@router.get("/clients", response_model=ClientPageRead)
def list_clients(
    tab: Literal["all", "assigned"] = Query(default="all"),
    employee_id: uuid.UUID | None = Query(default=None),
    search: str | None = Query(default=None),
    statuses: str | None = Query(default=None, description="Comma separated client statuses"),
    project_id: uuid.UUID | None = Query(default=None),
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    unassigned_only: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ClientPageRead:
    try:
        query = ClientListQuery(
            tab=tab,
            employee_id=employee_id,
            search=search,
            statuses=_parse_str_list(statuses),
            project_id=project_id,
            from_date=from_date,
            to_date=to_date,
            unassigned_only=unassigned_only,
            page=page,
            per_page=per_page,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.errors())
    return client_listing_service.list_clients(db, actor, query)


@router.get("/{employee_id}", response_model=AssignedClientIdsRead)
def get_assigned_client_ids(
    employee_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> AssignedClientIdsRead:
    return assignment_reconciler.persisted_client_ids(db, actor, employee_id)


@router.post("/{employee_id}/preview", response_model=AssignmentDiffRead)
def preview_assignments(
    employee_id: uuid.UUID,
    payload: AssignmentSetRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> AssignmentDiffRead:
    return assignment_reconciler.preview(db, actor, employee_id, payload.client_ids)


@router.put("/{employee_id}", response_model=AssignmentReconcileRead)
def save_assignments(
    employee_id: uuid.UUID,
    payload: AssignmentSetRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> AssignmentReconcileRead:
    return assignment_reconciler.reconcile(db, actor, employee_id, payload.client_ids)
