from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from territory import audit
from territory.crm.models import Client, ClientAssignment, Employee
from territory.crm.repositories import AssignmentRepository, ClientRepository, EmployeeRepository
from territory.crm.schemas import (
    AssignedClientIdsRead,
    AssignmentDiffRead,
    AssignmentReconcileRead,
    ClientListQuery,
    ClientPageRead,
    ClientRead,
    EmployeeRead,
    ScopeRead,
)
from territory.metrics import observe_assignment_changes, observe_assignment_reconcile
from territory.platform.security import (
    ASSIGNMENT_MANAGER_ROLES,
    ROLE_SALES,
    ROLE_SALES_MANAGER,
    Actor,
    AuthorizationError,
    OutOfScopeError,
    Scope,
    require_role,
    resolve_scope,
)
from territory.platform.store import ChunkedRead, chunked, day_start, fetch_in_chunks, in_chunks


logger = logging.getLogger("territory.crm.assignments")
tracer = trace.get_tracer("territory.crm.assignments")

client_repository = ClientRepository()
assignment_repository = AssignmentRepository()
employee_repository = EmployeeRepository()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _forbidden(exc: AuthorizationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


@dataclass(slots=True, frozen=True)
class AssignmentDiff:
    to_add: frozenset[uuid.UUID] = frozenset()
    to_remove: frozenset[uuid.UUID] = frozenset()

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_remove)


def plan_assignment_diff(desired: Iterable[uuid.UUID], persisted: Iterable[uuid.UUID]) -> AssignmentDiff:
    desired_set = frozenset(desired)
    persisted_set = frozenset(persisted)
    return AssignmentDiff(to_add=desired_set - persisted_set, to_remove=persisted_set - desired_set)


@dataclass(slots=True)
class ReconcileResult:
    employee_id: uuid.UUID
    diff: AssignmentDiff
    added: int = 0
    removed: int = 0

    @property
    def changed(self) -> bool:
        return self.diff.has_changes


class AssignmentReconcileError(Exception):
    """A reconciliation stopped partway; chunks committed before the failure stay applied."""

    def __init__(
        self,
        employee_id: uuid.UUID,
        *,
        planned_add: int,
        planned_remove: int,
        added: int,
        removed: int,
        reason: str,
    ) -> None:
        self.employee_id = employee_id
        self.planned_add = planned_add
        self.planned_remove = planned_remove
        self.added = added
        self.removed = removed
        self.reason = reason
        super().__init__(
            f"assignment reconcile for {employee_id} stopped after adding {added}/{planned_add} "
            f"and removing {removed}/{planned_remove}: {reason}"
        )

    def as_detail(self) -> dict[str, object]:
        return {
            "code": "assignment_reconcile_incomplete",
            "message": "Assignments were only partly saved; reload the current assignments and save again.",
            "employee_id": str(self.employee_id),
            "planned_add": self.planned_add,
            "planned_remove": self.planned_remove,
            "added": self.added,
            "removed": self.removed,
            "reason": self.reason[:500],
        }


def apply_assignment_diff(
    session: Session,
    *,
    employee_id: uuid.UUID,
    diff: AssignmentDiff,
    assigned_by: uuid.UUID,
    chunk_size: int | None = None,
    repository: AssignmentRepository = assignment_repository,
) -> ReconcileResult:
    """Insert then delete in bounded chunks, committing each chunk on its own.

    Chunks run strictly in order so a failure leaves a predictable prefix applied.
    Nothing is rolled back beyond the failing chunk.
    """

    result = ReconcileResult(employee_id=employee_id, diff=diff)
    if not diff.has_changes:
        return result

    assigned_at = utcnow()
    try:
        for chunk in chunked(sorted(diff.to_add, key=str), chunk_size):
            repository.insert_batch(
                session,
                employee_id=employee_id,
                client_ids=chunk,
                assigned_by=assigned_by,
                assigned_at=assigned_at,
            )
            session.commit()
            result.added += len(chunk)

        for chunk in chunked(sorted(diff.to_remove, key=str), chunk_size):
            removed = repository.delete_batch(session, employee_id=employee_id, client_ids=chunk)
            session.commit()
            result.removed += removed
    except SQLAlchemyError as exc:
        session.rollback()
        raise AssignmentReconcileError(
            employee_id,
            planned_add=len(diff.to_add),
            planned_remove=len(diff.to_remove),
            added=result.added,
            removed=result.removed,
            reason=str(exc),
        ) from exc

    return result


def scope_read(scope: Scope) -> ScopeRead:
    return ScopeRead(kind=scope.kind, ids=scope.sorted_ids(), is_empty=scope.is_empty)


@dataclass(slots=True)
class TeamService:
    """Which employees an actor may hand clients to."""

    employee_repository: EmployeeRepository = field(default_factory=EmployeeRepository)

    def assignable_employees(self, session: Session, actor: Actor, scope: Scope | None = None) -> list[Employee]:
        if actor.is_admin:
            return self.employee_repository.by_roles(session, [ROLE_SALES, ROLE_SALES_MANAGER])
        if not actor.is_sales_manager:
            return []

        resolved = scope if scope is not None else resolve_scope(session, actor)
        if resolved.is_empty:
            return []
        return self.employee_repository.teammates(
            session,
            resolved.ids,
            roles=[ROLE_SALES],
            exclude_id=actor.employee_id,
        )

    def list_assignable(self, session: Session, actor: Actor) -> list[EmployeeRead]:
        return [EmployeeRead.model_validate(item) for item in self.assignable_employees(session, actor)]

    def authorize_target(self, session: Session, actor: Actor, employee_id: uuid.UUID, scope: Scope) -> Employee:
        try:
            require_role(actor, ASSIGNMENT_MANAGER_ROLES, action="assignments.manage")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        employee = self.employee_repository.get(session, employee_id)
        if employee is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="employee not found")

        allowed_ids = {item.id for item in self.assignable_employees(session, actor, scope)}
        if employee.id not in allowed_ids:
            raise _forbidden(AuthorizationError("Employee is outside the caller's team"))
        return employee


@dataclass(slots=True)
class AssignmentReconciler:
    team_service: TeamService = field(default_factory=TeamService)
    repository: AssignmentRepository = field(default_factory=AssignmentRepository)
    chunk_size: int | None = None

    def persisted_client_ids(self, session: Session, actor: Actor, employee_id: uuid.UUID) -> AssignedClientIdsRead:
        scope = resolve_scope(session, actor)
        self.team_service.authorize_target(session, actor, employee_id, scope)
        read = self.repository.persisted_client_ids(session, employee_id)
        return AssignedClientIdsRead(
            employee_id=employee_id,
            client_ids=sorted(set(read.rows), key=str),
            complete=read.complete,
        )

    def preview(
        self,
        session: Session,
        actor: Actor,
        employee_id: uuid.UUID,
        desired: Iterable[uuid.UUID],
    ) -> AssignmentDiffRead:
        diff = self._plan(session, actor, employee_id, set(desired))
        return AssignmentDiffRead(
            employee_id=employee_id,
            to_add=sorted(diff.to_add, key=str),
            to_remove=sorted(diff.to_remove, key=str),
            add_count=len(diff.to_add),
            remove_count=len(diff.to_remove),
            has_changes=diff.has_changes,
        )

    def reconcile(
        self,
        session: Session,
        actor: Actor,
        employee_id: uuid.UUID,
        desired: Iterable[uuid.UUID],
    ) -> AssignmentReconcileRead:
        started = time.perf_counter()
        with tracer.start_as_current_span("crm.assignments.reconcile") as span:
            span.set_attribute("employee_id", str(employee_id))
            span.set_attribute("actor_id", str(actor.employee_id))
            if actor.correlation_id:
                span.set_attribute("correlation_id", actor.correlation_id)

            diff = self._plan(session, actor, employee_id, set(desired))
            span.set_attribute("planned_add", len(diff.to_add))
            span.set_attribute("planned_remove", len(diff.to_remove))

            if not diff.has_changes:
                logger.info("assignments.unchanged", extra={"employee_id": str(employee_id), "actor_id": str(actor.employee_id)})
                return AssignmentReconcileRead(
                    employee_id=employee_id,
                    changed=False,
                    added=0,
                    removed=0,
                    message="no changes",
                )

            try:
                result = apply_assignment_diff(
                    session,
                    employee_id=employee_id,
                    diff=diff,
                    assigned_by=actor.employee_id,
                    chunk_size=self.chunk_size,
                    repository=self.repository,
                )
            except AssignmentReconcileError as exc:
                observe_assignment_changes("insert", exc.added)
                observe_assignment_changes("delete", exc.removed)
                observe_assignment_reconcile(time.perf_counter() - started, failed=True)
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.reason[:200]))
                audit.record(
                    actor_id=str(actor.employee_id),
                    entity_type="crm.client_assignment",
                    entity_id=str(employee_id),
                    action="assignments.reconcile_failed",
                    details=exc.as_detail(),
                    correlation_id=actor.correlation_id,
                )
                logger.error(
                    "assignments.reconcile_failed",
                    extra={
                        "employee_id": str(employee_id),
                        "actor_id": str(actor.employee_id),
                        "planned_add": exc.planned_add,
                        "planned_remove": exc.planned_remove,
                        "added": exc.added,
                        "removed": exc.removed,
                        "error": exc.reason,
                    },
                )
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.as_detail()) from exc

            observe_assignment_changes("insert", result.added)
            observe_assignment_changes("delete", result.removed)
            observe_assignment_reconcile(time.perf_counter() - started, failed=False)
            audit.record(
                actor_id=str(actor.employee_id),
                entity_type="crm.client_assignment",
                entity_id=str(employee_id),
                action="assignments.reconciled",
                details={"added": result.added, "removed": result.removed},
                correlation_id=actor.correlation_id,
            )
            logger.info(
                "assignments.reconciled",
                extra={
                    "employee_id": str(employee_id),
                    "actor_id": str(actor.employee_id),
                    "added": result.added,
                    "removed": result.removed,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return AssignmentReconcileRead(
                employee_id=employee_id,
                changed=True,
                added=result.added,
                removed=result.removed,
                message=f"added {result.added}, removed {result.removed}",
            )

    def _plan(self, session: Session, actor: Actor, employee_id: uuid.UUID, desired: set[uuid.UUID]) -> AssignmentDiff:
        scope = resolve_scope(session, actor)
        self.team_service.authorize_target(session, actor, employee_id, scope)

        read = self.repository.persisted_client_ids(session, employee_id)
        if not read.complete:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="current assignments could not be loaded; nothing was changed",
            )
        persisted = set(read.rows)

        visible_read = self._visible_client_ids(session, scope, desired | persisted)
        if not visible_read.complete:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="client visibility could not be resolved; nothing was changed",
            )
        visible = set(visible_read.rows)
        outside = desired - visible - persisted

        if scope.is_unrestricted:
            # An unrestricted scope sees every client, so anything not visible does not exist.
            if outside:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail={
                        "code": "unknown_clients",
                        "message": "Some clients do not exist; nothing was changed.",
                        "client_ids": sorted(str(item) for item in outside),
                    },
                )
            return plan_assignment_diff(desired, persisted)

        # Managers only edit what they can see; hidden persisted rows are carried over untouched.
        if outside:
            raise _forbidden(OutOfScopeError(self.repository.resource, [str(item) for item in outside]))
        hidden_persisted = persisted - visible
        return plan_assignment_diff((desired & visible) | hidden_persisted, persisted)

    @staticmethod
    def _visible_client_ids(session: Session, scope: Scope, ids: set[uuid.UUID]) -> ChunkedRead:
        if scope.is_empty or not ids:
            return ChunkedRead(rows=[], chunks=0, failed_chunks=0)
        return fetch_in_chunks(
            session,
            lambda chunk: client_repository.apply_scope_query(
                select(Client.id).where(Client.id.in_(chunk)).order_by(Client.id),
                scope,
            ),
            sorted(ids, key=str),
            source="clients",
        )


@dataclass(slots=True)
class ClientListingService:
    team_service: TeamService = field(default_factory=TeamService)

    def list_clients(self, session: Session, actor: Actor, query: ClientListQuery) -> ClientPageRead:
        try:
            require_role(actor, ASSIGNMENT_MANAGER_ROLES, action="assignments.list_clients")
        except AuthorizationError as exc:
            raise _forbidden(exc)

        empty = ClientPageRead(items=[], total=0, page=query.page, per_page=query.per_page, pages=1)
        scope = resolve_scope(session, actor)
        if scope.is_empty:
            return empty

        if query.tab == "assigned":
            if query.employee_id is None:
                return empty
            self.team_service.authorize_target(session, actor, query.employee_id, scope)
            stmt = select(Client).join(ClientAssignment, ClientAssignment.client_id == Client.id)
            stmt = stmt.where(ClientAssignment.employee_id == query.employee_id)
            ordering = (ClientAssignment.assigned_at.desc(), Client.id)
        else:
            stmt = select(Client)
            ordering = (Client.created_at.desc(), Client.id)

        stmt = client_repository.apply_scope_query(stmt, scope)

        if query.search:
            stmt = stmt.where(
                Client.name.icontains(query.search, autoescape=True)
                | Client.mobile.icontains(query.search, autoescape=True)
            )
        if query.statuses:
            stmt = stmt.where(Client.status.in_(query.statuses))
        if query.project_id is not None:
            stmt = stmt.where(Client.interested_project_id == query.project_id)
        if query.from_date is not None:
            stmt = stmt.where(Client.created_at >= day_start(query.from_date))
        if query.to_date is not None:
            stmt = stmt.where(Client.created_at < day_start(query.to_date + timedelta(days=1)))

        if query.tab == "all" and query.unassigned_only:
            try:
                unassigned = assignment_repository.unassigned_client_ids(session)
            except SQLAlchemyError as exc:
                logger.warning("store.rpc_failed", extra={"source": "unassigned_client_ids", "error": str(exc)})
                return empty
            if not unassigned:
                return empty
            stmt = stmt.where(in_chunks(Client.id, unassigned))

        total = int(session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0)
        offset = (query.page - 1) * query.per_page
        items = session.scalars(stmt.order_by(*ordering).offset(offset).limit(query.per_page)).all()
        return ClientPageRead(
            items=[ClientRead.model_validate(item) for item in items],
            total=total,
            page=query.page,
            per_page=query.per_page,
            pages=max(1, math.ceil(total / query.per_page)),
        )


team_service = TeamService()
assignment_reconciler = AssignmentReconciler()
client_listing_service = ClientListingService()
