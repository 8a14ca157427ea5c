from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, exists, insert, select
from sqlalchemy.orm import Session

from territory.crm.models import Client, ClientAssignment, Employee, EmployeeProject
from territory.platform.security.repository import BaseRepository
from territory.platform.store import PagedRead, fetch_in_chunks, read_all


class ClientRepository(BaseRepository):
    resource = "crm.client"
    project_column = Client.interested_project_id
    client_column = Client.id


class AssignmentRepository(BaseRepository):
    """Access to ``client_assignments``; scoped queries must join ``clients``."""

    resource = "crm.client_assignment"
    project_column = Client.interested_project_id
    client_column = ClientAssignment.client_id

    def persisted_client_ids(self, session: Session, employee_id: uuid.UUID) -> PagedRead[uuid.UUID]:
        stmt = (
            select(ClientAssignment.client_id)
            .where(ClientAssignment.employee_id == employee_id)
            .order_by(ClientAssignment.client_id)
        )
        return read_all(session, stmt, source="client_assignments")

    def employees_by_client(
        self,
        session: Session,
        client_ids: Iterable[uuid.UUID],
    ) -> tuple[dict[uuid.UUID, set[uuid.UUID]], int]:
        """Map each client to its assigned employees; also returns the failed chunk count."""

        read = fetch_in_chunks(
            session,
            lambda chunk: (
                select(ClientAssignment.client_id, ClientAssignment.employee_id)
                .where(ClientAssignment.client_id.in_(chunk))
                .order_by(ClientAssignment.client_id, ClientAssignment.employee_id)
            ),
            client_ids,
            source="client_assignments",
            scalars=False,
        )
        mapping: dict[uuid.UUID, set[uuid.UUID]] = {}
        for client_id, employee_id in read.rows:
            mapping.setdefault(client_id, set()).add(employee_id)
        return mapping, read.failed_chunks

    def insert_batch(
        self,
        session: Session,
        *,
        employee_id: uuid.UUID,
        client_ids: list[uuid.UUID],
        assigned_by: uuid.UUID,
        assigned_at: datetime,
    ) -> int:
        if not client_ids:
            return 0
        session.execute(
            insert(ClientAssignment),
            [
                {
                    "client_id": client_id,
                    "employee_id": employee_id,
                    "assigned_by": assigned_by,
                    "assigned_at": assigned_at,
                }
                for client_id in client_ids
            ],
        )
        return len(client_ids)

    def delete_batch(self, session: Session, *, employee_id: uuid.UUID, client_ids: list[uuid.UUID]) -> int:
        if not client_ids:
            return 0
        result = session.execute(
            delete(ClientAssignment).where(
                ClientAssignment.employee_id == employee_id,
                ClientAssignment.client_id.in_(client_ids),
            )
        )
        return int(result.rowcount or 0)

    @staticmethod
    def unassigned_client_ids(session: Session) -> list[uuid.UUID]:
        """Clients with no assignment row, computed by the store in one statement."""

        stmt = (
            select(Client.id)
            .where(~exists().where(ClientAssignment.client_id == Client.id))
            .order_by(Client.id)
        )
        return list(session.scalars(stmt).all())


class EmployeeRepository:
    resource = "crm.employee"

    @staticmethod
    def get(session: Session, employee_id: uuid.UUID) -> Employee | None:
        return session.get(Employee, employee_id)

    @staticmethod
    def by_roles(session: Session, roles: Iterable[str]) -> list[Employee]:
        stmt = select(Employee).where(Employee.role.in_(list(roles))).order_by(Employee.name, Employee.id)
        return list(session.scalars(stmt).all())

    @staticmethod
    def teammates(
        session: Session,
        project_ids: Iterable[uuid.UUID],
        *,
        roles: Iterable[str],
        exclude_id: uuid.UUID | None = None,
    ) -> list[Employee]:
        """Employees holding a grant on any of ``project_ids``."""

        project_list = list(project_ids)
        if not project_list:
            return []
        granted = select(EmployeeProject.employee_id).where(EmployeeProject.project_id.in_(project_list))
        stmt = select(Employee).where(Employee.id.in_(granted), Employee.role.in_(list(roles)))
        if exclude_id is not None:
            stmt = stmt.where(Employee.id != exclude_id)
        return list(session.scalars(stmt.order_by(Employee.name, Employee.id)).all())
