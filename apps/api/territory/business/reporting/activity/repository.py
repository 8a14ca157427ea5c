from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from territory.business.reporting.activity.events import ActivityKind
from territory.crm.models import Client, ClientFollowUp, Reservation, ReservationNote, Sale, Visit
from territory.platform.security.repository import BaseRepository
from territory.platform.security.scope import Scope
from territory.platform.store import ChunkedRead, PagedRead, TimeWindow, fetch_in_chunks, read_all


@dataclass(frozen=True, slots=True)
class ActivitySource:
    """A client-keyed activity table and the column naming the employee who did it."""

    kind: ActivityKind
    table: str
    model: Any
    employee_column: Any


FOLLOWUPS = ActivitySource("followup", "client_followups", ClientFollowUp, ClientFollowUp.employee_id)
RESERVATIONS = ActivitySource("reservation", "reservations", Reservation, Reservation.employee_id)
SALES = ActivitySource("sale", "sales", Sale, Sale.sales_employee_id)
VISITS = ActivitySource("visit", "visits", Visit, Visit.employee_id)

CLIENT_KEYED_SOURCES: tuple[ActivitySource, ...] = (FOLLOWUPS, RESERVATIONS, SALES, VISITS)


class ClientReportRepository(BaseRepository):
    resource = "reports.activity.clients"
    project_column = Client.interested_project_id
    client_column = Client.id

    def clients_created_in(
        self,
        session: Session,
        scope: Scope,
        window: TimeWindow,
        *,
        project_id: uuid.UUID | None = None,
    ) -> PagedRead[Client]:
        stmt = window.apply(select(Client), Client.created_at)
        if project_id is not None:
            stmt = stmt.where(Client.interested_project_id == project_id)
        stmt = self.apply_scope_query(stmt, scope)
        return read_all(session, stmt.order_by(Client.created_at.desc(), Client.id), source="clients")

    def visible_client_ids(self, session: Session, scope: Scope, client_ids: Iterable[uuid.UUID]) -> ChunkedRead:
        return fetch_in_chunks(
            session,
            lambda chunk: self.apply_scope_query(
                select(Client.id).where(Client.id.in_(chunk)).order_by(Client.id),
                scope,
            ),
            client_ids,
            source="clients",
        )


class ActivityRepository(BaseRepository):
    resource = "reports.activity"

    @staticmethod
    def touched_client_ids(
        session: Session,
        source: ActivitySource,
        client_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        *,
        employee_id: uuid.UUID | None = None,
    ) -> ChunkedRead:
        model = source.model

        def build(chunk: list[uuid.UUID]):
            stmt = window.apply(select(model.client_id).where(model.client_id.in_(chunk)), model.created_at)
            if employee_id is not None:
                stmt = stmt.where(source.employee_column == employee_id)
            return stmt.distinct().order_by(model.client_id)

        return fetch_in_chunks(session, build, client_ids, source=source.table)

    @staticmethod
    def reservation_clients(session: Session, client_ids: Iterable[uuid.UUID]) -> ChunkedRead:
        """``(reservation_id, client_id)`` for every reservation of ``client_ids``, whenever it was made."""

        return fetch_in_chunks(
            session,
            lambda chunk: (
                select(Reservation.id, Reservation.client_id)
                .where(Reservation.client_id.in_(chunk))
                .order_by(Reservation.id)
            ),
            client_ids,
            source="reservations",
            scalars=False,
        )

    @staticmethod
    def reservations_by_id(session: Session, reservation_ids: Iterable[uuid.UUID]) -> ChunkedRead:
        return fetch_in_chunks(
            session,
            lambda chunk: (
                select(Reservation.id, Reservation.client_id)
                .where(Reservation.id.in_(chunk))
                .order_by(Reservation.id)
            ),
            reservation_ids,
            source="reservations",
            scalars=False,
        )

    @staticmethod
    def noted_reservation_ids(
        session: Session,
        reservation_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        *,
        employee_id: uuid.UUID | None = None,
    ) -> ChunkedRead:
        def build(chunk: list[uuid.UUID]):
            stmt = window.apply(
                select(ReservationNote.reservation_id).where(ReservationNote.reservation_id.in_(chunk)),
                ReservationNote.created_at,
            )
            if employee_id is not None:
                stmt = stmt.where(ReservationNote.created_by == employee_id)
            return stmt.distinct().order_by(ReservationNote.reservation_id)

        return fetch_in_chunks(session, build, reservation_ids, source="reservation_notes")

    @staticmethod
    def employee_rows(
        session: Session,
        source: ActivitySource,
        employee_id: uuid.UUID,
        window: TimeWindow,
    ) -> PagedRead[Any]:
        model = source.model
        stmt = window.apply(select(model).where(source.employee_column == employee_id), model.created_at)
        return read_all(session, stmt.order_by(model.created_at.desc(), model.id), source=source.table)

    @staticmethod
    def employee_notes(session: Session, employee_id: uuid.UUID, window: TimeWindow) -> PagedRead[ReservationNote]:
        stmt = window.apply(
            select(ReservationNote).where(ReservationNote.created_by == employee_id),
            ReservationNote.created_at,
        )
        return read_all(
            session,
            stmt.order_by(ReservationNote.created_at.desc(), ReservationNote.id),
            source="reservation_notes",
        )
