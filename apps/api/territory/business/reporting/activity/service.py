from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from territory.business.reporting.activity.aggregator import ActivityUnionAggregator, WorkedSets, collect_touches
from territory.business.reporting.activity.events import (
    ActivityEvent,
    FollowUpEvent,
    ReservationEvent,
    ReservationNoteEvent,
    SaleEvent,
    VisitEvent,
)
from territory.business.reporting.activity.repository import (
    FOLLOWUPS,
    RESERVATIONS,
    SALES,
    VISITS,
    ActivityRepository,
    ClientReportRepository,
)
from territory.business.reporting.activity.schemas import (
    ActivityEventRead,
    ActivitySummaryRead,
    ClientReportRow,
    ClientsReportRead,
    EmployeeActivityReportRead,
    SourceCounts,
    TimeSlotRead,
    TouchedClientsRead,
    TouchedClientsRequest,
)
from territory.crm.repositories import AssignmentRepository, EmployeeRepository
from territory.crm.service import TeamService
from territory.platform.security import Actor, resolve_scope
from territory.platform.store import TimeWindow, as_utc


logger = logging.getLogger("territory.reports.activity")

ACTIVITY_DURATION_MINUTES = {
    "followup": 10,
    "reservation": 25,
    "sale": 45,
    "visit": 35,
    "reservation_note": 5,
}

ACTIVITY_WEIGHTS = {
    "sale": 40,
    "reservation": 20,
    "visit": 12,
    "followup": 10,
    "reservation_note": 8,
}

MAX_ACTIVITY_WEIGHT = 40


def _source_counts(worked: WorkedSets) -> SourceCounts:
    return SourceCounts(**{name: len(ids) for name, ids in worked.by_source().items()})


def _hour_label(hour: int) -> str:
    return f"{hour:02d}:00 - {hour + 1:02d}:00"


@dataclass(slots=True)
class ActivitySummary:
    counts: Counter = field(default_factory=Counter)
    unique_clients: int = 0
    total_duration: int = 0
    average_duration: int = 0
    peak_hour: str | None = None
    busiest_activity: str | None = None
    efficiency_score: int = 0
    conversion_rate: int = 0


def summarize_activity(events: list[ActivityEvent]) -> ActivitySummary:
    """Counts, nominal durations and scores over ``events`` in timeline order."""

    summary = ActivitySummary()
    if not events:
        return summary

    summary.counts = Counter(event.kind for event in events)
    summary.unique_clients = len(collect_touches(event.touch() for event in events).union)
    summary.total_duration = sum(ACTIVITY_DURATION_MINUTES[event.kind] for event in events)
    summary.average_duration = round(summary.total_duration / len(events))

    hours = Counter(_hour_label(event.occurred_at.hour) for event in events)
    summary.peak_hour = hours.most_common(1)[0][0]
    summary.busiest_activity = summary.counts.most_common(1)[0][0]

    score = sum(ACTIVITY_WEIGHTS[event.kind] for event in events)
    summary.efficiency_score = min(100, round(100 * score / (MAX_ACTIVITY_WEIGHT * len(events))))

    followups = summary.counts["followup"]
    if followups:
        summary.conversion_rate = round(100 * summary.counts["sale"] / followups)
    return summary


def time_slots(events: list[ActivityEvent]) -> list[TimeSlotRead]:
    by_hour: dict[int, list[uuid.UUID]] = {}
    for event in events:
        by_hour.setdefault(event.occurred_at.hour, []).append(event.id)
    return [
        TimeSlotRead(hour=_hour_label(hour), count=len(ids), activity_ids=ids)
        for hour, ids in sorted(by_hour.items())
    ]


def _event_read(event: ActivityEvent) -> ActivityEventRead:
    payload = {
        "id": event.id,
        "kind": event.kind,
        "client_id": event.client_id,
        "occurred_at": event.occurred_at,
        "duration_minutes": ACTIVITY_DURATION_MINUTES[event.kind],
    }
    if isinstance(event, FollowUpEvent):
        payload.update(status=event.type, notes=event.notes)
    elif isinstance(event, ReservationEvent):
        payload.update(status=event.status, notes=event.notes)
    elif isinstance(event, SaleEvent):
        payload.update(amount=event.price)
    elif isinstance(event, VisitEvent):
        payload.update(notes=event.details or event.location)
    elif isinstance(event, ReservationNoteEvent):
        payload.update(reference_id=event.reservation_id, notes=event.text)
    return ActivityEventRead(**payload)


@dataclass(slots=True)
class TouchedClientsService:
    aggregator: ActivityUnionAggregator = field(default_factory=ActivityUnionAggregator)
    client_repository: ClientReportRepository = field(default_factory=ClientReportRepository)

    def touched_clients(self, session: Session, actor: Actor, payload: TouchedClientsRequest) -> TouchedClientsRead:
        requested = list(dict.fromkeys(payload.client_ids))
        window = TimeWindow.from_dates(payload.start_date, payload.end_date)
        scope = resolve_scope(session, actor)

        failed = 0
        if scope.is_unrestricted:
            in_scope = requested
        elif scope.is_empty or not requested:
            in_scope = []
        else:
            visible = self.client_repository.visible_client_ids(session, scope, requested)
            failed += visible.failed_chunks
            visible_ids = set(visible.rows)
            in_scope = [client_id for client_id in requested if client_id in visible_ids]

        worked = self.aggregator.aggregate(session, in_scope, window, payload.employee_id)
        touched = sorted(worked.union, key=str)
        return TouchedClientsRead(
            start_date=payload.start_date,
            end_date=payload.end_date,
            requested=len(requested),
            in_scope=len(in_scope),
            touched=touched,
            touched_count=len(touched),
            by_source=_source_counts(worked),
            partial=bool(failed) or not worked.complete,
        )


@dataclass(slots=True)
class ClientsReportService:
    aggregator: ActivityUnionAggregator = field(default_factory=ActivityUnionAggregator)
    client_repository: ClientReportRepository = field(default_factory=ClientReportRepository)
    assignment_repository: AssignmentRepository = field(default_factory=AssignmentRepository)

    def clients_report(
        self,
        session: Session,
        actor: Actor,
        start_date: date,
        end_date: date,
        *,
        project_id: uuid.UUID | None = None,
        employee_id: uuid.UUID | None = None,
    ) -> ClientsReportRead:
        window = TimeWindow.from_dates(start_date, end_date)
        scope = resolve_scope(session, actor)

        clients = []
        partial = False
        if not scope.is_empty and not window.is_empty:
            read = self.client_repository.clients_created_in(session, scope, window, project_id=project_id)
            clients = read.rows
            partial = not read.complete

        assigned_by_client, failed_chunks = self.assignment_repository.employees_by_client(
            session,
            [client.id for client in clients],
        )
        partial = partial or failed_chunks > 0

        if employee_id is not None:
            clients = [client for client in clients if employee_id in assigned_by_client.get(client.id, set())]

        client_ids = [client.id for client in clients]
        # Worked means anyone touched the client; employee_id only narrows which clients are listed.
        worked = self.aggregator.aggregate(session, client_ids, window)
        partial = partial or not worked.complete
        touched = worked.union

        rows: list[ClientReportRow] = []
        status_counts: Counter = Counter()
        assigned = 0
        edited = 0
        for client in clients:
            employees = sorted(assigned_by_client.get(client.id, set()), key=str)
            if employees:
                assigned += 1
            is_edited = (
                client.updated_at is not None
                and window.contains(client.updated_at)
                and as_utc(client.updated_at) > as_utc(client.created_at)
            )
            if is_edited:
                edited += 1
            status_counts[client.status] += 1
            rows.append(
                ClientReportRow(
                    id=client.id,
                    name=client.name,
                    mobile=client.mobile,
                    status=client.status,
                    interested_project_id=client.interested_project_id,
                    created_at=client.created_at,
                    updated_at=client.updated_at,
                    assigned_employee_ids=employees,
                    worked=client.id in touched,
                    edited=is_edited,
                )
            )

        total = len(clients)
        distribution_rate = round(100 * assigned / total, 1) if total else 0.0
        if partial:
            logger.warning(
                "reports.clients.partial",
                extra={"actor_id": str(actor.employee_id), "rows": total, "failed_queries": worked.failed_queries},
            )
        return ClientsReportRead(
            start_date=start_date,
            end_date=end_date,
            project_id=project_id,
            employee_id=employee_id,
            total_clients=total,
            assigned_clients=assigned,
            unassigned_clients=total - assigned,
            distribution_rate=distribution_rate,
            worked_clients=len(touched),
            worked_by_source=_source_counts(worked),
            edited_clients=edited,
            status_counts=dict(status_counts),
            partial=partial,
            clients=rows,
        )


@dataclass(slots=True)
class EmployeeActivityReportService:
    repository: ActivityRepository = field(default_factory=ActivityRepository)
    employee_repository: EmployeeRepository = field(default_factory=EmployeeRepository)
    team_service: TeamService = field(default_factory=TeamService)

    def employee_activity(
        self,
        session: Session,
        actor: Actor,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> EmployeeActivityReportRead:
        self._authorize(session, actor, employee_id)
        employee = self.employee_repository.get(session, employee_id)
        if employee is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="employee not found")

        window = TimeWindow.from_dates(start_date, end_date)
        events, partial = self._load_events(session, employee_id, window)
        events.sort(key=lambda event: (event.occurred_at, str(event.id)), reverse=True)

        summary = summarize_activity(events)
        return EmployeeActivityReportRead(
            employee_id=employee.id,
            employee_name=employee.name,
            start_date=start_date,
            end_date=end_date,
            summary=ActivitySummaryRead(
                total_activities=len(events),
                followups=summary.counts["followup"],
                reservations=summary.counts["reservation"],
                reservation_notes=summary.counts["reservation_note"],
                sales=summary.counts["sale"],
                visits=summary.counts["visit"],
                unique_clients_touched=summary.unique_clients,
                total_duration_minutes=summary.total_duration,
                average_duration_minutes=summary.average_duration,
                peak_hour=summary.peak_hour,
                busiest_activity=summary.busiest_activity,
                efficiency_score=summary.efficiency_score,
                conversion_rate=summary.conversion_rate,
            ),
            timeline=[_event_read(event) for event in events],
            time_slots=time_slots(events),
            partial=partial,
        )

    def _authorize(self, session: Session, actor: Actor, employee_id: uuid.UUID) -> None:
        if actor.is_admin or actor.employee_id == employee_id:
            return
        if actor.is_sales_manager:
            team = {item.id for item in self.team_service.assignable_employees(session, actor)}
            if employee_id in team:
                return
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Employee is outside the caller's team")

    def _load_events(
        self,
        session: Session,
        employee_id: uuid.UUID,
        window: TimeWindow,
    ) -> tuple[list[ActivityEvent], bool]:
        if window.is_empty:
            return [], False

        events: list[ActivityEvent] = []
        partial = False
        for source, event_type in (
            (FOLLOWUPS, FollowUpEvent),
            (RESERVATIONS, ReservationEvent),
            (SALES, SaleEvent),
            (VISITS, VisitEvent),
        ):
            read = self.repository.employee_rows(session, source, employee_id, window)
            partial = partial or not read.complete
            events.extend(event_type.from_row(row) for row in read.rows)

        notes = self.repository.employee_notes(session, employee_id, window)
        partial = partial or not notes.complete
        if notes.rows:
            reservations = self.repository.reservations_by_id(session, [note.reservation_id for note in notes.rows])
            partial = partial or not reservations.complete
            client_by_reservation = {reservation_id: client_id for reservation_id, client_id in reservations.rows}
            events.extend(
                ReservationNoteEvent.from_row(note, client_by_reservation[note.reservation_id])
                for note in notes.rows
                if note.reservation_id in client_by_reservation
            )
        return events, partial


touched_clients_service = TouchedClientsService()
clients_report_service = ClientsReportService()
employee_activity_report_service = EmployeeActivityReportService()
