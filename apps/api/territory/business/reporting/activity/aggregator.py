from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from opentelemetry import trace
from sqlalchemy.orm import Session

from territory.business.reporting.activity.events import ActivityKind, ActivityTouch
from territory.business.reporting.activity.repository import CLIENT_KEYED_SOURCES, ActivityRepository, ActivitySource
from territory.metrics import observe_touched_clients
from territory.platform.store import TimeWindow


logger = logging.getLogger("territory.reports.activity")
tracer = trace.get_tracer("territory.reports.activity")

_SET_BY_KIND: dict[ActivityKind, str] = {
    "followup": "followups",
    "reservation": "reservations",
    "sale": "sales",
    "visit": "visits",
    "reservation_note": "reservation_notes",
}


@dataclass(slots=True)
class WorkedSets:
    """Touched clients per activity source and their union.

    ``failed_queries`` counts page or chunk reads that failed; any value above zero
    means the sets may under-count.
    """

    followups: set[uuid.UUID] = field(default_factory=set)
    reservations: set[uuid.UUID] = field(default_factory=set)
    sales: set[uuid.UUID] = field(default_factory=set)
    visits: set[uuid.UUID] = field(default_factory=set)
    reservation_notes: set[uuid.UUID] = field(default_factory=set)
    failed_queries: int = 0

    @property
    def union(self) -> set[uuid.UUID]:
        return self.followups | self.reservations | self.sales | self.visits | self.reservation_notes

    @property
    def complete(self) -> bool:
        return self.failed_queries == 0

    def by_source(self) -> dict[str, set[uuid.UUID]]:
        return {
            "followups": self.followups,
            "reservations": self.reservations,
            "sales": self.sales,
            "visits": self.visits,
            "reservation_notes": self.reservation_notes,
        }

    def add(self, kind: ActivityKind, client_ids: Iterable[uuid.UUID]) -> None:
        getattr(self, _SET_BY_KIND[kind]).update(client_ids)


def collect_touches(touches: Iterable[ActivityTouch], window: TimeWindow | None = None) -> WorkedSets:
    """Fold already-loaded touches into per-source client sets, keeping those inside ``window``."""

    result = WorkedSets()
    for touch in touches:
        if window is None or window.contains(touch.occurred_at):
            result.add(touch.kind, (touch.client_id,))
    return result


@dataclass(slots=True)
class ActivityUnionAggregator:
    repository: ActivityRepository = field(default_factory=ActivityRepository)

    def aggregate(
        self,
        session: Session,
        client_ids: Iterable[uuid.UUID],
        window: TimeWindow,
        employee_id: uuid.UUID | None = None,
    ) -> WorkedSets:
        ids = list(dict.fromkeys(client_ids))
        result = WorkedSets()
        if not ids or window.is_empty:
            return result

        with tracer.start_as_current_span("reports.activity.aggregate") as span:
            span.set_attribute("client_count", len(ids))
            if employee_id is not None:
                span.set_attribute("employee_id", str(employee_id))

            for source in CLIENT_KEYED_SOURCES:
                result.add(source.kind, self._touched(session, source, ids, window, employee_id, result))
            result.add("reservation_note", self._noted(session, ids, window, employee_id, result))

            union = result.union
            span.set_attribute("touched", len(union))
            span.set_attribute("failed_queries", result.failed_queries)

        for name, touched in result.by_source().items():
            observe_touched_clients(name, len(touched))
        level = logging.INFO if result.complete else logging.WARNING
        logger.log(
            level,
            "reports.activity.aggregated",
            extra={"rows": len(ids), "touched": len(union), "failed_queries": result.failed_queries},
        )
        return result

    def _touched(
        self,
        session: Session,
        source: ActivitySource,
        ids: list[uuid.UUID],
        window: TimeWindow,
        employee_id: uuid.UUID | None,
        result: WorkedSets,
    ) -> set[uuid.UUID]:
        read = self.repository.touched_client_ids(session, source, ids, window, employee_id=employee_id)
        result.failed_queries += read.failed_chunks
        return set(read.rows)

    def _noted(
        self,
        session: Session,
        ids: list[uuid.UUID],
        window: TimeWindow,
        employee_id: uuid.UUID | None,
        result: WorkedSets,
    ) -> set[uuid.UUID]:
        # Reservations are looked up regardless of when they were made; only the note is windowed.
        reservations = self.repository.reservation_clients(session, ids)
        result.failed_queries += reservations.failed_chunks
        client_by_reservation = {reservation_id: client_id for reservation_id, client_id in reservations.rows}
        if not client_by_reservation:
            return set()

        noted = self.repository.noted_reservation_ids(
            session,
            client_by_reservation.keys(),
            window,
            employee_id=employee_id,
        )
        result.failed_queries += noted.failed_chunks
        return {client_by_reservation[reservation_id] for reservation_id in noted.rows}


activity_union_aggregator = ActivityUnionAggregator()
