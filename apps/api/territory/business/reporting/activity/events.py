from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal, Union

from territory.crm.models import ClientFollowUp, Reservation, ReservationNote, Sale, Visit
from territory.platform.store import as_utc


ActivityKind = Literal["followup", "reservation", "sale", "visit", "reservation_note"]


@dataclass(slots=True, frozen=True)
class ActivityTouch:
    """Normalized ``(kind, client, when)`` projection shared by every activity source."""

    kind: ActivityKind
    client_id: uuid.UUID
    occurred_at: datetime


@dataclass(slots=True, frozen=True)
class FollowUpEvent:
    id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID | None
    occurred_at: datetime
    type: str | None = None
    notes: str | None = None

    kind = "followup"

    @classmethod
    def from_row(cls, row: ClientFollowUp) -> FollowUpEvent:
        return cls(
            id=row.id,
            client_id=row.client_id,
            employee_id=row.employee_id,
            occurred_at=as_utc(row.created_at),
            type=row.type,
            notes=row.notes,
        )

    def touch(self) -> ActivityTouch:
        return ActivityTouch(kind="followup", client_id=self.client_id, occurred_at=self.occurred_at)


@dataclass(slots=True, frozen=True)
class ReservationEvent:
    id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID | None
    occurred_at: datetime
    status: str = "active"
    notes: str | None = None

    kind = "reservation"

    @classmethod
    def from_row(cls, row: Reservation) -> ReservationEvent:
        return cls(
            id=row.id,
            client_id=row.client_id,
            employee_id=row.employee_id,
            occurred_at=as_utc(row.created_at),
            status=row.status,
            notes=row.notes,
        )

    def touch(self) -> ActivityTouch:
        return ActivityTouch(kind="reservation", client_id=self.client_id, occurred_at=self.occurred_at)


@dataclass(slots=True, frozen=True)
class SaleEvent:
    id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID | None
    occurred_at: datetime
    price: Decimal = Decimal("0")

    kind = "sale"

    @classmethod
    def from_row(cls, row: Sale) -> SaleEvent:
        return cls(
            id=row.id,
            client_id=row.client_id,
            employee_id=row.sales_employee_id,
            occurred_at=as_utc(row.created_at),
            price=Decimal(row.price),
        )

    def touch(self) -> ActivityTouch:
        return ActivityTouch(kind="sale", client_id=self.client_id, occurred_at=self.occurred_at)


@dataclass(slots=True, frozen=True)
class VisitEvent:
    id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID | None
    occurred_at: datetime
    location: str | None = None
    details: str | None = None

    kind = "visit"

    @classmethod
    def from_row(cls, row: Visit) -> VisitEvent:
        return cls(
            id=row.id,
            client_id=row.client_id,
            employee_id=row.employee_id,
            occurred_at=as_utc(row.created_at),
            location=row.visit_location,
            details=row.details,
        )

    def touch(self) -> ActivityTouch:
        return ActivityTouch(kind="visit", client_id=self.client_id, occurred_at=self.occurred_at)


@dataclass(slots=True, frozen=True)
class ReservationNoteEvent:
    """A note on a reservation; the client is only reachable through the reservation."""

    id: uuid.UUID
    reservation_id: uuid.UUID
    client_id: uuid.UUID
    employee_id: uuid.UUID | None
    occurred_at: datetime
    text: str | None = None

    kind = "reservation_note"

    @classmethod
    def from_row(cls, row: ReservationNote, client_id: uuid.UUID) -> ReservationNoteEvent:
        return cls(
            id=row.id,
            reservation_id=row.reservation_id,
            client_id=client_id,
            employee_id=row.created_by,
            occurred_at=as_utc(row.created_at),
            text=row.note_text,
        )

    def touch(self) -> ActivityTouch:
        return ActivityTouch(kind="reservation_note", client_id=self.client_id, occurred_at=self.occurred_at)


ActivityEvent = Union[FollowUpEvent, ReservationEvent, SaleEvent, VisitEvent, ReservationNoteEvent]
