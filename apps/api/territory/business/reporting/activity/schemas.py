from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ReportWindowQuery(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _ordered(self) -> ReportWindowQuery:
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TouchedClientsRequest(ReportWindowQuery):
    client_ids: list[UUID] = Field(default_factory=list)
    employee_id: UUID | None = None


class SourceCounts(BaseModel):
    followups: int = 0
    reservations: int = 0
    sales: int = 0
    visits: int = 0
    reservation_notes: int = 0


class TouchedClientsRead(BaseModel):
    start_date: date
    end_date: date
    requested: int
    in_scope: int
    touched: list[UUID]
    touched_count: int
    by_source: SourceCounts
    partial: bool


class ClientReportRow(BaseModel):
    id: UUID
    name: str
    mobile: str | None
    status: str
    interested_project_id: UUID | None
    created_at: datetime
    updated_at: datetime | None
    assigned_employee_ids: list[UUID]
    worked: bool
    edited: bool


class ClientsReportRead(BaseModel):
    start_date: date
    end_date: date
    project_id: UUID | None
    employee_id: UUID | None
    total_clients: int
    assigned_clients: int
    unassigned_clients: int
    distribution_rate: float
    worked_clients: int
    worked_by_source: SourceCounts
    edited_clients: int
    status_counts: dict[str, int]
    partial: bool
    clients: list[ClientReportRow]


class ActivityEventRead(BaseModel):
    id: UUID
    kind: str
    client_id: UUID
    occurred_at: datetime
    duration_minutes: int
    reference_id: UUID | None = None
    status: str | None = None
    notes: str | None = None
    amount: Decimal | None = None


class ActivitySummaryRead(BaseModel):
    total_activities: int
    followups: int
    reservations: int
    reservation_notes: int
    sales: int
    visits: int
    unique_clients_touched: int
    total_duration_minutes: int
    average_duration_minutes: int
    peak_hour: str | None
    busiest_activity: str | None
    efficiency_score: int
    conversion_rate: int


class TimeSlotRead(BaseModel):
    hour: str
    count: int
    activity_ids: list[UUID]


class EmployeeActivityReportRead(BaseModel):
    employee_id: UUID
    employee_name: str
    start_date: date
    end_date: date
    summary: ActivitySummaryRead
    timeline: list[ActivityEventRead]
    time_slots: list[TimeSlotRead]
    partial: bool
