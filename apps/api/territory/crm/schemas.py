from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EmployeeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    role: str


class ScopeRead(BaseModel):
    kind: Literal["all", "projects", "clients"]
    ids: list[UUID]
    is_empty: bool


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    mobile: str | None
    status: str
    interested_project_id: UUID | None
    created_at: datetime
    updated_at: datetime | None = None


class ClientListQuery(BaseModel):
    tab: Literal["all", "assigned"] = "all"
    employee_id: UUID | None = None
    search: str | None = None
    statuses: list[str] = Field(default_factory=list)
    project_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    unassigned_only: bool = False
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=500)

    @model_validator(mode="after")
    def _normalize_search(self) -> ClientListQuery:
        if self.search is not None:
            self.search = self.search.strip() or None
        return self


class ClientPageRead(BaseModel):
    items: list[ClientRead]
    total: int
    page: int
    per_page: int
    pages: int


class AssignmentSetRequest(BaseModel):
    client_ids: list[UUID] = Field(default_factory=list)


class AssignedClientIdsRead(BaseModel):
    employee_id: UUID
    client_ids: list[UUID]
    complete: bool = True


class AssignmentDiffRead(BaseModel):
    employee_id: UUID
    to_add: list[UUID]
    to_remove: list[UUID]
    add_count: int
    remove_count: int
    has_changes: bool


class AssignmentReconcileRead(BaseModel):
    employee_id: UUID
    changed: bool
    added: int
    removed: int
    message: str
