from __future__ import annotations

import uuid
from dataclasses import dataclass


ROLE_ADMIN = "admin"
ROLE_SALES_MANAGER = "sales_manager"
ROLE_SALES = "sales"


@dataclass(slots=True, frozen=True)
class Actor:
    """The acting employee, passed explicitly into every scoped operation."""

    employee_id: uuid.UUID
    role: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_sales_manager(self) -> bool:
        return self.role == ROLE_SALES_MANAGER

    @property
    def is_sales(self) -> bool:
        return self.role == ROLE_SALES
