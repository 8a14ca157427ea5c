from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from territory.business.reporting.activity.schemas import (
    ClientsReportRead,
    EmployeeActivityReportRead,
    TouchedClientsRead,
    TouchedClientsRequest,
)
from territory.business.reporting.activity.service import (
    clients_report_service,
    employee_activity_report_service,
    touched_clients_service,
)
from territory.core.database import get_db
from territory.crm.api import get_current_actor
from territory.platform.security import Actor


router = APIRouter(prefix="/api/reports", tags=["reports", "activity"])


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="end_date must not be before start_date")


@router.get("/clients", response_model=ClientsReportRead)
def clients_report(
    start_date: date = Query(),
    end_date: date = Query(),
    project_id: uuid.UUID | None = Query(default=None),
    employee_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ClientsReportRead:
    _check_range(start_date, end_date)
    return clients_report_service.clients_report(
        db,
        actor,
        start_date,
        end_date,
        project_id=project_id,
        employee_id=employee_id,
    )


@router.get("/employees/{employee_id}/activity", response_model=EmployeeActivityReportRead)
def employee_activity_report(
    employee_id: uuid.UUID,
    start_date: date = Query(),
    end_date: date = Query(),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> EmployeeActivityReportRead:
    _check_range(start_date, end_date)
    return employee_activity_report_service.employee_activity(db, actor, employee_id, start_date, end_date)


@router.post("/activity/touched", response_model=TouchedClientsRead)
def touched_clients(
    payload: TouchedClientsRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TouchedClientsRead:
    return touched_clients_service.touched_clients(db, actor, payload)
