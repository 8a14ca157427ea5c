from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from territory.core.database import Base
from territory.crm.models import Client, ClientAssignment, Employee, Project
from territory.crm.schemas import ClientListQuery
from territory.crm.service import client_listing_service
from territory.platform.security import Actor


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _seed(session: Session) -> dict[str, object]:
    north = Project(id=uuid.uuid4(), name="North Towers")
    admin = Employee(id=uuid.uuid4(), name="Ada", role="admin")
    seller = Employee(id=uuid.uuid4(), name="Sam", role="sales")
    session.add_all([north, admin, seller])
    session.flush()

    clients = [
        Client(
            id=uuid.uuid4(),
            name="Nadia 100%",
            mobile="0100",
            status="lead",
            interested_project_id=north.id,
            created_at=datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        ),
        Client(
            id=uuid.uuid4(),
            name="Nour",
            mobile="0200",
            status="reserved",
            created_at=datetime(2024, 1, 5, 9, tzinfo=timezone.utc),
        ),
        Client(
            id=uuid.uuid4(),
            name="Omar",
            mobile="0311",
            status="converted",
            interested_project_id=north.id,
            created_at=datetime(2024, 1, 9, 9, tzinfo=timezone.utc),
        ),
    ]
    session.add_all(clients)
    session.flush()
    session.add(ClientAssignment(client_id=clients[1].id, employee_id=seller.id, assigned_by=admin.id))
    session.commit()
    return {"north": north, "admin": admin, "seller": seller, "clients": clients}


def _names(page) -> list[str]:  # type: ignore[no-untyped-def]
    return [item.name for item in page.items]


def test_all_tab_orders_newest_first(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["admin"].id, role="admin")

    page = client_listing_service.list_clients(db_session, actor, ClientListQuery())

    assert _names(page) == ["Omar", "Nour", "Nadia 100%"]
    assert page.total == 3
    assert page.pages == 1


def test_search_matches_name_or_mobile_and_escapes_wildcards(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["admin"].id, role="admin")

    by_name = client_listing_service.list_clients(db_session, actor, ClientListQuery(search="  no "))
    by_mobile = client_listing_service.list_clients(db_session, actor, ClientListQuery(search="031"))
    literal_percent = client_listing_service.list_clients(db_session, actor, ClientListQuery(search="0%"))

    assert _names(by_name) == ["Nour"]
    assert _names(by_mobile) == ["Omar"]
    assert _names(literal_percent) == ["Nadia 100%"]


def test_status_project_and_date_filters(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["admin"].id, role="admin")

    by_status = client_listing_service.list_clients(
        db_session, actor, ClientListQuery(statuses=["lead", "converted"])
    )
    by_project = client_listing_service.list_clients(db_session, actor, ClientListQuery(project_id=data["north"].id))
    by_dates = client_listing_service.list_clients(
        db_session, actor, ClientListQuery(from_date=date(2024, 1, 2), to_date=date(2024, 1, 5))
    )

    assert _names(by_status) == ["Omar", "Nadia 100%"]
    assert _names(by_project) == ["Omar", "Nadia 100%"]
    assert _names(by_dates) == ["Nour"]


def test_pagination_reports_pages(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["admin"].id, role="admin")

    second = client_listing_service.list_clients(db_session, actor, ClientListQuery(page=2, per_page=2))

    assert second.total == 3
    assert second.pages == 2
    assert _names(second) == ["Nadia 100%"]


def test_assigned_tab_without_employee_is_empty(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["admin"].id, role="admin")

    page = client_listing_service.list_clients(db_session, actor, ClientListQuery(tab="assigned"))

    assert page.items == []
    assert page.total == 0


def test_sales_cannot_list_assignment_candidates(db_session: Session) -> None:
    data = _seed(db_session)
    actor = Actor(employee_id=data["seller"].id, role="sales")

    with pytest.raises(HTTPException) as exc_info:
        client_listing_service.list_clients(db_session, actor, ClientListQuery())

    assert exc_info.value.status_code == 403
