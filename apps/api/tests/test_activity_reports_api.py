from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from territory.core.config import get_settings
from territory.core.database import Base, get_db
from territory.crm.api import get_current_actor
from territory.crm.models import Client, ClientAssignment, ClientFollowUp, Employee, Reservation, ReservationNote
from territory.main import app
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


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("STORE_PAGE_DELAY_MS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> dict[str, object]:
    admin = Employee(id=uuid.uuid4(), name="Ada", role="admin")
    seller = Employee(id=uuid.uuid4(), name="Sam", role="sales")
    db_session.add_all([admin, seller])
    db_session.flush()

    fresh = Client(id=uuid.uuid4(), name="Fresh", created_at=datetime(2024, 1, 2, 8, tzinfo=timezone.utc))
    noted = Client(id=uuid.uuid4(), name="Noted", created_at=datetime(2023, 10, 1, tzinfo=timezone.utc))
    idle = Client(id=uuid.uuid4(), name="Idle", created_at=datetime(2024, 1, 3, 8, tzinfo=timezone.utc))
    db_session.add_all([fresh, noted, idle])
    db_session.flush()

    reservation = Reservation(
        id=uuid.uuid4(),
        client_id=noted.id,
        employee_id=seller.id,
        created_at=datetime(2023, 10, 5, tzinfo=timezone.utc),
    )
    db_session.add(reservation)
    db_session.flush()
    db_session.add_all(
        [
            ClientAssignment(client_id=fresh.id, employee_id=seller.id, assigned_by=admin.id),
            ClientAssignment(client_id=noted.id, employee_id=seller.id, assigned_by=admin.id),
            ClientFollowUp(
                client_id=fresh.id,
                employee_id=seller.id,
                type="call",
                created_at=datetime(2024, 1, 2, 11, 20, tzinfo=timezone.utc),
            ),
            ReservationNote(
                reservation_id=reservation.id,
                created_by=seller.id,
                note_text="Awaiting deposit",
                created_at=datetime(2024, 1, 4, 16, 5, tzinfo=timezone.utc),
            ),
        ]
    )
    db_session.commit()
    return {"admin": admin, "seller": seller, "fresh": fresh, "noted": noted, "idle": idle}


@pytest.fixture()
def acting_as(seeded: dict[str, object]) -> dict[str, Employee]:
    return {"employee": seeded["admin"]}


@pytest.fixture()
def client(db_session: Session, acting_as: dict[str, Employee]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_actor(request: Request) -> Actor:
        employee = acting_as["employee"]
        return Actor(
            employee_id=employee.id,
            role=employee.role,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_clients_report_endpoint(client: TestClient) -> None:
    response = client.get("/api/reports/clients", params={"start_date": "2024-01-01", "end_date": "2024-01-07"})

    assert response.status_code == 200
    body = response.json()
    assert body["total_clients"] == 2
    assert body["assigned_clients"] == 1
    assert body["unassigned_clients"] == 1
    assert body["distribution_rate"] == 50.0
    assert body["worked_clients"] == 1
    assert body["partial"] is False


def test_clients_report_rejects_inverted_range(client: TestClient) -> None:
    response = client.get("/api/reports/clients", params={"start_date": "2024-01-07", "end_date": "2024-01-01"})

    assert response.status_code == 422


def test_touched_clients_counts_note_on_old_reservation(client: TestClient, seeded: dict[str, object]) -> None:
    response = client.post(
        "/api/reports/activity/touched",
        json={
            "start_date": "2024-01-01",
            "end_date": "2024-01-07",
            "client_ids": [str(seeded["fresh"].id), str(seeded["noted"].id), str(seeded["idle"].id)],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["requested"] == 3
    assert body["in_scope"] == 3
    assert set(body["touched"]) == {str(seeded["fresh"].id), str(seeded["noted"].id)}
    assert body["by_source"]["followups"] == 1
    assert body["by_source"]["reservation_notes"] == 1
    assert body["by_source"]["reservations"] == 0


def test_touched_clients_is_limited_to_scope(
    client: TestClient,
    seeded: dict[str, object],
    acting_as: dict[str, Employee],
) -> None:
    acting_as["employee"] = seeded["seller"]

    response = client.post(
        "/api/reports/activity/touched",
        json={
            "start_date": "2024-01-01",
            "end_date": "2024-01-07",
            "client_ids": [str(seeded["fresh"].id), str(seeded["idle"].id)],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["in_scope"] == 1
    assert body["touched"] == [str(seeded["fresh"].id)]


def test_employee_activity_endpoint(client: TestClient, seeded: dict[str, object]) -> None:
    response = client.get(
        f"/api/reports/employees/{seeded['seller'].id}/activity",
        params={"start_date": "2024-01-01", "end_date": "2024-01-07"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["total_activities"] == 2
    assert body["summary"]["followups"] == 1
    assert body["summary"]["reservation_notes"] == 1
    assert body["summary"]["total_duration_minutes"] == 15
    assert [event["kind"] for event in body["timeline"]] == ["reservation_note", "followup"]


def test_employee_activity_unknown_employee(client: TestClient) -> None:
    response = client.get(
        f"/api/reports/employees/{uuid.uuid4()}/activity",
        params={"start_date": "2024-01-01", "end_date": "2024-01-07"},
    )

    assert response.status_code == 404


def test_employee_activity_unknown_employee_is_forbidden_for_sales(
    client: TestClient,
    seeded: dict[str, object],
    acting_as: dict[str, Employee],
) -> None:
    acting_as["employee"] = seeded["seller"]

    response = client.get(
        f"/api/reports/employees/{uuid.uuid4()}/activity",
        params={"start_date": "2024-01-01", "end_date": "2024-01-07"},
    )

    assert response.status_code == 403
