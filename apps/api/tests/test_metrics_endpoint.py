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
from territory.crm.models import Client, Employee
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
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("STORE_PAGE_DELAY_MS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def employees(db_session: Session) -> dict[str, Employee]:
    admin = Employee(id=uuid.uuid4(), name="Ada", role="admin")
    seller = Employee(id=uuid.uuid4(), name="Sam", role="sales")
    db_session.add_all([admin, seller])
    db_session.commit()
    return {"admin": admin, "seller": seller}


@pytest.fixture()
def acting_as(employees: dict[str, Employee]) -> dict[str, Employee]:
    return {"employee": employees["admin"]}


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


def test_metrics_endpoint_exposes_http_store_and_assignment_metrics(
    client: TestClient,
    db_session: Session,
    employees: dict[str, Employee],
) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    target = Client(id=uuid.uuid4(), name="Lead", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    db_session.add(target)
    db_session.commit()

    saved = client.put(f"/api/assignments/{employees['seller'].id}", json={"client_ids": [str(target.id)]})
    assert saved.status_code == 200

    metrics = client.get("/api/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "store_pages_fetched_total" in body
    assert "assignment_changes_total" in body
    assert "assignment_reconcile_duration_seconds" in body

    assert 'path="/health"' in body
    assert 'path="/api/assignments/{id}"' in body
    assert 'source="client_assignments"' in body
    assert 'operation="insert"' in body


def test_metrics_endpoint_is_admin_only(
    client: TestClient,
    employees: dict[str, Employee],
    acting_as: dict[str, Employee],
) -> None:
    acting_as["employee"] = employees["seller"]

    response = client.get("/api/metrics")

    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/api/metrics")

    assert response.status_code == 404
