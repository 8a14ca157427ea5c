from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from territory.core.config import get_settings
from territory.core.database import Base
from territory.crm.models import Client
from territory.platform.store import fetch_all_paged, read_all


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
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class _ListFetcher:
    def __init__(self, rows: list[int], fail_at_offset: int | None = None) -> None:
        self.rows = rows
        self.fail_at_offset = fail_at_offset
        self.calls: list[tuple[int, int]] = []

    def __call__(self, offset: int, limit: int) -> list[int]:
        self.calls.append((offset, limit))
        if self.fail_at_offset is not None and offset == self.fail_at_offset:
            raise OperationalError("SELECT ...", {}, Exception("connection reset"))
        return self.rows[offset : offset + limit]


@pytest.mark.parametrize(
    ("total", "page_size", "expected_pages"),
    [
        (0, 5, 1),
        (3, 5, 1),
        (5, 5, 2),
        (23, 5, 5),
        (25, 5, 6),
        (1, 1, 2),
    ],
)
def test_paged_read_returns_every_row_once(total: int, page_size: int, expected_pages: int) -> None:
    fetcher = _ListFetcher(list(range(total)))
    sleeps: list[float] = []

    result = fetch_all_paged(fetcher, page_size=page_size, delay_seconds=0.07, sleep=sleeps.append)

    assert result.rows == list(range(total))
    assert result.complete is True
    assert result.pages == expected_pages
    assert [offset for offset, _ in fetcher.calls] == [index * page_size for index in range(expected_pages)]
    assert sleeps == [0.07] * (expected_pages - 1)


def test_paged_read_stops_on_failed_page_and_keeps_prefix(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    fetcher = _ListFetcher(list(range(30)), fail_at_offset=10)

    result = fetch_all_paged(fetcher, page_size=5, delay_seconds=0, source="clients")

    assert result.rows == list(range(10))
    assert result.pages == 2
    assert result.complete is False
    assert len(fetcher.calls) == 3

    records = [record for record in caplog.records if record.getMessage() == "store.page_failed"]
    assert records
    assert getattr(records[-1], "source", None) == "clients"
    assert getattr(records[-1], "offset", None) == 10
    assert getattr(records[-1], "rows", None) == 10


def test_paged_read_uses_configured_page_size_and_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_PAGE_SIZE", "4")
    monkeypatch.setenv("STORE_PAGE_DELAY_MS", "250")
    get_settings.cache_clear()
    fetcher = _ListFetcher(list(range(9)))
    sleeps: list[float] = []

    result = fetch_all_paged(fetcher, sleep=sleeps.append)

    assert result.rows == list(range(9))
    assert [limit for _, limit in fetcher.calls] == [4, 4, 4]
    assert sleeps == [0.25, 0.25]


def test_paged_read_rejects_non_positive_page_size() -> None:
    with pytest.raises(ValueError):
        fetch_all_paged(_ListFetcher([]), page_size=0)


def test_read_all_paginates_ordered_select(db_session: Session) -> None:
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ids = [uuid.uuid4() for _ in range(7)]
    for index, client_id in enumerate(ids):
        db_session.add(Client(id=client_id, name=f"Client {index}", created_at=base + timedelta(minutes=index)))
    db_session.commit()

    result = read_all(
        db_session,
        select(Client.id).order_by(Client.created_at, Client.id),
        page_size=3,
        delay_seconds=0,
        source="clients",
    )

    assert result.rows == ids
    assert result.pages == 3
    assert result.complete is True
    assert len(set(result.rows)) == len(ids)


def test_read_all_returns_rows_when_not_scalars(db_session: Session) -> None:
    client = Client(name="Row Client", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    db_session.add(client)
    db_session.commit()

    result = read_all(
        db_session,
        select(Client.id, Client.name).order_by(Client.id),
        page_size=10,
        delay_seconds=0,
        scalars=False,
    )

    assert [(row[0], row[1]) for row in result.rows] == [(client.id, "Row Client")]
