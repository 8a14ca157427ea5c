from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, select, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from territory.core.database import Base
from territory.crm.models import Client
from territory.platform.store import chunked, fetch_in_chunks, in_chunks


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


def _seed_clients(session: Session, count: int) -> list[uuid.UUID]:
    created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    clients = [Client(name=f"Client {index}", created_at=created_at) for index in range(count)]
    session.add_all(clients)
    session.commit()
    return [client.id for client in clients]


def test_chunked_splits_1200_ids_into_three_bounded_chunks() -> None:
    ids = [uuid.uuid4() for _ in range(1200)]

    chunks = chunked(ids, 500)

    assert [len(chunk) for chunk in chunks] == [500, 500, 200]
    assert [item for chunk in chunks for item in chunk] == ids


def test_chunked_empty_input_yields_no_chunks() -> None:
    assert chunked([], 500) == []


def test_chunked_drops_duplicates_and_keeps_first_order() -> None:
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    assert chunked([a, b, a, c, b], 2) == [[a, b], [c]]


def test_chunked_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        chunked([uuid.uuid4()], 0)


def test_in_chunks_or_of_bounded_membership_matches_plain_filter(db_session: Session) -> None:
    ids = _seed_clients(db_session, 12)
    wanted = ids[1:11]

    predicate = in_chunks(Client.id, wanted, chunk_size=3)
    matched = set(db_session.scalars(select(Client.id).where(predicate)).all())

    assert matched == set(wanted)


def test_in_chunks_empty_ids_matches_nothing(db_session: Session) -> None:
    _seed_clients(db_session, 3)

    matched = db_session.scalars(select(Client.id).where(in_chunks(Client.id, []))).all()

    assert matched == []


def test_fetch_in_chunks_union_equals_unchunked_result(db_session: Session) -> None:
    ids = _seed_clients(db_session, 17)
    unknown = [uuid.uuid4() for _ in range(4)]

    result = fetch_in_chunks(
        db_session,
        lambda chunk: select(Client.id).where(Client.id.in_(chunk)).order_by(Client.id),
        ids + unknown,
        chunk_size=5,
        page_size=2,
        delay_seconds=0,
        source="clients",
    )

    reference = set(db_session.scalars(select(Client.id)).all())
    assert set(result.rows) == reference
    assert len(result.rows) == len(reference)
    assert result.chunks == 5
    assert result.complete is True


def test_fetch_in_chunks_issues_no_query_for_empty_ids() -> None:
    session = MagicMock(spec=Session)
    build = MagicMock()

    result = fetch_in_chunks(session, build, [], chunk_size=500, source="clients")

    assert result.rows == []
    assert result.chunks == 0
    build.assert_not_called()
    session.scalars.assert_not_called()
    session.execute.assert_not_called()


def test_fetch_in_chunks_counts_failed_chunk_and_keeps_others(
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    ids = _seed_clients(db_session, 6)
    poisoned = ids[2]

    def build(chunk: list[uuid.UUID]):  # type: ignore[no-untyped-def]
        stmt = select(Client.id).where(Client.id.in_(chunk)).order_by(Client.id)
        if poisoned in chunk:
            return stmt.where(text("no_such_column = 1"))
        return stmt

    result = fetch_in_chunks(
        db_session,
        build,
        ids,
        chunk_size=2,
        delay_seconds=0,
        source="clients",
    )

    assert result.chunks == 3
    assert result.failed_chunks == 1
    assert result.complete is False
    assert set(result.rows) == set(ids[:2] + ids[4:])
    records = [record for record in caplog.records if record.getMessage() == "store.chunk_failed"]
    assert records
    assert getattr(records[-1], "chunk_index", None) == 1
