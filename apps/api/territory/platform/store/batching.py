from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import false, or_
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Select

from territory.core.config import get_settings
from territory.metrics import observe_store_chunk, observe_store_chunk_failure
from territory.platform.store.pagination import read_all


logger = logging.getLogger("territory.store")

K = TypeVar("K", bound=Hashable)


@dataclass(slots=True)
class ChunkedRead:
    rows: list[Any] = field(default_factory=list)
    chunks: int = 0
    failed_chunks: int = 0

    @property
    def complete(self) -> bool:
        return self.failed_chunks == 0


def resolve_chunk_size(chunk_size: int | None) -> int:
    size = chunk_size if chunk_size is not None else get_settings().store_chunk_size
    if size <= 0:
        raise ValueError("chunk_size must be positive")
    return size


def chunked(ids: Iterable[K], chunk_size: int | None = None) -> list[list[K]]:
    """Split ``ids`` into ordered, de-duplicated chunks of at most ``chunk_size``.

    An empty input yields no chunks at all, never a single empty one.
    """

    size = resolve_chunk_size(chunk_size)
    unique = list(dict.fromkeys(ids))
    return [unique[start : start + size] for start in range(0, len(unique), size)]


def in_chunks(column: Any, ids: Iterable[Any], chunk_size: int | None = None) -> ColumnElement[bool]:
    """``column IN (...)`` split into an OR of bounded membership predicates."""

    parts = chunked(ids, chunk_size)
    if not parts:
        return false()
    if len(parts) == 1:
        return column.in_(parts[0])
    return or_(*(column.in_(part) for part in parts))


def fetch_in_chunks(
    session: Session,
    build_stmt: Callable[[list[K]], Select[Any]],
    ids: Iterable[K],
    *,
    chunk_size: int | None = None,
    page_size: int | None = None,
    delay_seconds: float | None = None,
    source: str = "",
    scalars: bool = True,
) -> ChunkedRead:
    """Run ``build_stmt(chunk)`` for every chunk of ``ids`` and concatenate the rows.

    Each chunk query goes through the paginated reader, so it must be ordered.
    No query is issued for an empty key set. A chunk whose read fails is logged
    and contributes only the rows read before the failure.
    """

    result = ChunkedRead()
    for index, chunk in enumerate(chunked(ids, chunk_size)):
        result.chunks += 1
        observe_store_chunk(source)
        page = read_all(
            session,
            build_stmt(chunk),
            page_size=page_size,
            delay_seconds=delay_seconds,
            source=source,
            scalars=scalars,
        )
        result.rows.extend(page.rows)
        if not page.complete:
            result.failed_chunks += 1
            observe_store_chunk_failure(source)
            logger.warning(
                "store.chunk_failed",
                extra={"source": source, "chunk_index": index, "chunk_size": len(chunk), "rows": len(page.rows)},
            )
    return result
