from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from territory.core.config import get_settings
from territory.metrics import observe_store_page, observe_store_page_failure


logger = logging.getLogger("territory.store")

T = TypeVar("T")

PageFetcher = Callable[[int, int], Sequence[T]]


@dataclass(slots=True)
class PagedRead(Generic[T]):
    """Rows gathered by a paginated read.

    ``complete`` is False when a page failed and the read stopped early; ``rows``
    then holds every row fetched before the failing page.
    """

    rows: list[T] = field(default_factory=list)
    pages: int = 0
    complete: bool = True


def resolve_page_size(page_size: int | None) -> int:
    size = page_size if page_size is not None else get_settings().store_page_size
    if size <= 0:
        raise ValueError("page_size must be positive")
    return size


def resolve_page_delay(delay_seconds: float | None) -> float:
    if delay_seconds is not None:
        return max(0.0, delay_seconds)
    return max(0, get_settings().store_page_delay_ms) / 1000


def fetch_all_paged(
    fetch_page: PageFetcher[T],
    *,
    page_size: int | None = None,
    delay_seconds: float | None = None,
    source: str = "",
    sleep: Callable[[float], Any] = time.sleep,
) -> PagedRead[T]:
    """Read ``[offset, offset + page_size)`` windows until a short page comes back.

    The result set behind ``fetch_page`` must be stably ordered, otherwise rows can
    be duplicated or skipped between pages. A failing page is logged and ends the
    read; whatever was accumulated so far is returned.
    """

    size = resolve_page_size(page_size)
    delay = resolve_page_delay(delay_seconds)
    result: PagedRead[T] = PagedRead()
    offset = 0

    while True:
        try:
            batch = list(fetch_page(offset, size))
        except SQLAlchemyError as exc:
            observe_store_page_failure(source)
            logger.warning(
                "store.page_failed",
                extra={
                    "source": source,
                    "offset": offset,
                    "limit": size,
                    "rows": len(result.rows),
                    "error": str(exc),
                },
            )
            result.complete = False
            break

        result.pages += 1
        observe_store_page(source)
        result.rows.extend(batch)

        if len(batch) < size:
            break

        offset += size
        if delay > 0:
            sleep(delay)

    logger.debug("store.read_finished", extra={"source": source, "rows": len(result.rows), "pages": result.pages})
    return result


def read_all(
    session: Session,
    stmt: Select[Any],
    *,
    page_size: int | None = None,
    delay_seconds: float | None = None,
    source: str = "",
    scalars: bool = True,
) -> PagedRead[Any]:
    """Paginate an already ordered ``Select`` with offset/limit windows.

    A failed page rolls the session back so later reads on it can still run.
    """

    def _fetch(offset: int, limit: int) -> Sequence[Any]:
        windowed = stmt.offset(offset).limit(limit)
        try:
            if scalars:
                return session.scalars(windowed).all()
            return session.execute(windowed).all()
        except SQLAlchemyError:
            session.rollback()
            raise

    return fetch_all_paged(_fetch, page_size=page_size, delay_seconds=delay_seconds, source=source)
