from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy.sql import Select


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


@dataclass(slots=True, frozen=True)
class TimeWindow:
    """Half-open range ``[start, end)`` so a boundary instant belongs to exactly one window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))

    @classmethod
    def from_dates(cls, start_date: date, end_date: date) -> TimeWindow:
        """Whole calendar days ``start_date`` through ``end_date`` inclusive."""

        return cls(start=day_start(start_date), end=day_start(end_date + timedelta(days=1)))

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        moment = as_utc(value)
        return self.start <= moment < self.end

    def apply(self, stmt: Select[Any], column: Any) -> Select[Any]:
        return stmt.where(column >= self.start, column < self.end)
