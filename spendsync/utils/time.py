"""Time and calendar helpers (UTC now, provider date parsing)."""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_day(value: str | date | datetime) -> date:
    """Parse 'YYYY-MM-DD' (or any ISO timestamp starting with it) into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_day_or_none(value: Any) -> Optional[date]:
    """Like parse_day, but None for missing or malformed provider values."""
    if value is None or value == "":
        return None
    try:
        return parse_day(value)
    except (TypeError, ValueError):
        return None


def day_from_epoch(seconds: float) -> date:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).date()


def day_from_epoch_ms(millis: float) -> date:
    return day_from_epoch(millis / 1000.0)


def day_bounds_epoch(start: date, end: date) -> tuple[int, int]:
    """Inclusive [start 00:00:00, end 23:59:59] UTC as unix seconds."""
    start_dt = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    end_dt = datetime(end.year, end.month, end.day, 23, 59, 59, tzinfo=timezone.utc)
    return int(start_dt.timestamp()), int(end_dt.timestamp())


__all__ = [
    "utc_now",
    "as_utc",
    "parse_day",
    "day_from_epoch",
    "day_from_epoch_ms",
    "day_bounds_epoch",
    "parse_day_or_none",
]
