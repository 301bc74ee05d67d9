from __future__ import annotations

import calendar
import datetime as dt
from typing import Optional, Tuple

UTC = dt.timezone.utc


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_db_datetime(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    return ensure_utc(value)


def month_bounds(year: int, month: int) -> Tuple[dt.date, dt.date]:
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, 1), dt.date(year, month, last_day)


def day_range_utc(start_day: dt.date, end_day: dt.date) -> Tuple[dt.datetime, dt.datetime]:
    """Half-open UTC instant range covering ``start_day`` through ``end_day``."""
    start = dt.datetime.combine(start_day, dt.time.min, tzinfo=UTC)
    end = dt.datetime.combine(end_day + dt.timedelta(days=1), dt.time.min, tzinfo=UTC)
    return start, end


def hourly_rate(daily_rate: float, hours_per_day: float) -> float:
    return daily_rate / hours_per_day


def round_hours(hours: float) -> float:
    return round(hours, 2)


def format_currency(amount: Optional[float], currency: Optional[str]) -> str:
    if amount is None:
        return ""
    code = (currency or "").strip().upper()
    text = f"{amount:,.2f}"
    return f"{text} {code}" if code else text
