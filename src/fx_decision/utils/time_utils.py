"""
Time Utilities

Provides:
- FX session detection from a UTC timestamp
- Epoch second / millisecond normalization
- Timeframe durations
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .math_utils import to_finite


class TradingSession(str, Enum):
    """FX trading sessions, keyed by UTC hour."""
    LONDON_NY_OVERLAP = "london_ny_overlap"
    ASIA_LONDON_OVERLAP = "asia_london_overlap"
    NEW_YORK = "new_york"
    LONDON = "london"
    ASIA = "asia"
    OFF_HOURS = "off_hours"


# Half-open UTC hour windows [start, end)
SESSION_HOURS = {
    'asia': (0, 8),
    'london': (7, 16),
    'new_york': (12, 21),
}

TIMEFRAME_MS = {
    'M1': 60_000,
    'M5': 5 * 60_000,
    'M15': 15 * 60_000,
    'M30': 30 * 60_000,
    'H1': 60 * 60_000,
    'H4': 4 * 60 * 60_000,
    'D1': 24 * 60 * 60_000,
    'W1': 7 * 24 * 60 * 60_000,
}


def now_utc() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> datetime:
    """Return dt as an aware UTC datetime; naive values are assumed UTC."""
    if dt is None:
        return now_utc()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(value: Any) -> Optional[int]:
    """
    Normalize a timestamp to epoch milliseconds.

    Numbers above 1e10 are taken as milliseconds, anything smaller as seconds.
    Datetimes are converted directly.
    """
    if isinstance(value, datetime):
        return int(ensure_utc(value).timestamp() * 1000)
    number = to_finite(value)
    if number is None or number <= 0:
        return None
    return int(round(number)) if number > 1e10 else int(round(number * 1000))


def _in_window(hour: int, window) -> bool:
    start, end = window
    return start <= hour < end


def session_for(dt: datetime) -> TradingSession:
    """Classify a UTC timestamp into a trading session."""
    hour = ensure_utc(dt).hour
    asia = _in_window(hour, SESSION_HOURS['asia'])
    london = _in_window(hour, SESSION_HOURS['london'])
    new_york = _in_window(hour, SESSION_HOURS['new_york'])

    if london and new_york:
        return TradingSession.LONDON_NY_OVERLAP
    if asia and london:
        return TradingSession.ASIA_LONDON_OVERLAP
    if new_york:
        return TradingSession.NEW_YORK
    if london:
        return TradingSession.LONDON
    if asia:
        return TradingSession.ASIA
    return TradingSession.OFF_HOURS


def utc_date_key(dt: datetime) -> str:
    """Calendar date of a timestamp in UTC, used for daily budget rollover."""
    return ensure_utc(dt).date().isoformat()
