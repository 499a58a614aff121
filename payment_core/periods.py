"""
Period Counter Module

Lazy "reset if the calendar day changed" logic shared by card spending
counters and API key usage counters. All functions are pure: the caller reads
the clock once per operation and passes the same `now` everywhere.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple, TypeVar, Union
from decimal import Decimal


Counter = TypeVar("Counter", int, Decimal)


def utc_now() -> datetime:
    """Single clock read used by operations"""
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def day_key(moment: datetime) -> str:
    """Stable calendar-day key (UTC) such as '2026-10-18'"""
    return _as_utc(moment).date().isoformat()


def minute_key(moment: datetime) -> str:
    """Stable minute key (UTC) such as '2026-10-18T09:41'"""
    return _as_utc(moment).strftime("%Y-%m-%dT%H:%M")


def is_new_period(last_reset: Optional[datetime], now: datetime) -> bool:
    """True if `last_reset` falls on a different calendar day than `now`"""
    if last_reset is None:
        return True
    return day_key(last_reset) != day_key(now)


def reset_if_new_period(
    counter: Counter,
    last_reset: Optional[datetime],
    now: datetime
) -> Tuple[Counter, datetime]:
    """
    Reset a day-scoped counter when the calendar day has changed

    Args:
        counter: Current counter value (int request count or Decimal amount)
        last_reset: When the counter was last reset, None if never
        now: The operation's clock reading

    Returns:
        (counter, last_reset) unchanged on the same day, otherwise
        (zero of the counter's type, now)
    """
    if is_new_period(last_reset, now):
        return type(counter)(0), now
    return counter, last_reset


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO timestamp loaded from storage"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
