"""
Timezone-aware datetime utilities.

All functions return timezone-aware datetime objects in UTC unless they
explicitly convert to an ad-account timezone.
"""

from datetime import datetime, date, time, timezone, timedelta
from typing import Optional, Union
import pytz


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no timezone), it assumes UTC. SQLite hands
    back naive datetimes, so every value read from the database passes
    through here before it is compared with utc_now().

    Example:
        >>> utc_dt = ensure_utc(datetime(2025, 1, 1, 12, 0, 0))
        >>> print(utc_dt.tzinfo)  # UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def utc_days_ago(days: int) -> datetime:
    """Get a UTC datetime N days in the past"""
    return utc_now() - timedelta(days=days)


def utc_minutes_ago(minutes: int) -> datetime:
    """Get a UTC datetime N minutes in the past"""
    return utc_now() - timedelta(minutes=minutes)


def to_ads_datetime(dt: datetime, account_tz: str = 'Asia/Tokyo') -> str:
    """
    Format a datetime the way the Google Ads upload API expects it:
    'yyyy-mm-dd hh:mm:ss+hh:mm' in the ad account's timezone.
    """
    local = ensure_utc(dt).astimezone(pytz.timezone(account_tz))
    offset = local.strftime('%z')
    return local.strftime('%Y-%m-%d %H:%M:%S') + f"{offset[:3]}:{offset[3:]}"


def parse_utc_iso(iso_string: str) -> datetime:
    """
    Parse an ISO format string to a timezone-aware UTC datetime.

    Accepts both 'Z' and '+00:00' suffixes as well as naive strings.
    """
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(iso_string))


def day_range(start: Union[str, date, datetime],
              end: Optional[Union[str, date, datetime]] = None) -> tuple[datetime, datetime]:
    """
    Resolve a reconciliation window to [start, end) in UTC.

    Plain dates (or 'YYYY-MM-DD' strings) cover the whole day, so
    day_range('2025-03-01', '2025-03-01') spans 24 hours.
    """
    start_dt = _as_bound(start, end_of_day=False)
    end_dt = _as_bound(end if end is not None else start, end_of_day=True)
    if end_dt < start_dt:
        raise ValueError("end must not be before start")
    return start_dt, end_dt


def _as_bound(value: Union[str, date, datetime], end_of_day: bool) -> datetime:
    if isinstance(value, str):
        if len(value) == 10:
            value = date.fromisoformat(value)
        else:
            return parse_utc_iso(value)
    if isinstance(value, datetime):
        return ensure_utc(value)
    bound = datetime.combine(value, time.min, tzinfo=timezone.utc)
    return bound + timedelta(days=1) if end_of_day else bound
