# app/utils/time_utils.py
"""Wall-clock and timezone helpers for schedule computation"""
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> time:
    """Parse a strict "HH:MM" 24h string"""
    if not isinstance(value, str):
        raise ValueError(f"Invalid time format: expected HH:MM, got {value!r}")
    match = _HHMM.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time format: expected HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def local_to_utc(local: datetime, tz: ZoneInfo) -> Optional[datetime]:
    """
    Map a naive local wall-clock time to the single UTC instant it denotes.

    Returns None when the wall time does not exist (spring-forward gap) or
    exists twice (fall-back overlap) in the zone.
    """
    earlier = local.replace(tzinfo=tz, fold=0)
    later = local.replace(tzinfo=tz, fold=1)
    if earlier.utcoffset() != later.utcoffset():
        return None
    return earlier.astimezone(timezone.utc)


def utc_to_local(instant: datetime, tz: ZoneInfo) -> datetime:
    """Naive local wall-clock time of an aware instant"""
    return instant.astimezone(tz).replace(tzinfo=None)


def local_day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """UTC instants of local midnight of `day` and of the following day"""
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


def ensure_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("Datetime must include a timezone offset")
    return value.astimezone(timezone.utc)
