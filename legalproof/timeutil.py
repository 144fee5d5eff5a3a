"""Naive-UTC time helpers shared by the challenge store and the claim rows"""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form stored in the database)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_z(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds") + "Z"


def to_unix(value: Optional[datetime]) -> Optional[int]:
    """Unix seconds (floored) for a naive UTC datetime, None passes through"""
    if value is None:
        return None
    return calendar.timegm(value.utctimetuple())


def add_years(value: datetime, years: int) -> datetime:
    """Calendar-year addition; 29 February rolls over to 1 March"""
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, month=3, day=1)
