"""Date and time helpers shared by the ICS builder and the Graph client."""

from datetime import datetime, timedelta
from typing import Union

import pytz

GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
ICS_UTC_FORMAT = "%Y%m%dT%H%M%SZ"
ICS_LOCAL_FORMAT = "%Y%m%dT%H%M%S"

DateLike = Union[datetime, str]


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def parse_datetime(value: DateLike) -> datetime:
    """
    Accept a datetime or an ISO 8601 string.

    Raises:
        ValueError: If the string is not a valid ISO 8601 timestamp
    """
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.strip())


def to_zone(dt: datetime, time_zone: str) -> datetime:
    """
    Express a datetime as naive wall time in ``time_zone``.

    Naive input is returned unchanged: it is already wall time in the
    requested zone.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.timezone(time_zone)).replace(tzinfo=None)


def format_graph_datetime(value: DateLike, time_zone: str = "UTC", shift_seconds: int = 0) -> str:
    """Format a timestamp the way Graph expects in dateTimeTimeZone payloads."""
    dt = to_zone(parse_datetime(value), time_zone) + timedelta(seconds=shift_seconds)
    return dt.strftime(GRAPH_DATETIME_FORMAT)


def format_graph_utc(value: DateLike, time_zone: str = "UTC") -> str:
    """
    Format a timestamp as UTC with a ``Z`` suffix for query parameters.

    Naive datetimes are taken to be wall time in ``time_zone``.
    """
    dt = parse_datetime(value)
    if dt.tzinfo is None:
        dt = pytz.timezone(time_zone).localize(dt)
    return ensure_utc(dt).strftime(GRAPH_DATETIME_FORMAT) + "Z"


def format_ics_utc(dt: datetime) -> str:
    return ensure_utc(dt).strftime(ICS_UTC_FORMAT)


def format_ics_local(dt: datetime, time_zone: str) -> str:
    """
    Format a timestamp as local wall time for a ``TZID=`` property.

    Naive datetimes are taken to be wall time in ``time_zone`` already.
    """
    return to_zone(dt, time_zone).strftime(ICS_LOCAL_FORMAT)
