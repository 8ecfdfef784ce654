"""
Timezone utility module for consistent time handling across the bot.

The bot works in one fixed zone (``TIMEZONE``); every instant it stores or
compares is timezone-aware and expressed in that zone.
"""

import datetime
import logging
from typing import Optional

import pytz

from core.config import config

log = logging.getLogger("calbot.timezone")
_timezone_cache: dict[str, pytz.BaseTzInfo] = {}


def get_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    name = name or config.timezone
    tz = _timezone_cache.get(name)
    if tz is None:
        try:
            tz = pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            log.warning(f"Unknown timezone {name!r}, falling back to UTC")
            tz = pytz.UTC
        _timezone_cache[name] = tz
    return tz


def localize(dt: datetime.datetime, tz: Optional[pytz.BaseTzInfo] = None) -> datetime.datetime:
    """Attach the local zone to a naive wall-clock time, or convert an aware one"""
    tz = tz or get_timezone()
    if dt.tzinfo is None:
        return tz.localize(dt)
    return tz.normalize(dt.astimezone(tz))


def to_local(value, tz: Optional[pytz.BaseTzInfo] = None) -> datetime.datetime:
    """Convert an iCalendar date or datetime value into an aware local datetime.

    Dates become local midnight, floating times are read as local wall-clock
    time and aware times are converted.
    """
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time.min)
    return localize(value, tz)


def get_current_time(tz: Optional[pytz.BaseTzInfo] = None) -> datetime.datetime:
    tz = tz or get_timezone()
    return datetime.datetime.now(tz)


def iso_instant(dt: datetime.datetime) -> str:
    """Render an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    utc = dt.astimezone(pytz.UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_time(dt: datetime.datetime, format_str: Optional[str] = None,
                tz: Optional[pytz.BaseTzInfo] = None) -> str:
    return localize(dt, tz).strftime(format_str or config.date_format)
