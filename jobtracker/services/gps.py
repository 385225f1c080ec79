"""
Recover real-world event times from vendor GPS strings.

The mobile forms app stamps GPS fields like::

    Lat:41.908566,Lon:-87.677826,Acc:6.550611,Alt:190.527401,Time:1756312898.246060

``Time`` is epoch seconds on most devices and epoch milliseconds on some.
Nothing in this module raises on bad input; unusable values come back as
``None`` and callers fall back to observation time.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, NamedTuple, Optional

from ..config import DEFAULT_TIMEZONE_OFFSETS

logger = logging.getLogger("jobtracker.gps")

_TIME_RE = re.compile(r"Time:(\d+\.?\d*)")
_LAT_RE = re.compile(r"Lat:(-?\d+\.?\d*)")
_LON_RE = re.compile(r"Lon:(-?\d+\.?\d*)")
_ACC_RE = re.compile(r"Acc:(-?\d+\.?\d*)")

MILLIS_THRESHOLD = 10_000_000_000
MIN_YEAR = 2020
MAX_YEAR = 2100


class GpsFix(NamedTuple):
    lat: float
    lon: float
    accuracy: float
    timestamp: Optional[datetime]


class HandoffEstimate(NamedTuple):
    timestamp: datetime
    source: str  # gps | local_heuristic
    confidence: str  # high | low


def extract_gps_timestamp(value: Optional[str]) -> Optional[datetime]:
    """UTC datetime from the ``Time:`` component, or None."""
    if not value or not isinstance(value, str):
        return None
    match = _TIME_RE.search(value)
    if not match:
        return None
    try:
        raw = float(match.group(1))
        seconds = raw / 1000.0 if raw > MILLIS_THRESHOLD else raw
        ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Unparseable GPS time", extra={"component": "gps", "raw": match.group(1)})
        return None
    if ts.year < MIN_YEAR or ts.year > MAX_YEAR:
        logger.warning("GPS time outside accepted window", extra={
            "component": "gps", "raw": match.group(1), "year": ts.year})
        return None
    return ts


def parse_gps_coordinates(value: Optional[str]) -> Optional[GpsFix]:
    if not value or not isinstance(value, str):
        return None
    lat = _LAT_RE.search(value)
    lon = _LON_RE.search(value)
    if not lat or not lon:
        return None
    acc = _ACC_RE.search(value)
    return GpsFix(
        lat=float(lat.group(1)),
        lon=float(lon.group(1)),
        accuracy=float(acc.group(1)) if acc else 0.0,
        timestamp=extract_gps_timestamp(value),
    )


def _parse_local(date_str: str, time_str: str) -> Optional[datetime]:
    date_str = (date_str or "").strip()
    time_str = (time_str or "").strip().upper()
    if not date_str or not time_str:
        return None
    day = None
    for fmt in ("%m/%d/%Y", "%Y-%m-%d", "%m-%d-%Y"):
        try:
            day = datetime.strptime(date_str, fmt).date()
            break
        except ValueError:
            continue
    if day is None:
        return None
    for fmt in ("%I:%M %p", "%I:%M%p", "%H:%M", "%H:%M:%S"):
        try:
            t = datetime.strptime(time_str, fmt).time()
            return datetime.combine(day, t)
        except ValueError:
            continue
    return None


def estimate_handoff_from_local(date_str: str, time_str: str, completed_at: datetime,
                                offsets: Iterable[int] = DEFAULT_TIMEZONE_OFFSETS) -> Optional[HandoffEstimate]:
    """Best guess at the UTC instant of a technician-entered local date/time.

    The device timezone is unknown, so every candidate offset is tried and the
    latest resulting instant that does not fall after ``completed_at`` wins.
    Ambiguous near midnight and across DST changes, hence ``confidence="low"``.
    """
    local = _parse_local(date_str, time_str)
    if local is None or completed_at is None:
        return None
    best = None
    for offset in offsets:
        candidate = (local - timedelta(hours=offset)).replace(tzinfo=timezone.utc)
        if candidate <= completed_at and (best is None or candidate > best):
            best = candidate
    if best is None:
        return None
    return HandoffEstimate(timestamp=best, source="local_heuristic", confidence="low")


def resolve_handoff_time(gps_value: Optional[str], handoff_date: Optional[str],
                         handoff_time: Optional[str], completed_at: datetime) -> Optional[HandoffEstimate]:
    """GPS first, then the local-time heuristic, else None."""
    ts = extract_gps_timestamp(gps_value)
    if ts is not None:
        return HandoffEstimate(timestamp=ts, source="gps", confidence="high")
    if handoff_date and handoff_time:
        return estimate_handoff_from_local(handoff_date, handoff_time, completed_at)
    return None
