"""
Datetime helpers shared by the parser, the conflict detector and the
calendar context reader.

- resolve_timezone: IANA name to ZoneInfo, with a fallback zone
- ensure_aware: attach a zone to naive datetimes
- parse_iso_datetime: parse an ISO-8601 string into an aware datetime
- to_iso_z: wire format YYYY-MM-DDTHH:mm:ss.sssZ
- minutes_between: signed duration in minutes
- round_half_up: integer rounding for reported minutes and percentages
"""

import math
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from loguru import logger


def resolve_timezone(name: Optional[str], fallback: str = "UTC") -> ZoneInfo:
    """
    Resolve an IANA timezone name, falling back when it is missing or unknown.

    Args:
        name: Timezone name such as "Europe/Rome"
        fallback: Zone used when name is empty or not a known zone

    Returns:
        ZoneInfo for the resolved zone
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug(f"Unknown timezone '{name}', using '{fallback}'")
    return ZoneInfo(fallback)


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def ensure_aware(value: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Attach tz to a naive datetime; aware datetimes are returned as is"""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def parse_iso_datetime(value: str, tz: tzinfo = timezone.utc) -> datetime:
    """
    Parse an ISO-8601 date or datetime string.

    Extended and basic formats are accepted, as are "Z" and "+HHMM" offsets
    and fractions of any precision. Naive values are interpreted in tz.

    Raises:
        ValueError: If the string is not ISO-8601 or out of datetime's range
    """
    text = value.strip()
    if not text:
        raise ValueError("Empty date string")
    try:
        parsed = date_parser.isoparse(text)
    except OverflowError as e:
        raise ValueError(f"Date out of range: {text}") from e
    return ensure_aware(parsed, tz)


def to_iso_z(value: datetime) -> str:
    """Format an instant as UTC with millisecond precision and a Z suffix"""
    utc_value = ensure_aware(value).astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def format_minutes(minutes: float) -> str:
    """Render a minute count without a trailing .0"""
    return f"{minutes:g}"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3)"""
    return math.floor(value + 0.5)
