"""
Line-oriented heuristic extraction of events from free text.

This is the last-resort strategy of the response parser. It is deliberately
lossy: it looks for "label: value" pairs (Title:, Start:, Ends at:, Where:, or
JSON-ish "title": "..." fragments) and folds them into partial events,
starting a new event every time a title label appears.
"""

import re
from datetime import datetime, timedelta, tzinfo
from functools import reduce
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from dateutil import parser as date_parser

from calendar_ai.utils.date_utils import ensure_aware, parse_iso_datetime


_LABEL = r"""[A-Za-z](?:[\w \-]{0,40}[A-Za-z])?"""

# A label opens the line (after list markers) or follows a "," or "{".
# Unquoted values run until the next ", label:" pair or the end of the line.
_LABEL_VALUE = re.compile(
    r"""(?:^[\s\-*#>.\d)]*|(?<=[,{])\s*)["']?(?P<label>""" + _LABEL + r""")["']?\s*:\s*"""
    r"""(?P<value>"[^"]*"?|'[^']*'?|(?:(?!,\s*["']?""" + _LABEL + r"""["']?\s*:)[^{}\[\]"])*)"""
)

# Checked in this order; "Event location" is a location, "Meeting start" a start.
_FIELD_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("location", re.compile(r"\b(?:location|place|where|venue)\b", re.IGNORECASE)),
    ("start", re.compile(r"\b(?:start(?:s|ing)?|begin(?:s|ning)?|from)\b", re.IGNORECASE)),
    ("end", re.compile(r"\b(?:end(?:s|ing)?|until|to)\b", re.IGNORECASE)),
    ("title", re.compile(r"\b(?:title|event|meeting|appointment)s?\b", re.IGNORECASE)),
)


class PartialEvent(NamedTuple):
    """Fields collected so far for one event; any of them may be missing"""
    title: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    location: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self)


class _ScanState(NamedTuple):
    completed: Tuple[PartialEvent, ...]
    current: PartialEvent


def classify_label(label: str) -> Optional[str]:
    """Map a label such as "Start time" to a partial-event field name"""
    for field, pattern in _FIELD_PATTERNS:
        if pattern.search(label):
            return field
    return None


def _clean_value(value: str) -> str:
    return value.strip().strip("\"'*").strip()


def extract_fields(line: str) -> List[Tuple[str, str]]:
    """All recognised (field, value) pairs on one line, in order of appearance"""
    fields = []
    for match in _LABEL_VALUE.finditer(line):
        field = classify_label(match.group("label"))
        value = _clean_value(match.group("value"))
        if field and value:
            fields.append((field, value))
    return fields


def _consume_line(state: _ScanState, line: str) -> _ScanState:
    completed, current = state
    for field, value in extract_fields(line):
        if field == "title":
            if not current.is_empty():
                completed = completed + (current,)
            current = PartialEvent(title=value)
        else:
            current = current._replace(**{field: value})
    return _ScanState(completed, current)


def scan_partial_events(text: str) -> List[PartialEvent]:
    """
    Fold the non-empty lines of text into partial events.

    A partial is flushed whenever a new title is found and once more at the
    end of input. Partials without a title are dropped.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    final = reduce(_consume_line, lines, _ScanState((), PartialEvent()))
    partials = final.completed + (final.current,)
    return [partial for partial in partials if partial.title]


def parse_flexible_date(
    value: str,
    tz: tzinfo,
    now: Optional[Callable[[], datetime]] = None
) -> datetime:
    """
    Parse a date the way people and models tend to write it.

    Tries ISO-8601 first, then a fuzzy read of the text ("2025-06-01 10:00",
    "06/01/2025 10:00", "on Jun 1 at 10:00"). Month comes before day, and a
    bare "HH:mm" is today. Anything unreadable yields the current time.

    Args:
        value: Date text
        tz: Zone for naive values
        now: Clock override, mainly for tests

    Returns:
        Aware datetime
    """
    current = now() if now else datetime.now(tz)
    current = current.astimezone(tz)

    try:
        return parse_iso_datetime(value, tz)
    except ValueError:
        pass

    today = current.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    try:
        parsed = date_parser.parse(value, default=today, fuzzy=True)
    except (ValueError, OverflowError):
        return current
    return ensure_aware(parsed, tz)


def partial_to_fields(
    partial: PartialEvent,
    tz: tzinfo,
    default_duration: timedelta,
    now: Optional[Callable[[], datetime]] = None
) -> Dict[str, object]:
    """
    Resolve a partial event into concrete title/start/end/location values.

    Raises:
        OverflowError: If the default end falls outside datetime's range
    """
    start = parse_flexible_date(partial.start, tz, now) if partial.start else (
        now() if now else datetime.now(tz)
    )
    end = parse_flexible_date(partial.end, tz, now) if partial.end else start + default_duration
    return {
        "title": partial.title,
        "start_date": start,
        "end_date": end,
        "location": partial.location or "",
    }
