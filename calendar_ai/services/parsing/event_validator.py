from datetime import timedelta
from typing import List, NamedTuple, Optional

from loguru import logger

from calendar_ai.core.config import settings
from calendar_ai.models.calendar import CalendarEvent


class ValidationOutcome(NamedTuple):
    events: List[CalendarEvent]
    warnings: List[str]


def _normalize_event(event: CalendarEvent, default_duration: timedelta, warnings: List[str]) -> Optional[CalendarEvent]:
    if not event.title.strip():
        warnings.append("Event with empty title was skipped")
        return None

    updates = {
        "title": event.title.strip(),
        "description": (event.description or "").strip(),
        "location": (event.location or "").strip(),
    }

    if event.end_date <= event.start_date:
        warnings.append(f'Event "{updates["title"]}" has invalid time range, adjusted end time')
        updates["end_date"] = event.start_date + default_duration

    return event.model_copy(update=updates)


def validate_events(
    events: List[CalendarEvent],
    default_duration_hours: Optional[float] = None
) -> ValidationOutcome:
    """
    Enforce the canonical event invariants.

    Events with a blank title are dropped. An end that is not after the start
    is reset to start + default duration. Title, description and location are
    trimmed. A failure on one event is recorded as a warning and the rest are
    still processed.

    Args:
        events: Events to check
        default_duration_hours: Duration used to repair end times (default from settings)

    Returns:
        ValidationOutcome with the surviving events and the warnings raised
    """
    hours = settings.DEFAULT_EVENT_DURATION_HOURS if default_duration_hours is None else default_duration_hours
    default_duration = timedelta(hours=hours)
    warnings: List[str] = []
    validated: List[CalendarEvent] = []

    for event in events:
        try:
            normalized = _normalize_event(event, default_duration, warnings)
        except Exception as e:
            title = getattr(event, "title", None) or "untitled"
            logger.warning(f"Failed to validate event '{title}': {e}")
            warnings.append(f'Failed to validate event "{title}": {e}')
            continue
        if normalized is not None:
            validated.append(normalized)

    return ValidationOutcome(validated, warnings)
