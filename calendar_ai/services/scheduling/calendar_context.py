import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from calendar_ai.core.config import settings
from calendar_ai.core.errors import create_calendar_error
from calendar_ai.models.calendar import (
    BusyPeriod,
    CalendarContextOptions,
    CalendarContextSummary,
    CalendarEvent,
    EventConflict,
    TimeSlot,
)
from calendar_ai.services.scheduling.conflict_detector import ConflictDetector
from calendar_ai.utils.date_utils import ensure_aware, minutes_between, resolve_timezone, round_half_up


EventSource = Callable[[], Iterable[CalendarEvent]]

SUMMARY_DAYS = 7
SUMMARY_MIN_SLOT_MINUTES = 30
SUMMARY_MAX_SLOTS = 20


class CalendarContextReader:
    """
    Read-side view of the user's existing calendar.

    Events come from a pluggable source and are cached for a fixed time.
    Refreshes are serialized per instance; a failed refresh keeps serving the
    previous (stale) events.
    """

    def __init__(
        self,
        event_source: Optional[EventSource] = None,
        cache_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the reader.

        Args:
            event_source: Callable returning the current events; without one the
                          reader only serves what update_events stored
            cache_timeout_seconds: Cache lifetime (default from settings)
            clock: Monotonic clock, overridable for tests
        """
        self._event_source = event_source
        self._cache_timeout = (
            settings.CONTEXT_CACHE_SECONDS if cache_timeout_seconds is None else cache_timeout_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._events: Tuple[CalendarEvent, ...] = ()
        self._last_update: Optional[float] = None

    @property
    def events(self) -> List[CalendarEvent]:
        return list(self._events)

    def update_events(self, events: Iterable[CalendarEvent]) -> None:
        """Replace the cached events"""
        snapshot = tuple(events)
        with self._lock:
            self._events = snapshot
            self._last_update = self._clock()

    def _cache_expired(self) -> bool:
        return self._last_update is None or self._clock() - self._last_update > self._cache_timeout

    def refresh_cache_if_needed(self) -> None:
        """Reload from the source once the cache has expired"""
        if self._event_source is None or not self._cache_expired():
            return
        with self._lock:
            # another caller may have refreshed while we waited
            if not self._cache_expired():
                return
            try:
                fresh = tuple(self._event_source())
            except Exception as e:
                logger.warning(f"Failed to refresh events cache, next attempt in {self._cache_timeout}s: {e}")
                # keep the stale events until the next attempt
                self._last_update = self._clock()
                return
            self._events = fresh
            self._last_update = self._clock()

    def _resolve_window(self, options: CalendarContextOptions) -> Tuple[datetime, datetime]:
        start = options.start_date or datetime.now(timezone.utc)
        end = options.end_date or start + timedelta(days=settings.CONTEXT_WINDOW_DAYS)
        return ensure_aware(start), ensure_aware(end)

    def get_events_in_range(self, options: Optional[CalendarContextOptions] = None) -> List[CalendarEvent]:
        """
        Get events overlapping the requested window, sorted by start.

        Args:
            options: Window and result limit; defaults to the next CONTEXT_WINDOW_DAYS days

        Returns:
            At most options.max_events events
        """
        try:
            options = options or CalendarContextOptions()
            self.refresh_cache_if_needed()
            range_start, range_end = self._resolve_window(options)

            in_range = [
                event for event in self._events
                if event.start_date < range_end and event.end_date > range_start
            ]
            in_range.sort(key=lambda event: event.start_date)
            return in_range[:options.max_events]
        except Exception as e:
            raise create_calendar_error("getEventsInRange", e) from e

    def get_conflicting_events(self, proposed_events: List[CalendarEvent]) -> List[EventConflict]:
        """Plain overlap check (no buffer) of proposed events against the cache"""
        try:
            self.refresh_cache_if_needed()
            detector = ConflictDetector(buffer_minutes=0)
            conflicts = []
            for new_event in proposed_events:
                conflicting = detector.find_conflicts_for_event(new_event, list(self._events))
                if conflicting:
                    conflicts.append(EventConflict(
                        new_event=new_event,
                        conflicting_events=conflicting,
                        overlap_type=detector.get_overlap_type(new_event, conflicting),
                        suggestion=self._generate_conflict_suggestion(new_event),
                    ))
            return conflicts
        except Exception as e:
            raise create_calendar_error("getConflictingEvents", e) from e

    def get_available_time_slots(
        self,
        date: datetime,
        duration_minutes: float,
        timezone_name: Optional[str] = None
    ) -> List[TimeSlot]:
        """
        Free gaps of at least duration_minutes within working hours on a day.

        Args:
            date: Any instant on the wanted day
            duration_minutes: Minimum gap length
            timezone_name: Zone defining the day (default from settings)
        """
        try:
            self.refresh_cache_if_needed()
            tz = resolve_timezone(timezone_name or settings.DEFAULT_TIMEZONE)
            day_start = ensure_aware(date, tz).astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
            day_end = day_start + timedelta(days=1)
            work_start = day_start + timedelta(hours=settings.WORKING_HOURS_START)
            work_end = day_start + timedelta(hours=settings.WORKING_HOURS_END)

            day_events = sorted(
                (event for event in self._events if day_start <= event.start_date < day_end),
                key=lambda event: event.start_date,
            )

            slots = []
            current = work_start
            for event in day_events:
                gap_end = min(event.start_date, work_end)
                if gap_end > current:
                    gap = minutes_between(current, gap_end)
                    if gap >= duration_minutes:
                        slots.append(TimeSlot(start=current, end=gap_end, duration=gap))
                current = max(current, event.end_date)

            if current < work_end:
                remaining = minutes_between(current, work_end)
                if remaining >= duration_minutes:
                    slots.append(TimeSlot(start=current, end=work_end, duration=remaining))

            return slots
        except Exception as e:
            raise create_calendar_error("getAvailableTimeSlots", e) from e

    def format_events_for_ai(self, options: Optional[CalendarContextOptions] = None) -> str:
        """Render the events of a window as a digest for the model prompt"""
        try:
            options = options or CalendarContextOptions()
            events = self.get_events_in_range(options)
            if not events:
                return "No existing events in the specified time range."

            timezone_name = options.timezone or settings.DEFAULT_TIMEZONE
            tz = resolve_timezone(timezone_name)
            lines = []
            for event in events:
                line = (
                    f"- {event.title} ({event.start_date.astimezone(tz):%Y-%m-%d %H:%M} to "
                    f"{event.end_date.astimezone(tz):%Y-%m-%d %H:%M}, {round_half_up(event.duration_minutes)}min)"
                )
                if options.include_details:
                    if event.location:
                        line += f" at {event.location}"
                    if event.description:
                        line += f" - {event.description}"
                lines.append(line)

            return f"Existing calendar events (timezone: {timezone_name}):\n" + "\n".join(lines)
        except Exception as e:
            raise create_calendar_error("formatEventsForAI", e) from e

    def get_calendar_summary(self, options: Optional[CalendarContextOptions] = None) -> CalendarContextSummary:
        """Busy periods in the window plus free slots over the next week"""
        try:
            options = options or CalendarContextOptions()
            events = self.get_events_in_range(options)
            range_start, range_end = self._resolve_window(options)
            timezone_name = options.timezone or settings.DEFAULT_TIMEZONE

            available = []
            for offset in range(SUMMARY_DAYS):
                available.extend(self.get_available_time_slots(
                    range_start + timedelta(days=offset), SUMMARY_MIN_SLOT_MINUTES, timezone_name
                ))

            return CalendarContextSummary(
                total_events=len(events),
                busy_periods=[
                    BusyPeriod(start=event.start_date, end=event.end_date, title=event.title)
                    for event in events
                ],
                available_slots=available[:SUMMARY_MAX_SLOTS],
                timezone=timezone_name,
                range_start=range_start,
                range_end=range_end,
            )
        except Exception as e:
            raise create_calendar_error("getCalendarSummary", e) from e

    def _generate_conflict_suggestion(self, new_event: CalendarEvent) -> str:
        duration = new_event.duration_minutes
        tz = resolve_timezone(settings.DEFAULT_TIMEZONE)

        same_day = self.get_available_time_slots(new_event.start_date, duration)
        if same_day:
            return f"Consider scheduling at {same_day[0].start.astimezone(tz):%H:%M} instead"

        next_day = self.get_available_time_slots(new_event.start_date + timedelta(days=1), duration)
        if next_day:
            return f"Consider scheduling on {next_day[0].start.astimezone(tz):%b %d, %H:%M}"

        return "Consider adjusting the time to avoid conflicts"


def serialize_events(events: Iterable[CalendarEvent]) -> List[Dict[str, Any]]:
    return [event.to_serialized() for event in events]


def deserialize_events(serialized: Iterable[Dict[str, Any]]) -> List[CalendarEvent]:
    return [CalendarEvent.model_validate(item) for item in serialized]


# Default instance that can be used throughout the app
calendar_context = CalendarContextReader()
