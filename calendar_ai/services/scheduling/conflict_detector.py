from datetime import datetime, timedelta, tzinfo
from typing import Any, List, Optional

from calendar_ai.core.errors import create_calendar_error
from calendar_ai.models.calendar import (
    CalendarEvent,
    ConflictDetectionOptions,
    ConflictSuggestion,
    DetailedConflict,
    OverlapType,
    ScoredTimeSlot,
    Severity,
    WorkingHours,
)
from calendar_ai.utils.date_utils import format_minutes, minutes_between, resolve_timezone, round_half_up


DEFAULT_SUGGESTION = "Consider adjusting the time to avoid conflicts"
MAX_SUGGESTIONS = 3

SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2}


class ConflictDetector:
    """
    Detects scheduling conflicts between proposed and existing events.

    Works on already-validated events. Any unexpected failure is re-raised as
    a CalendarContextError tagged with the failing operation.
    """

    def __init__(self, options: Optional[ConflictDetectionOptions] = None, **overrides: Any):
        """
        Initialize the detector.

        Args:
            options: Full option set; defaults come from settings
            **overrides: Individual options (buffer_minutes, working_hours,
                         ignore_weekends, timezone) applied on top
        """
        base = options or ConflictDetectionOptions()
        if overrides:
            base = ConflictDetectionOptions.model_validate({**base.model_dump(), **overrides})
        self.options = base

    @property
    def buffer(self) -> timedelta:
        return timedelta(minutes=self.options.buffer_minutes)

    @property
    def working_hours(self) -> WorkingHours:
        return self.options.working_hours

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.options.timezone)

    def detect_scheduling_conflicts(
        self,
        new_events: List[CalendarEvent],
        existing_events: List[CalendarEvent]
    ) -> List[DetailedConflict]:
        """
        Detect conflicts between new events and existing events.

        Args:
            new_events: Proposed events
            existing_events: Events already on the calendar

        Returns:
            One DetailedConflict per new event that overlaps at least one
            existing event, in the order of new_events
        """
        try:
            conflicts = []
            for new_event in new_events:
                conflicting = self.find_conflicts_for_event(new_event, existing_events)
                if conflicting:
                    conflicts.append(self.analyze_conflict(new_event, conflicting))
            return conflicts
        except Exception as e:
            raise create_calendar_error("detectSchedulingConflicts", e) from e

    def find_conflicts_for_event(
        self,
        new_event: CalendarEvent,
        existing_events: List[CalendarEvent]
    ) -> List[CalendarEvent]:
        return [existing for existing in existing_events if self.events_conflict(new_event, existing)]

    def events_conflict(self, first: CalendarEvent, second: CalendarEvent) -> bool:
        """Check if two events overlap once both are padded by the buffer"""
        first_start = first.start_date - self.buffer
        first_end = first.end_date + self.buffer
        second_start = second.start_date - self.buffer
        second_end = second.end_date + self.buffer
        return first_start < second_end and first_end > second_start

    def analyze_conflict(
        self,
        new_event: CalendarEvent,
        conflicting_events: List[CalendarEvent]
    ) -> DetailedConflict:
        """Measure a conflict, grade it and attach suggestions"""
        overlap_type = self.get_overlap_type(new_event, conflicting_events)
        conflict_duration = self.calculate_conflict_duration(new_event, conflicting_events)
        conflict_percentage = self.calculate_conflict_percentage(new_event, conflicting_events)
        severity = self.calculate_severity(conflict_percentage, len(conflicting_events))
        suggestions = self.generate_conflict_suggestions(new_event, conflicting_events)

        return DetailedConflict(
            new_event=new_event,
            conflicting_events=conflicting_events,
            overlap_type=overlap_type,
            conflict_duration_minutes=conflict_duration,
            conflict_percentage=conflict_percentage,
            severity=severity,
            suggestions=suggestions,
            suggestion=suggestions[0].description if suggestions else DEFAULT_SUGGESTION,
        )

    @staticmethod
    def get_overlap_type(new_event: CalendarEvent, conflicting_events: List[CalendarEvent]) -> OverlapType:
        """
        Classify the overlap; the first conflicting event that is a full
        containment in either direction decides.
        """
        for existing in conflicting_events:
            if new_event.start_date >= existing.start_date and new_event.end_date <= existing.end_date:
                return "complete"
            if new_event.start_date <= existing.start_date and new_event.end_date >= existing.end_date:
                return "surrounding"
        return "partial"

    @staticmethod
    def calculate_conflict_duration(new_event: CalendarEvent, conflicting_events: List[CalendarEvent]) -> int:
        """
        Total overlap in minutes, summed per conflicting event.

        Overlaps between the conflicting events themselves are not
        deduplicated, so the same minute may be counted more than once.
        """
        total = 0.0
        for existing in conflicting_events:
            overlap_start = max(new_event.start_date, existing.start_date)
            overlap_end = min(new_event.end_date, existing.end_date)
            if overlap_end > overlap_start:
                total += minutes_between(overlap_start, overlap_end)
        return round_half_up(total)

    def calculate_conflict_percentage(self, new_event: CalendarEvent, conflicting_events: List[CalendarEvent]) -> int:
        """Conflict duration relative to the new event's own duration, capped at 100"""
        event_duration = new_event.duration_minutes
        if event_duration <= 0:
            raise ValueError(f'Event "{new_event.title}" has a non-positive duration')
        conflict_duration = self.calculate_conflict_duration(new_event, conflicting_events)
        return min(100, round_half_up(conflict_duration * 100 / event_duration))

    @staticmethod
    def calculate_severity(conflict_percentage: int, conflict_count: int) -> Severity:
        if conflict_percentage >= 80 or conflict_count >= 3:
            return "high"
        if conflict_percentage >= 40 or conflict_count >= 2:
            return "medium"
        return "low"

    def generate_conflict_suggestions(
        self,
        new_event: CalendarEvent,
        conflicting_events: List[CalendarEvent]
    ) -> List[ConflictSuggestion]:
        """
        Build remediation suggestions in a fixed order (earlier slot, later
        slot, shorter event, next day, split) and keep the first three.
        """
        suggestions = []
        duration = new_event.duration_minutes
        tz = self.tz

        earlier_slot = self.find_earlier_time_slot(new_event, conflicting_events, duration)
        if earlier_slot:
            suggestions.append(ConflictSuggestion(
                type="time_adjustment",
                description=f"Move to {earlier_slot.astimezone(tz):%H:%M} (earlier time)",
                suggested_time=earlier_slot,
                suggested_end_time=earlier_slot + timedelta(minutes=duration),
                reason="Available time slot found earlier in the day",
            ))

        later_slot = self.find_later_time_slot(new_event, conflicting_events, duration)
        if later_slot:
            suggestions.append(ConflictSuggestion(
                type="time_adjustment",
                description=f"Move to {later_slot.astimezone(tz):%H:%M} (later time)",
                suggested_time=later_slot,
                suggested_end_time=later_slot + timedelta(minutes=duration),
                reason="Available time slot found later in the day",
            ))

        if duration > 60:
            shorter = max(30, duration - 30)
            suggestions.append(ConflictSuggestion(
                type="duration_change",
                description=f"Reduce duration to {format_minutes(shorter)} minutes",
                suggested_time=new_event.start_date,
                suggested_end_time=new_event.start_date + timedelta(minutes=shorter),
                reason="Shorter duration may reduce conflicts",
            ))

        next_day = self.find_next_day_slot(new_event)
        suggestions.append(ConflictSuggestion(
            type="date_change",
            description=f"Move to {next_day.astimezone(tz):%b %d, %H:%M}",
            suggested_time=next_day,
            suggested_end_time=next_day + timedelta(minutes=duration),
            reason="Next available day with free time slot",
        ))

        if duration > 120:
            suggestions.append(ConflictSuggestion(
                type="split_event",
                description=f"Split into two {format_minutes(duration / 2)}-minute sessions",
                reason="Smaller time blocks may be easier to schedule",
            ))

        return suggestions[:MAX_SUGGESTIONS]

    def _work_bounds(self, event: CalendarEvent):
        """Working-hours window on the event's local day"""
        local_start = event.start_date.astimezone(self.tz)
        day_start = local_start.replace(hour=0, minute=0, second=0, microsecond=0)
        work_start = day_start + timedelta(hours=self.working_hours.start)
        work_end = day_start + timedelta(hours=self.working_hours.end)
        return work_start, work_end

    def find_earlier_time_slot(
        self,
        new_event: CalendarEvent,
        conflicting_events: List[CalendarEvent],
        duration_minutes: float
    ) -> Optional[datetime]:
        """
        Scan forward from the start of the working day for a free gap, stopping
        at the first conflicting event.
        """
        work_start, work_end = self._work_bounds(new_event)
        duration = timedelta(minutes=duration_minutes)
        day_events = sorted([*conflicting_events, new_event], key=lambda event: event.start_date)

        for i, event in enumerate(day_events):
            gap_end = event.start_date - self.buffer
            gap_start = work_start if i == 0 else day_events[i - 1].end_date + self.buffer
            if gap_end - gap_start >= duration and gap_start >= work_start and gap_start + duration <= work_end:
                return gap_start
            if event is not new_event:
                break
        return None

    def find_later_time_slot(
        self,
        new_event: CalendarEvent,
        conflicting_events: List[CalendarEvent],
        duration_minutes: float
    ) -> Optional[datetime]:
        """
        Scan backward from the end of the working day for a free gap, stopping
        at the last conflicting event.
        """
        work_start, work_end = self._work_bounds(new_event)
        duration = timedelta(minutes=duration_minutes)
        day_events = sorted([*conflicting_events, new_event], key=lambda event: event.start_date)
        last = len(day_events) - 1

        for i in range(last, -1, -1):
            event = day_events[i]
            gap_start = event.end_date + self.buffer
            gap_end = work_end if i == last else day_events[i + 1].start_date - self.buffer
            if gap_end - gap_start >= duration and gap_start >= work_start and gap_start + duration <= work_end:
                return gap_start
            if event is not new_event:
                break
        return None

    def find_next_day_slot(self, new_event: CalendarEvent) -> datetime:
        """Same local time on the following day; not re-checked for conflicts"""
        return new_event.start_date.astimezone(self.tz) + timedelta(days=1)

    def suggest_alternative_times(
        self,
        event: CalendarEvent,
        existing_events: List[CalendarEvent],
        count: int = 3
    ) -> List[ScoredTimeSlot]:
        """
        Rank conflict-free slots on the event's day, best first.

        Candidates start every 30 minutes within working hours and keep the
        event's duration.
        """
        try:
            duration = timedelta(minutes=event.duration_minutes)
            work_start, work_end = self._work_bounds(event)
            if self.options.ignore_weekends and work_start.weekday() >= 5:
                return []

            candidates = []
            candidate_start = work_start
            while candidate_start < work_end:
                candidate_end = candidate_start + duration
                if candidate_end <= work_end:
                    candidate = event.model_copy(update={"start_date": candidate_start, "end_date": candidate_end})
                    if not self.find_conflicts_for_event(candidate, existing_events):
                        candidates.append(ScoredTimeSlot(
                            start=candidate_start,
                            end=candidate_end,
                            duration=event.duration_minutes,
                            score=self.calculate_time_slot_score(candidate_start.hour, candidate_start.minute),
                            reason=self.get_time_slot_reason(candidate_start.hour),
                        ))
                candidate_start += timedelta(minutes=30)

            # stable sort keeps earlier slots first among equal scores
            return sorted(candidates, key=lambda slot: slot.score, reverse=True)[:count]
        except Exception as e:
            raise create_calendar_error("suggestAlternativeTimes", e) from e

    @staticmethod
    def calculate_time_slot_score(hour: int, minute: int) -> int:
        """Higher is better: mid-morning and mid-afternoon on round times"""
        score = 100
        if 9 <= hour <= 11:
            score += 20
        if 14 <= hour <= 16:
            score += 15
        if hour >= 17:
            score -= 10
        if minute == 0:
            score += 10
        if minute == 30:
            score += 5
        if hour < 9:
            score -= 20
        if hour > 17:
            score -= 15
        return score

    @staticmethod
    def get_time_slot_reason(hour: int) -> str:
        if 9 <= hour <= 11:
            return "Good morning time slot"
        if 14 <= hour <= 16:
            return "Good afternoon time slot"
        if hour >= 17:
            return "Late afternoon slot"
        return "Available time slot"

    @staticmethod
    def calculate_event_overlap(first: CalendarEvent, second: CalendarEvent) -> float:
        """Percentage of the first event covered by the second"""
        overlap_start = max(first.start_date, second.start_date)
        overlap_end = min(first.end_date, second.end_date)
        if overlap_end <= overlap_start:
            return 0.0
        return minutes_between(overlap_start, overlap_end) / first.duration_minutes * 100


# Default instance
conflict_detector = ConflictDetector()


def detect_conflicts(
    new_events: List[CalendarEvent],
    existing_events: List[CalendarEvent],
    options: Optional[ConflictDetectionOptions] = None,
    **overrides: Any
) -> List[DetailedConflict]:
    """Quick conflict detection function"""
    detector = ConflictDetector(options, **overrides) if (options or overrides) else conflict_detector
    return detector.detect_scheduling_conflicts(new_events, existing_events)
