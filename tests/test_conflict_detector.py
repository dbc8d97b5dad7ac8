"""
Tests for scheduling conflict detection
"""
from datetime import datetime, timezone

import pytest

from calendar_ai.core.errors import CalendarContextError
from calendar_ai.services.scheduling.conflict_detector import SEVERITY_RANK, ConflictDetector, detect_conflicts


@pytest.fixture
def detector():
    return ConflictDetector(buffer_minutes=0, timezone="UTC")


class TestOverlap:
    """Tests for the overlap test and its classification"""

    def test_partial_overlap_without_buffer(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        existing = event_factory("Existing", "2025-06-01T10:30:00", "2025-06-01T11:30:00")

        conflicts = detector.detect_scheduling_conflicts([new], [existing])

        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.overlap_type == "partial"
        assert conflict.conflict_duration_minutes == 30
        assert conflict.conflict_percentage == 50
        assert conflict.severity == "medium"
        assert conflict.conflicting_events == [existing]

    def test_new_event_inside_existing(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:15:00", "2025-06-01T10:45:00")
        existing = event_factory("Block", "2025-06-01T10:00:00", "2025-06-01T11:00:00")

        conflict = detector.detect_scheduling_conflicts([new], [existing])[0]

        assert conflict.overlap_type == "complete"
        assert conflict.conflict_percentage == 100
        assert conflict.severity == "high"

    def test_new_event_surrounds_existing(self, detector, event_factory):
        new = event_factory("Workshop", "2025-06-01T09:00:00", "2025-06-01T12:00:00")
        existing = event_factory("Call", "2025-06-01T10:00:00", "2025-06-01T10:30:00")

        assert detector.detect_scheduling_conflicts([new], [existing])[0].overlap_type == "surrounding"

    def test_first_containing_event_decides(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        inner = event_factory("Inner", "2025-06-01T10:15:00", "2025-06-01T10:30:00")
        outer = event_factory("Outer", "2025-06-01T09:00:00", "2025-06-01T12:00:00")

        assert detector.get_overlap_type(new, [inner, outer]) == "surrounding"
        assert detector.get_overlap_type(new, [outer, inner]) == "complete"

    def test_no_conflict_no_record(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        later = event_factory("Later", "2025-06-01T11:00:00", "2025-06-01T12:00:00")

        assert detector.detect_scheduling_conflicts([new], [later]) == []

    def test_buffer_turns_adjacent_events_into_conflicts(self, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        next_event = event_factory("Next", "2025-06-01T11:10:00", "2025-06-01T12:00:00")

        assert ConflictDetector(buffer_minutes=15).events_conflict(new, next_event)
        assert not ConflictDetector(buffer_minutes=0).events_conflict(new, next_event)

    def test_overlap_is_symmetric(self, event_factory):
        events = [
            event_factory("A", "2025-06-01T09:00:00", "2025-06-01T10:00:00"),
            event_factory("B", "2025-06-01T09:30:00", "2025-06-01T11:00:00"),
            event_factory("C", "2025-06-01T10:10:00", "2025-06-01T10:20:00"),
            event_factory("D", "2025-06-01T13:00:00", "2025-06-01T14:00:00"),
        ]
        for buffer_minutes in (0, 5, 15, 60):
            detector = ConflictDetector(buffer_minutes=buffer_minutes)
            for first in events:
                for second in events:
                    assert detector.events_conflict(first, second) == detector.events_conflict(second, first)


class TestMetrics:
    """Tests for duration, percentage and severity"""

    def test_duration_double_counts_and_percentage_is_capped(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        first = event_factory("First", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        second = event_factory("Second", "2025-06-01T09:30:00", "2025-06-01T11:30:00")

        conflict = detector.detect_scheduling_conflicts([new], [first, second])[0]

        assert conflict.conflict_duration_minutes == 120
        assert conflict.conflict_percentage == 100

    def test_halves_round_up(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T10:40:00")
        one_minute = event_factory("Tail", "2025-06-01T10:39:00", "2025-06-01T11:00:00")
        half_minute = event_factory("Sliver", "2025-06-01T10:39:30", "2025-06-01T11:00:00")

        assert detector.calculate_conflict_percentage(new, [one_minute]) == 3
        assert detector.calculate_conflict_duration(new, [half_minute]) == 1

    @pytest.mark.parametrize("percentage,count,severity", [
        (10, 1, "low"),
        (39, 1, "low"),
        (40, 1, "medium"),
        (10, 2, "medium"),
        (79, 2, "medium"),
        (80, 1, "high"),
        (5, 3, "high"),
    ])
    def test_severity(self, percentage, count, severity):
        assert ConflictDetector.calculate_severity(percentage, count) == severity

    @pytest.mark.parametrize("count", [1, 2, 3, 4])
    def test_severity_is_monotonic_in_percentage(self, count):
        ranks = [SEVERITY_RANK[ConflictDetector.calculate_severity(p, count)] for p in range(0, 101)]
        assert ranks == sorted(ranks)

    def test_event_overlap_percentage(self, event_factory):
        first = event_factory("A", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        second = event_factory("B", "2025-06-01T10:30:00", "2025-06-01T11:30:00")
        apart = event_factory("C", "2025-06-01T12:00:00", "2025-06-01T13:00:00")

        assert ConflictDetector.calculate_event_overlap(first, second) == 50.0
        assert ConflictDetector.calculate_event_overlap(first, apart) == 0.0


class TestSuggestions:
    """Tests for conflict suggestions"""

    def test_short_event_suggestions(self, detector, event_factory):
        new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
        existing = event_factory("Existing", "2025-06-01T10:30:00", "2025-06-01T11:30:00")

        conflict = detector.detect_scheduling_conflicts([new], [existing])[0]

        assert [s.description for s in conflict.suggestions] == [
            "Move to 09:00 (earlier time)",
            "Move to 11:30 (later time)",
            "Move to Jun 02, 10:00",
        ]
        assert conflict.suggestion == "Move to 09:00 (earlier time)"
        assert conflict.suggestions[0].suggested_end_time == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)

    def test_long_event_suggestions(self, detector, event_factory):
        new = event_factory("Offsite", "2025-06-01T10:00:00", "2025-06-01T13:00:00")
        existing = event_factory("Lunch", "2025-06-01T12:00:00", "2025-06-01T14:00:00")

        suggestions = detector.detect_scheduling_conflicts([new], [existing])[0].suggestions

        assert [s.type for s in suggestions] == ["time_adjustment", "duration_change", "date_change"]
        assert suggestions[0].description == "Move to 14:00 (later time)"
        assert suggestions[1].description == "Reduce duration to 150 minutes"

    def test_split_is_offered_for_long_events(self, detector, event_factory):
        new = event_factory("Offsite", "2025-06-01T08:00:00", "2025-06-01T17:00:00")
        existing = event_factory("Lunch", "2025-06-01T12:00:00", "2025-06-01T13:00:00")

        suggestions = detector.generate_conflict_suggestions(new, [existing])
        full = [s.type for s in suggestions]

        assert full == ["duration_change", "date_change", "split_event"]
        assert suggestions[2].description == "Split into two 270-minute sessions"

    def test_alternative_times_are_ranked(self, detector, event_factory):
        event = event_factory("Review", "2025-06-02T10:00:00", "2025-06-02T11:00:00")
        morning = event_factory("Busy", "2025-06-02T09:00:00", "2025-06-02T12:00:00")

        slots = detector.suggest_alternative_times(event, [morning])

        assert [slot.start.hour for slot in slots] == [14, 15, 16]
        assert slots[0].score == 125
        assert slots[0].reason == "Good afternoon time slot"

    def test_alternative_times_skip_weekends(self, event_factory):
        detector = ConflictDetector(buffer_minutes=0, ignore_weekends=True, timezone="UTC")
        sunday = event_factory("Brunch", "2025-06-01T10:00:00", "2025-06-01T11:00:00")

        assert detector.suggest_alternative_times(sunday, []) == []


class TestFailures:

    def test_internal_failure_is_wrapped(self, detector, event_factory):
        instant = event_factory("Instant", "2025-06-01T10:30:00", "2025-06-01T10:30:00")
        existing = event_factory("Existing", "2025-06-01T10:00:00", "2025-06-01T11:00:00")

        with pytest.raises(CalendarContextError) as exc_info:
            detector.detect_scheduling_conflicts([instant], [existing])

        assert exc_info.value.message.startswith("Calendar context error: detectSchedulingConflicts: ")
        assert exc_info.value.context["operation"] == "detectSchedulingConflicts"
        assert exc_info.value.retryable is True


def test_detect_conflicts_helper(event_factory):
    new = event_factory("New", "2025-06-01T10:00:00", "2025-06-01T11:00:00")
    existing = event_factory("Existing", "2025-06-01T11:05:00", "2025-06-01T12:00:00")

    assert len(detect_conflicts([new], [existing])) == 1
    assert detect_conflicts([new], [existing], buffer_minutes=0) == []
