"""
Pytest configuration and fixtures
"""
import os
import tempfile

# Settings are read when the package is imported, so the environment has to be
# prepared before any calendar_ai import.
os.environ["AUDIT_LOG_PATH"] = os.path.join(tempfile.mkdtemp(prefix="calendar-ai-tests-"), "audit.log")
os.environ["ENVIRONMENT"] = "test"
os.environ["DEFAULT_TIMEZONE"] = "UTC"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timezone

import pytest

from calendar_ai.models.calendar import CalendarEvent


FIXED_NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


def make_event(title: str, start: str, end: str, **extra) -> CalendarEvent:
    """Event with naive ISO times read as UTC"""
    return CalendarEvent(
        title=title,
        start_date=datetime.fromisoformat(start),
        end_date=datetime.fromisoformat(end),
        **extra
    )


@pytest.fixture
def event_factory():
    """Factory for calendar events"""
    return make_event


@pytest.fixture
def fixed_clock():
    """Clock frozen at 2025-06-01 08:00 UTC"""
    return lambda: FIXED_NOW


class FakeMonotonic:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def monotonic_clock():
    return FakeMonotonic()
