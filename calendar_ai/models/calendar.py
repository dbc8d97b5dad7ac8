from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from calendar_ai.core.config import settings
from calendar_ai.utils.date_utils import ensure_aware, parse_iso_datetime, to_iso_z


ParsingMethod = Literal["json", "structured", "fallback"]
OverlapType = Literal["partial", "complete", "surrounding"]
Severity = Literal["low", "medium", "high"]
SuggestionType = Literal["time_adjustment", "date_change", "duration_change", "split_event"]


class CamelModel(BaseModel):
    """Base model using snake_case in Python and camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CalendarEvent(CamelModel):
    """Model representing a canonical calendar event"""
    id: Union[str, int] = Field(default_factory=lambda: str(uuid4()))
    title: str
    start_date: datetime
    end_date: datetime
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)
    color: str = Field(default_factory=lambda: settings.DEFAULT_EVENT_COLOR)
    description: str = ""
    location: str = ""
    attendees: List[str] = Field(default_factory=list)
    organizer: str = ""
    is_all_day: bool = False
    calendar_id: Optional[str] = None

    @field_validator("description", "location", "organizer", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("start_date", "end_date")
    @classmethod
    def _make_aware(cls, v: datetime) -> datetime:
        # Naive instants are taken as UTC
        return ensure_aware(v)

    @field_serializer("start_date", "end_date")
    def _serialize_instant(self, v: datetime) -> str:
        return to_iso_z(v)

    @property
    def duration_minutes(self) -> float:
        return (self.end_date - self.start_date).total_seconds() / 60

    def to_serialized(self) -> Dict[str, Any]:
        """Convert to the JSON wire format (camelCase keys, ISO-8601 instants)"""
        return self.model_dump(mode="json", by_alias=True)


class RawEventFromAI(BaseModel):
    """
    Unvalidated event as produced by the model.

    Every field is optional. location/description may be null and are
    coerced to "". start/end, when present, must be ISO-8601.
    """
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(None, max_length=200)
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None
    location: str = ""
    description: str = ""

    @field_validator("location", "description", mode="before")
    @classmethod
    def _null_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("start", "end", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("start", "end")
    @classmethod
    def _must_be_iso(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_iso_datetime(v)
        return v


class AIEventsResponse(BaseModel):
    """Envelope used to validate a whole model response at once"""
    events: List[RawEventFromAI] = Field(default_factory=list)


class ParsedResponse(CamelModel):
    """Result of parsing one model response"""
    events: List[CalendarEvent] = Field(default_factory=list)
    raw_response: str
    parsing_method: ParsingMethod
    warnings: List[str] = Field(default_factory=list)


class ConflictSuggestion(CamelModel):
    """A proposed way to resolve a scheduling conflict"""
    type: SuggestionType
    description: str
    suggested_time: Optional[datetime] = None
    suggested_end_time: Optional[datetime] = None
    reason: str

    @field_serializer("suggested_time", "suggested_end_time")
    def _serialize_instant(self, v: Optional[datetime]) -> Optional[str]:
        return to_iso_z(v) if v is not None else None


class EventConflict(CamelModel):
    """A new event together with the existing events it overlaps"""
    new_event: CalendarEvent
    conflicting_events: List[CalendarEvent] = Field(..., min_length=1)
    overlap_type: OverlapType
    suggestion: Optional[str] = None


class DetailedConflict(EventConflict):
    """Conflict with overlap metrics, severity and ranked suggestions"""
    conflict_duration_minutes: int
    conflict_percentage: int = Field(..., ge=0, le=100)
    severity: Severity
    suggestions: List[ConflictSuggestion] = Field(default_factory=list)


class WorkingHours(BaseModel):
    start: int = Field(default_factory=lambda: settings.WORKING_HOURS_START, ge=0, le=24)
    end: int = Field(default_factory=lambda: settings.WORKING_HOURS_END, ge=0, le=24)


class ConflictDetectionOptions(CamelModel):
    """Tunables for conflict detection"""
    buffer_minutes: int = Field(default_factory=lambda: settings.CONFLICT_BUFFER_MINUTES, ge=0)
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    ignore_weekends: bool = False
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)


class TimeSlot(CamelModel):
    """Model representing an available time slot"""
    start: datetime
    end: datetime
    duration: float  # in minutes

    @field_serializer("start", "end")
    def _serialize_instant(self, v: datetime) -> str:
        return to_iso_z(v)


class ScoredTimeSlot(TimeSlot):
    score: int
    reason: str


class BusyPeriod(CamelModel):
    start: datetime
    end: datetime
    title: str

    @field_serializer("start", "end")
    def _serialize_instant(self, v: datetime) -> str:
        return to_iso_z(v)


class CalendarContextOptions(CamelModel):
    """Window of the calendar to read; unset bounds default to now .. now + N days"""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    timezone: Optional[str] = None
    include_details: bool = True
    max_events: int = Field(default_factory=lambda: settings.CONTEXT_MAX_EVENTS, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def _make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None


class CalendarContextSummary(CamelModel):
    total_events: int
    busy_periods: List[BusyPeriod] = Field(default_factory=list)
    available_slots: List[TimeSlot] = Field(default_factory=list)
    timezone: str
    range_start: datetime
    range_end: datetime

    @field_serializer("range_start", "range_end")
    def _serialize_instant(self, v: datetime) -> str:
        return to_iso_z(v)
