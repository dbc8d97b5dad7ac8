from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import ValidationError

from calendar_ai.core.config import settings
from calendar_ai.core.errors import map_validation_error
from calendar_ai.models.ai import AIRequest, ConflictCheckRequest, EnhancedAIResponse, ParseRequest
from calendar_ai.models.calendar import (
    CalendarContextOptions,
    CalendarContextSummary,
    CalendarEvent,
    ConflictDetectionOptions,
    DetailedConflict,
    TimeSlot,
    WorkingHours,
)
from calendar_ai.services.agents.calendar_agent import CalendarAgent
from calendar_ai.services.scheduling.calendar_context import CalendarContextReader, calendar_context
from calendar_ai.services.scheduling.conflict_detector import ConflictDetector
from calendar_ai.utils.audit_logger import audit_logger


router = APIRouter()


def get_context_reader() -> CalendarContextReader:
    return calendar_context


def get_calendar_agent(reader: CalendarContextReader = Depends(get_context_reader)) -> CalendarAgent:
    return CalendarAgent(context_reader=reader)


@router.post("/ai", response_model=EnhancedAIResponse)
async def generate_events(
    payload: Dict[str, Any] = Body(...),
    agent: CalendarAgent = Depends(get_calendar_agent)
):
    """
    Generate calendar events from text and/or an image.

    Invalid input is reported as an INVALID_INPUT error (400) rather than a
    generic 422.
    """
    try:
        ai_request = AIRequest.model_validate(payload)
    except ValidationError as e:
        raise map_validation_error(e) from e

    return await agent.process_request(ai_request)


@router.post("/parse", response_model=EnhancedAIResponse)
async def parse_response(
    parse_request: ParseRequest,
    agent: CalendarAgent = Depends(get_calendar_agent)
):
    """Parse a raw model reply and check it for conflicts, without calling the model"""
    request_id = str(uuid4())
    timezone_name = parse_request.timezone or settings.DEFAULT_TIMEZONE
    existing_events: List[CalendarEvent] = []
    warnings: List[str] = []
    if parse_request.include_context:
        options = agent.context_options(parse_request.context_range, timezone_name)
        existing_events, _, warnings = agent.read_context(options, request_id)

    return agent.analyze_response(
        parse_request.raw_response,
        timezone_name=timezone_name,
        existing_events=existing_events,
        request_id=request_id,
        warnings=warnings,
    )


@router.post("/conflicts", response_model=List[DetailedConflict])
async def check_conflicts(
    conflict_request: ConflictCheckRequest,
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """
    Check proposed events against existing ones.

    When the request carries no existing events, the cached calendar is used.
    """
    defaults = ConflictDetectionOptions()
    options = ConflictDetectionOptions(
        buffer_minutes=(
            defaults.buffer_minutes if conflict_request.buffer_minutes is None else conflict_request.buffer_minutes
        ),
        working_hours=WorkingHours(
            start=(
                defaults.working_hours.start
                if conflict_request.working_hours_start is None else conflict_request.working_hours_start
            ),
            end=(
                defaults.working_hours.end
                if conflict_request.working_hours_end is None else conflict_request.working_hours_end
            ),
        ),
        timezone=conflict_request.timezone or defaults.timezone,
    )

    existing = conflict_request.existing_events
    if not existing:
        reader.refresh_cache_if_needed()
        existing = reader.events

    return ConflictDetector(options).detect_scheduling_conflicts(conflict_request.new_events, existing)


@router.post("/events/sync", status_code=status.HTTP_200_OK)
async def sync_events(
    events: List[CalendarEvent],
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """Replace the cached calendar with the given events"""
    reader.update_events(events)

    audit_logger.log(
        action="calendar_events_synced",
        resource_type="calendar_event",
        status="success",
        details={"count": len(events)},
    )

    return {"status": "synced", "count": len(events)}


@router.get("/events", response_model=List[CalendarEvent])
async def list_events(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    max_events: Optional[int] = Query(None, alias="maxEvents", ge=1),
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """List cached events overlapping a window (default: the next 30 days)"""
    options = CalendarContextOptions(start_date=start_date, end_date=end_date)
    if max_events:
        options = options.model_copy(update={"max_events": max_events})
    return reader.get_events_in_range(options)


@router.get("/context")
async def get_context(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    timezone_name: Optional[str] = Query(None, alias="timezone"),
    include_details: bool = Query(True, alias="includeDetails"),
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """The calendar digest that would be sent to the model"""
    options = CalendarContextOptions(
        start_date=start_date,
        end_date=end_date,
        timezone=timezone_name,
        include_details=include_details,
    )
    return {"context": reader.format_events_for_ai(options)}


@router.get("/slots", response_model=List[TimeSlot])
async def get_available_slots(
    date: Optional[datetime] = Query(None),
    duration_minutes: float = Query(60, alias="durationMinutes", gt=0),
    timezone_name: Optional[str] = Query(None, alias="timezone"),
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """Free slots within working hours on one day (default: today)"""
    return reader.get_available_time_slots(date or datetime.now(timezone.utc), duration_minutes, timezone_name)


@router.get("/summary", response_model=CalendarContextSummary)
async def get_summary(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    timezone_name: Optional[str] = Query(None, alias="timezone"),
    reader: CalendarContextReader = Depends(get_context_reader)
):
    """Busy periods in a window and free slots over the following week"""
    options = CalendarContextOptions(start_date=start_date, end_date=end_date, timezone=timezone_name)
    return reader.get_calendar_summary(options)
