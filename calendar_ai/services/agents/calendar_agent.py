import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from langchain_core.messages import BaseMessage, HumanMessage
from loguru import logger

from calendar_ai.core.errors import AIError, CalendarContextError, create_ai_error
from calendar_ai.models.ai import AICalendarContext, AIConflictInfo, AIRequest, AIResponseMetadata, DateRange, EnhancedAIResponse
from calendar_ai.models.calendar import CalendarContextOptions, CalendarEvent, ConflictDetectionOptions
from calendar_ai.services.llm.gemini_provider import generate_text as gemini_generate_text
from calendar_ai.services.llm.prompts import CALENDAR_IMAGE_PROMPT, CALENDAR_TEXT_PROMPT, build_prompt
from calendar_ai.services.parsing.response_parser import AIResponseParser
from calendar_ai.services.scheduling.calendar_context import CalendarContextReader, calendar_context
from calendar_ai.services.scheduling.conflict_detector import DEFAULT_SUGGESTION, ConflictDetector
from calendar_ai.utils.audit_logger import audit_logger
from calendar_ai.utils.date_utils import resolve_timezone


TextGenerator = Callable[[List[BaseMessage]], Awaitable[str]]

CONTEXT_UNAVAILABLE_WARNING = "Calendar context unavailable, events were generated without existing events"


class CalendarAgent:
    """
    Turns text or schedule images into calendar events.

    The pipeline reads the calendar context, prompts the model, parses the
    reply with the multi-strategy parser and checks the result for conflicts
    against the existing events.
    """

    def __init__(
        self,
        context_reader: Optional[CalendarContextReader] = None,
        generate_text: Optional[TextGenerator] = None,
        parser_options: Optional[Dict[str, Any]] = None,
        detector_options: Optional[ConflictDetectionOptions] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the Calendar agent.

        Args:
            context_reader: Source of existing events (default: shared reader)
            generate_text: Async callable sending prompt messages to the model
                           (default: Gemini)
            parser_options: Extra AIResponseParser arguments
            detector_options: Conflict detection tunables
            clock: Returns "now" for prompts and parsing, overridable for tests
        """
        self.context_reader = context_reader or calendar_context
        self._generate_text = generate_text or gemini_generate_text
        self.parser_options = parser_options or {}
        self.detector_options = detector_options
        self._clock = clock

    def _now(self, timezone_name: str) -> datetime:
        tz = resolve_timezone(timezone_name)
        if self._clock:
            return self._clock().astimezone(tz)
        return datetime.now(tz)

    def _parser(self, timezone_name: Optional[str]) -> AIResponseParser:
        options = {"fallback_timezone": timezone_name, "clock": self._clock, **self.parser_options}
        return AIResponseParser(**options)

    def _detector(self, timezone_name: Optional[str]) -> ConflictDetector:
        if self.detector_options is not None:
            return ConflictDetector(self.detector_options)
        if timezone_name:
            return ConflictDetector(timezone=timezone_name)
        return ConflictDetector()

    @staticmethod
    def context_options(context_range: Optional[DateRange], timezone_name: str) -> CalendarContextOptions:
        if context_range is None:
            return CalendarContextOptions(timezone=timezone_name)
        return CalendarContextOptions(
            start_date=context_range.start_date,
            end_date=context_range.end_date,
            timezone=context_range.timezone or timezone_name,
        )

    def read_context(
        self,
        options: CalendarContextOptions,
        request_id: str
    ) -> Tuple[List[CalendarEvent], str, List[str]]:
        """
        Read existing events and their prompt digest.

        A context failure is not fatal: the result is then empty and carries a
        warning.
        """
        try:
            events = self.context_reader.get_events_in_range(options)
            digest = self.context_reader.format_events_for_ai(options)
            return events, digest, []
        except CalendarContextError as e:
            logger.warning(f"Proceeding without calendar context: {e.message}")
            audit_logger.log(
                action="calendar_context_degraded",
                resource_type="calendar_context",
                status="failure",
                request_id=request_id,
                details=e.context,
            )
            return [], "", [CONTEXT_UNAVAILABLE_WARNING]

    def build_messages(self, request: AIRequest, calendar_digest: str = "") -> List[BaseMessage]:
        """Build the prompt messages for a (validated) request"""
        formatted_now = self._now(request.timezone).strftime("%Y-%m-%dT%H:%M:%S")

        if request.image:
            prompt = build_prompt(CALENDAR_IMAGE_PROMPT, formatted_now, request.timezone, request.language, calendar_digest)
            content: List[Any] = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": request.image},
            ]
            if request.text:
                content.append({"type": "text", "text": f"Additional text: {request.text}"})
            return [HumanMessage(content=content)]

        prompt = build_prompt(CALENDAR_TEXT_PROMPT, formatted_now, request.timezone, request.language, calendar_digest)
        return [HumanMessage(content=f"{prompt}\n{request.text}")]

    async def generate_events(self, request: AIRequest, calendar_digest: str = "") -> str:
        """
        Ask the model for events.

        Returns:
            The raw model reply

        Raises:
            AIProcessingError: If the model call fails
        """
        messages = self.build_messages(request, calendar_digest)
        logger.debug(f"Sending {'image' if request.image else 'text'} prompt in language '{request.language}'")
        try:
            return await self._generate_text(messages)
        except AIError:
            raise
        except Exception as e:
            raise create_ai_error(e) from e

    def analyze_response(
        self,
        raw_response: str,
        timezone_name: Optional[str] = None,
        existing_events: Optional[List[CalendarEvent]] = None,
        request_id: Optional[str] = None,
        context_included: bool = False,
        warnings: Optional[List[str]] = None,
        started_at: Optional[float] = None
    ) -> EnhancedAIResponse:
        """
        Parse a model reply and check the events against existing ones.

        Args:
            raw_response: Model output
            timezone_name: Zone for events that carry none
            existing_events: Events to check conflicts against
            request_id: Correlation id (generated when missing)
            context_included: Whether a calendar digest went into the prompt
            warnings: Warnings collected earlier in the pipeline
            started_at: perf_counter() value the processing time is measured from

        Returns:
            Events plus parsing and conflict metadata
        """
        request_id = request_id or str(uuid4())
        started_at = time.perf_counter() if started_at is None else started_at
        existing_events = existing_events or []

        parsed = self._parser(timezone_name).parse_ai_response(raw_response)
        audit_logger.log(
            action="ai_response_parsed",
            resource_type="ai_response",
            status="success",
            request_id=request_id,
            details={
                "parsing_method": parsed.parsing_method,
                "events": len(parsed.events),
                "warnings": len(parsed.warnings),
            },
        )

        conflicts = []
        if parsed.events and existing_events:
            conflicts = self._detector(timezone_name).detect_scheduling_conflicts(parsed.events, existing_events)
            if conflicts:
                audit_logger.log(
                    action="conflicts_detected",
                    resource_type="calendar_event",
                    status="success",
                    request_id=request_id,
                    details={
                        "conflicts": len(conflicts),
                        "severities": [conflict.severity for conflict in conflicts],
                    },
                )

        return EnhancedAIResponse(
            events=parsed.events,
            metadata=AIResponseMetadata(
                request_id=request_id,
                parsing_method=parsed.parsing_method,
                warnings=(warnings or []) + parsed.warnings,
                conflicts=[
                    AIConflictInfo(
                        event_title=conflict.new_event.title,
                        conflict_count=len(conflict.conflicting_events),
                        severity=conflict.severity,
                        suggestion=conflict.suggestion or DEFAULT_SUGGESTION,
                    )
                    for conflict in conflicts
                ],
                calendar_context=AICalendarContext(
                    existing_events=len(existing_events),
                    context_included=context_included,
                ),
                processing_time=round((time.perf_counter() - started_at) * 1000, 2),
            ),
        )

    async def process_request(self, request: AIRequest) -> EnhancedAIResponse:
        """
        Run the full pipeline for one request.

        Args:
            request: Text and/or image plus options

        Returns:
            Generated events with metadata

        Raises:
            AIValidationError, ImageProcessingError: For unusable input
            AIProcessingError: If the model call or parsing fails
        """
        request_id = str(uuid4())
        started_at = time.perf_counter()

        try:
            request = request.normalized()

            existing_events: List[CalendarEvent] = []
            digest = ""
            warnings: List[str] = []
            if request.include_context:
                options = self.context_options(request.context_range, request.timezone)
                existing_events, digest, warnings = self.read_context(options, request_id)

            raw_response = await self.generate_events(request, digest)
            response = self.analyze_response(
                raw_response,
                timezone_name=request.timezone,
                existing_events=existing_events,
                request_id=request_id,
                context_included=bool(digest),
                warnings=warnings,
                started_at=started_at,
            )
        except AIError as e:
            audit_logger.log(
                action="ai_events_generated",
                resource_type="ai_request",
                status="failure",
                request_id=request_id,
                details={"code": e.code.value, "error": e.message},
                duration_ms=round((time.perf_counter() - started_at) * 1000, 2),
            )
            raise

        audit_logger.log(
            action="ai_events_generated",
            resource_type="ai_request",
            status="success",
            request_id=request_id,
            details={
                "events": len(response.events),
                "parsing_method": response.metadata.parsing_method,
                "conflicts": len(response.metadata.conflicts),
                "has_image": bool(request.image),
                "language": request.language,
            },
            duration_ms=response.metadata.processing_time,
        )
        return response
