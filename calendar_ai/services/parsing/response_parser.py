import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, List, NamedTuple, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from calendar_ai.core.config import settings
from calendar_ai.core.errors import create_ai_error
from calendar_ai.models.calendar import (
    AIEventsResponse,
    CalendarEvent,
    ParsedResponse,
    ParsingMethod,
    RawEventFromAI,
)
from calendar_ai.services.parsing.event_validator import validate_events
from calendar_ai.services.parsing.json_repair import repair_with_report
from calendar_ai.services.parsing.line_parser import partial_to_fields, scan_partial_events
from calendar_ai.utils.date_utils import is_valid_timezone, parse_iso_datetime, resolve_timezone


_OPENER = re.compile(r"[{\[]")
_CLOSERS = {"{": "}", "[": "]"}

# Room for repairs, next-day suggestions and local-time rendering
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc) + timedelta(days=2)
_LATEST = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=2)

UNTITLED_EVENT = "Untitled Event"


class StrategyResult(NamedTuple):
    """Outcome of one parsing strategy"""
    success: bool
    events: List[CalendarEvent]
    warnings: Tuple[str, ...] = ()


_FAILED = StrategyResult(False, [])


class AIResponseParser:
    """
    Turns free-form model output into canonical calendar events.

    Three strategies are tried in order, first success wins:
    direct JSON (after repair), JSON extracted from mixed content, and a
    line-by-line "label: value" heuristic. Malformed input never raises;
    it only degrades the strategy and adds warnings.
    """

    def __init__(
        self,
        fallback_timezone: Optional[str] = None,
        default_duration_hours: Optional[float] = None,
        max_events: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the parser.

        Args:
            fallback_timezone: Zone for events that carry none (default from settings)
            default_duration_hours: Length given to events without a usable end
            max_events: Largest number of events accepted from one response
            clock: Returns "now"; defaults to the current time in the fallback zone
        """
        self.fallback_timezone = (
            fallback_timezone if is_valid_timezone(fallback_timezone) else settings.DEFAULT_TIMEZONE
        )
        self.default_duration_hours = (
            settings.DEFAULT_EVENT_DURATION_HOURS if default_duration_hours is None else default_duration_hours
        )
        self.max_events = max_events or settings.MAX_AI_EVENTS
        self._clock = clock
        self._strategies: Tuple[Tuple[ParsingMethod, Callable[[str], StrategyResult], Optional[str]], ...] = (
            ("json", self._parse_as_json, "Direct JSON parsing failed, trying structured extraction"),
            ("structured", self._extract_structured_data, "Structured extraction failed, using fallback parsing"),
            ("fallback", self._fallback_text_parsing, None),
        )

    @property
    def default_duration(self) -> timedelta:
        return timedelta(hours=self.default_duration_hours)

    def _now(self) -> datetime:
        tz = resolve_timezone(self.fallback_timezone)
        if self._clock:
            return self._clock().astimezone(tz)
        return datetime.now(tz)

    def parse_ai_response(self, response: str) -> ParsedResponse:
        """
        Parse a model response with multiple fallback strategies.

        Args:
            response: Raw model output

        Returns:
            ParsedResponse with validated events, the winning strategy and warnings

        Raises:
            AIProcessingError: Only for failures unrelated to the shape of the input
        """
        try:
            warnings: List[str] = []
            events: List[CalendarEvent] = []
            parsing_method: ParsingMethod = "fallback"

            for method, attempt, fallback_warning in self._strategies:
                result = attempt(response)
                warnings.extend(result.warnings)
                if result.success:
                    events = result.events
                    parsing_method = method
                    break
                if fallback_warning:
                    warnings.append(fallback_warning)

            outcome = validate_events(events, self.default_duration_hours)
            warnings.extend(outcome.warnings)

            logger.debug(
                f"Parsed {len(outcome.events)} events using '{parsing_method}' with {len(warnings)} warnings"
            )
            return ParsedResponse(
                events=outcome.events,
                raw_response=response,
                parsing_method=parsing_method,
                warnings=warnings,
            )
        except Exception as e:
            raise create_ai_error(e) from e

    def _parse_as_json(self, response: str) -> StrategyResult:
        """Repair the response and parse it as a JSON event payload"""
        repaired = repair_with_report(response)
        try:
            parsed = json.loads(repaired.text)
        except (ValueError, RecursionError) as e:
            logger.debug(f"JSON parsing failed: {e}")
            return _FAILED

        raw_events = self._normalize_payload(parsed)
        if raw_events is None:
            return _FAILED

        try:
            validated = AIEventsResponse.model_validate({"events": raw_events})
        except ValidationError as e:
            logger.debug(f"JSON validation failed: {e.error_count()} errors")
            return _FAILED

        if len(validated.events) > self.max_events:
            logger.debug(f"Response carries {len(validated.events)} events, limit is {self.max_events}")
            return _FAILED

        if repaired.truncated and not validated.events:
            # nothing survived truncation recovery; let the next strategy try
            return _FAILED

        return self.convert_raw_events(validated.events)

    @staticmethod
    def _normalize_payload(parsed: Any) -> Optional[List[Any]]:
        """Accept a top-level array, an {"events": [...]} object or one bare event"""
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            if "events" in parsed:
                return parsed["events"] if isinstance(parsed["events"], list) else None
            return [parsed]
        return None

    def _extract_structured_data(self, response: str) -> StrategyResult:
        """Try every bracket/brace-delimited fragment until one yields events"""
        for candidate in json_candidates(response):
            result = self._parse_as_json(candidate)
            if result.success and result.events:
                return result
        return _FAILED

    def _fallback_text_parsing(self, response: str) -> StrategyResult:
        """Line heuristics; always succeeds, possibly with no events"""
        tz = resolve_timezone(self.fallback_timezone)
        events = []
        warnings = []
        for partial in scan_partial_events(response):
            try:
                fields = partial_to_fields(partial, tz, self.default_duration, self._now)
                event = CalendarEvent(timezone=self.fallback_timezone, **fields)
                _check_representable(event)
            except (ValueError, OverflowError) as e:
                logger.warning(f"Skipping extracted event '{partial.title}': {e}")
                warnings.append(f'Skipped event "{partial.title}": {e}')
                continue
            events.append(event)

        if events:
            warnings.append(f"Extracted {len(events)} events using fallback text parsing")
        else:
            warnings.append("No events could be extracted from the AI response")
        return StrategyResult(True, events, tuple(warnings))

    def convert_raw_events(self, raw_events: List[RawEventFromAI]) -> StrategyResult:
        """
        Convert schema-checked raw events to canonical events.

        Naive timestamps are read in the event's own timezone. The end time is
        left as given; the validator repairs inverted ranges and reports them.
        An event whose times cannot be represented is skipped with a warning.
        """
        events = []
        warnings = []
        for raw in raw_events:
            try:
                event = self._convert_raw_event(raw)
            except (ValueError, OverflowError) as e:
                title = raw.title or UNTITLED_EVENT
                logger.warning(f"Skipping event '{title}': {e}")
                warnings.append(f'Skipped event "{title}": {e}')
                continue
            events.append(event)
        return StrategyResult(True, events, tuple(warnings))

    def _convert_raw_event(self, raw: RawEventFromAI) -> CalendarEvent:
        timezone_name = raw.timezone if is_valid_timezone(raw.timezone) else self.fallback_timezone
        tz = resolve_timezone(timezone_name)
        start = parse_iso_datetime(raw.start, tz) if raw.start else self._now()
        end = parse_iso_datetime(raw.end, tz) if raw.end else start + self.default_duration
        event = CalendarEvent(
            title=raw.title or UNTITLED_EVENT,
            start_date=start,
            end_date=end,
            timezone=timezone_name,
            description=raw.description,
            location=raw.location,
        )
        _check_representable(event)
        return event


def _check_representable(event: CalendarEvent) -> None:
    """
    Reject events too close to the limits of datetime's range.

    Raises:
        OverflowError: If the event sits at the edge of datetime's range
    """
    for moment in (event.start_date, event.end_date):
        if not _EARLIEST <= moment.astimezone(timezone.utc) <= _LATEST:
            raise OverflowError(f"{moment.isoformat()} is out of range")


def json_candidates(response: str) -> Iterator[str]:
    """
    Brace- or bracket-delimited fragments, left to right and without overlap.

    Each fragment runs from an opener to the first matching closer after it.
    Once a closer is known to be missing from the rest of the text, openers
    of that kind are skipped without rescanning.
    """
    missing_closers = set()
    position = 0
    while True:
        match = _OPENER.search(response, position)
        if match is None:
            return
        closer = _CLOSERS[match.group()]
        end = -1 if closer in missing_closers else response.find(closer, match.end())
        if end == -1:
            missing_closers.add(closer)
            position = match.end()
            continue
        yield response[match.start():end + 1]
        position = end + 1


# Default parser instance
ai_response_parser = AIResponseParser()


def parse_ai_response(response: str, **options: Any) -> ParsedResponse:
    """Quick parse function for simple use cases"""
    parser = AIResponseParser(**options) if options else ai_response_parser
    return parser.parse_ai_response(response)
