"""
Tests for the multi-strategy AI response parser
"""
import time
from datetime import datetime, timedelta, timezone

import pytest

from calendar_ai.services.parsing.response_parser import AIResponseParser, json_candidates, parse_ai_response


@pytest.fixture
def parser(fixed_clock):
    return AIResponseParser(fallback_timezone="UTC", clock=fixed_clock)


class TestDirectJson:
    """Tests for well-formed and repairable JSON"""

    def test_clean_array(self, parser):
        result = parser.parse_ai_response(
            '[{"title":"Meeting","start":"2025-06-01T10:00:00","end":"2025-06-01T11:00:00"}]'
        )

        assert result.parsing_method == "json"
        assert result.warnings == []
        assert len(result.events) == 1
        event = result.events[0]
        assert event.title == "Meeting"
        assert event.start_date == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        assert event.end_date == datetime(2025, 6, 1, 11, 0, tzinfo=timezone.utc)

    def test_fenced_inverted_range(self, parser):
        result = parser.parse_ai_response(
            '```json\n[{"title":"Call","start":"2025-06-01T09:00:00","end":"2025-06-01T08:00:00"}]\n```'
        )

        assert result.parsing_method == "json"
        assert len(result.events) == 1
        event = result.events[0]
        assert event.end_date == event.start_date + timedelta(hours=1)
        assert result.warnings == ['Event "Call" has invalid time range, adjusted end time']

    def test_events_envelope(self, parser):
        result = parser.parse_ai_response(
            '{"events": [{"title": "A", "start": "2025-06-01T10:00:00"}, {"title": "B", "start": "2025-06-01T12:00:00"}]}'
        )
        assert result.parsing_method == "json"
        assert [event.title for event in result.events] == ["A", "B"]

    def test_single_bare_object(self, parser):
        result = parser.parse_ai_response('{"title": "Dentist", "start": "2025-06-02T15:00:00", "location": null}')

        assert result.parsing_method == "json"
        event = result.events[0]
        assert event.location == ""
        assert event.end_date - event.start_date == timedelta(hours=1)

    def test_naive_times_use_event_timezone(self, parser):
        result = parser.parse_ai_response(
            '[{"title": "Museo", "start": "2025-06-01T09:00:00", "end": "2025-06-01T10:00:00", "timezone": "Europe/Rome"}]'
        )
        event = result.events[0]

        assert event.timezone == "Europe/Rome"
        assert event.to_serialized()["startDate"] == "2025-06-01T07:00:00.000Z"

    def test_unknown_timezone_falls_back(self, fixed_clock):
        parser = AIResponseParser(fallback_timezone="America/New_York", clock=fixed_clock)
        result = parser.parse_ai_response('[{"title": "X", "start": "2025-06-01T09:00:00", "timezone": "Mars/Base"}]')
        event = result.events[0]

        assert event.timezone == "America/New_York"
        assert event.to_serialized()["startDate"] == "2025-06-01T13:00:00.000Z"

    def test_missing_fields_get_defaults(self, parser, fixed_clock):
        result = parser.parse_ai_response('[{"title": null}]')
        event = result.events[0]

        assert event.title == "Untitled Event"
        assert event.start_date == fixed_clock()

    def test_too_many_events_is_not_direct_json(self, fixed_clock):
        parser = AIResponseParser(max_events=1, clock=fixed_clock)
        result = parser.parse_ai_response(
            '[{"title": "A", "start": "2025-06-01T10:00:00"}, {"title": "B", "start": "2025-06-01T12:00:00"}]'
        )
        assert result.parsing_method != "json"


class TestFallbackStrategies:
    """Tests for structured extraction and line parsing"""

    def test_structured_extraction_from_mixed_content(self, parser):
        result = parser.parse_ai_response(
            'Sure! Here is the event: {"title": "Gym", "start": "2025-06-01T18:00:00"} and {"oops": }'
        )

        assert result.parsing_method == "structured"
        assert [event.title for event in result.events] == ["Gym"]
        assert "Direct JSON parsing failed, trying structured extraction" in result.warnings

    def test_truncated_object_is_recovered(self, parser):
        result = parser.parse_ai_response('Some text {"title": "Lunch", "start": "2025-06-01T12:00')

        assert result.parsing_method == "fallback"
        assert len(result.events) == 1
        event = result.events[0]
        assert event.title == "Lunch"
        assert event.start_date == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        assert event.end_date == datetime(2025, 6, 1, 13, 0, tzinfo=timezone.utc)
        assert result.warnings == [
            "Direct JSON parsing failed, trying structured extraction",
            "Structured extraction failed, using fallback parsing",
            "Extracted 1 events using fallback text parsing",
        ]

    def test_labelled_text(self, parser):
        result = parser.parse_ai_response(
            "Title: Standup\nStart: 2025-06-02 09:00\nEnd: 2025-06-02 09:15\n"
            "Title: Retro\nStart: 2025-06-02 16:00"
        )

        assert result.parsing_method == "fallback"
        assert [event.title for event in result.events] == ["Standup", "Retro"]
        assert result.events[0].duration_minutes == 15

    def test_prose_gives_no_events(self, parser):
        result = parser.parse_ai_response("I could not find any events in this picture.")

        assert result.parsing_method == "fallback"
        assert result.events == []
        assert result.warnings[-1] == "No events could be extracted from the AI response"


class TestNeverThrows:
    """Malformed model output only degrades the result"""

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "{",
        "[",
        "]]]}}}",
        '{"title": ',
        '{"events": "not a list"}',
        '[{"title": "Bad date", "start": "tomorrow-ish"}]',
        "\x00\xff\xfe binary garbage \x1b[31m",
        "[" * 5000,
        '{"title": "' + "x" * 500 + '"}',
        "```json\n```",
        '[{"title": "X", "start": "9999-12-31T23:30:00"}]',
        "Title: X\nStart: 9999-12-31T23:30:00",
        '[{"title": "Y", "start": "0001-01-01T00:10:00+05:00"}]',
        "word " * 4000,
    ])
    def test_parse_never_raises(self, parser, raw):
        result = parser.parse_ai_response(raw)

        assert result.raw_response == raw
        assert result.parsing_method in ("json", "structured", "fallback")
        for event in result.events:
            assert event.end_date > event.start_date
            assert event.title.strip()

    def test_module_level_helper(self):
        result = parse_ai_response('[{"title": "Meeting", "start": "2025-06-01T10:00:00Z"}]', fallback_timezone="UTC")
        assert result.events[0].start_date == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)


class TestEdgeDates:
    """Events with unusual or unrepresentable timestamps"""

    def test_out_of_range_json_event_is_skipped(self, parser):
        result = parser.parse_ai_response(
            '[{"title": "X", "start": "9999-12-31T23:30:00"},'
            ' {"title": "Ok", "start": "2025-06-01T10:00:00"}]'
        )

        assert result.parsing_method == "json"
        assert [event.title for event in result.events] == ["Ok"]
        assert any(warning.startswith('Skipped event "X"') for warning in result.warnings)

    def test_out_of_range_text_event_is_skipped(self, parser):
        result = parser.parse_ai_response(
            "Title: X\nStart: 9999-12-31T23:30:00\nTitle: Ok\nStart: 2025-06-01 10:00"
        )

        assert result.parsing_method == "fallback"
        assert [event.title for event in result.events] == ["Ok"]
        assert any(warning.startswith('Skipped event "X"') for warning in result.warnings)
        assert "Extracted 1 events using fallback text parsing" in result.warnings

    def test_basic_format_offset(self, parser):
        result = parser.parse_ai_response('[{"title": "Standup", "start": "2025-06-01T10:00:00+0530"}]')

        assert result.parsing_method == "json"
        assert result.events[0].start_date == datetime(2025, 6, 1, 4, 30, tzinfo=timezone.utc)


class TestJsonCandidates:

    def test_fragments_in_order(self):
        text = 'a {"x": 1} b [2, 3] c {"unterminated": '
        assert list(json_candidates(text)) == ['{"x": 1}', "[2, 3]"]

    def test_first_closer_ends_a_fragment(self):
        assert list(json_candidates('{"a": {"b": 1}}')) == ['{"a": {"b": 1}']

    def test_unclosed_openers_are_cheap(self):
        started = time.perf_counter()
        assert list(json_candidates("[{" * 50000)) == []
        assert time.perf_counter() - started < 1.0
