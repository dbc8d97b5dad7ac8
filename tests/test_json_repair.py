"""
Tests for JSON repair and truncation recovery
"""
import json

import pytest

from calendar_ai.services.parsing.json_repair import (
    close_unterminated_string,
    extract_largest_valid_json,
    is_complete_json,
    repair,
    repair_with_report,
    strip_code_fences,
)


class TestCleanup:
    """Tests for fence stripping and regex repairs"""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'

    def test_strip_language_tag_without_fence(self):
        assert strip_code_fences('json [1, 2]') == "[1, 2]"

    def test_trailing_comma_removed(self):
        assert json.loads(repair('[{"a": 1,}, ]')) == [{"a": 1}]

    def test_missing_comma_inserted(self):
        assert json.loads(repair('[{"a": 1}{"b": 2}]')) == [{"a": 1}, {"b": 2}]

    def test_surrounding_prose_stripped(self):
        assert repair("Here you go: [1, 2] hope it helps") == "[1, 2]"

    def test_close_string_before_boundary(self):
        assert close_unterminated_string('{"title": "Lunch}') == '{"title": "Lunch"}'

    def test_close_string_at_end(self):
        assert close_unterminated_string('{"title": "Lun') == '{"title": "Lun"'

    def test_escaped_quotes_are_not_delimiters(self):
        text = '{"title": "say \\"hi\\""}'
        assert close_unterminated_string(text) == text


class TestCompleteness:
    """Tests for the structural completeness check"""

    @pytest.mark.parametrize("text,expected", [
        ('{"a": "}"}', True),
        ('[{"a": [1, 2]}]', True),
        ('{"a": 1', False),
        ('[{"a": "open', False),
        ('"just a string"', False),
    ])
    def test_is_complete_json(self, text, expected):
        assert is_complete_json(text) is expected


class TestTruncationRecovery:
    """Tests for salvaging truncated payloads"""

    def test_keeps_complete_array_prefix(self):
        result = repair_with_report('[{"title": "A"}, {"title": "B"}, {"title": "C')
        assert result.truncated is True
        assert json.loads(result.text) == [{"title": "A"}, {"title": "B"}]

    def test_flat_objects_when_no_array(self):
        assert json.loads(extract_largest_valid_json('garbage {"a": 1} more {"b": 2')) == [{"a": 1}]

    def test_nothing_recoverable(self):
        assert repair("no json here at all") == "[]"

    @pytest.mark.parametrize("raw", ["", None])
    def test_empty_input(self, raw):
        assert repair(raw) == "[]"

    def test_complete_input_is_not_flagged(self):
        assert repair_with_report('[{"a": 1}]').truncated is False


class TestIdempotence:
    """Repairing valid JSON twice gives the same text"""

    @pytest.mark.parametrize("text", [
        '[{"title": "Meeting", "start": "2025-06-01T10:00:00"}]',
        '{"events": [{"title": "A"}, {"title": "B"}]}',
        '[]',
        '{"note": "commas, braces {} and brackets [] inside strings"}',
    ])
    def test_repair_is_idempotent(self, text):
        once = repair(text)
        assert repair(once) == once
        assert json.loads(once) == json.loads(text)
