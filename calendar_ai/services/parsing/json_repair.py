"""
Best-effort recovery of a JSON payload from raw model output.

Model responses are often wrapped in Markdown fences, prefixed with prose,
missing commas, or cut off mid-string. Everything here works on plain
strings and never raises for malformed input: the worst case is "[]".
"""

import json
import re
from typing import List, NamedTuple, Optional

from loguru import logger


_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"```$")
_LANGUAGE_TAG = re.compile(r"^json\s*", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_MISSING_COMMA = re.compile(r"([}\]])\s*([{\[])")
_LEADING_PROSE = re.compile(r"^[^\[{]*([\[{])")
_TRAILING_PROSE = re.compile(r"([\]}])[^\]}]*$")
_FLAT_OBJECT = re.compile(r"\{[^{}]*\}")
_NATURAL_BOUNDARY = re.compile(r"[,}\]]")


class RepairResult(NamedTuple):
    """Candidate JSON text and whether truncation recovery had to run"""
    text: str
    truncated: bool


def strip_code_fences(text: str) -> str:
    """Remove ```json ... ``` wrappers and a leading "json" language tag"""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    cleaned = _LANGUAGE_TAG.sub("", cleaned)
    return cleaned.strip()


def _quote_positions(text: str) -> List[int]:
    """Positions of string delimiters, skipping backslash-escaped quotes"""
    positions = []
    in_string = False
    escaped = False
    for i, char in enumerate(text):
        if not in_string and char == '"':
            in_string = True
            positions.append(i)
        elif in_string and char == '"' and not escaped:
            in_string = False
            positions.append(i)
        escaped = char == "\\" and not escaped
    return positions


def close_unterminated_string(text: str) -> str:
    """
    Close a dangling string literal.

    The closing quote goes right before the first comma, brace or bracket
    following the last unmatched quote, or at the very end when there is none.
    """
    positions = _quote_positions(text)
    if len(positions) % 2 == 0:
        return text

    last_quote = positions[-1]
    match = _NATURAL_BOUNDARY.search(text, last_quote + 1)
    if match:
        return text[:match.start()] + '"' + text[match.start():]
    return text + '"'


def repair_json(text: str) -> str:
    """Fix common syntax defects without checking the result parses"""
    repaired = close_unterminated_string(text)
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    repaired = _MISSING_COMMA.sub(r"\1,\2", repaired)
    repaired = _LEADING_PROSE.sub(r"\1", repaired, count=1)
    repaired = _TRAILING_PROSE.sub(r"\1", repaired, count=1)
    return repaired


def is_complete_json(text: str) -> bool:
    """
    True when every brace and bracket is balanced and no string is left open.

    Only structure is checked; a complete string may still fail to parse.
    """
    trimmed = text.strip()
    if not trimmed.startswith(("[", "{")):
        return False

    brace_count = 0
    bracket_count = 0
    in_string = False
    escaped = False
    for char in trimmed:
        if not in_string:
            if char == "{":
                brace_count += 1
            elif char == "}":
                brace_count -= 1
            elif char == "[":
                bracket_count += 1
            elif char == "]":
                bracket_count -= 1
            elif char == '"':
                in_string = True
        elif char == '"' and not escaped:
            in_string = False
        escaped = char == "\\" and not escaped

    return brace_count == 0 and bracket_count == 0 and not in_string


def _split_array_elements(text: str) -> List[str]:
    """
    Split the body of a (possibly truncated) array into top-level elements.

    Only elements that close cleanly are returned; a dangling partial element
    at the end is dropped.
    """
    elements = []
    depth = 0
    current = []
    in_string = False
    escaped = False

    for char in text[1:]:  # skip the opening '['
        if not in_string:
            if char in "{[":
                depth += 1
            elif char in "}]":
                depth -= 1
            elif char == '"':
                in_string = True
            elif char == "," and depth == 0:
                element = "".join(current).strip()
                if element:
                    elements.append(element)
                current = []
                continue
        elif char == '"' and not escaped:
            in_string = False

        escaped = char == "\\" and not escaped
        if depth < 0:
            # closing bracket of the array itself
            break
        current.append(char)

        if depth == 0 and not in_string and char == "}":
            elements.append("".join(current).strip())
            current = []

    return elements


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (ValueError, RecursionError):
        return False
    return True


def extract_largest_valid_json(text: str) -> str:
    """
    Salvage what is left of a truncated payload.

    Tries, in order: the longest prefix of well-formed array elements, every
    flat object found anywhere in the text, and finally an empty array.
    """
    trimmed = text.strip()

    if trimmed.startswith("["):
        prefix = []
        for element in _split_array_elements(trimmed):
            if not _is_valid_json(element):
                break
            prefix.append(element)
        if prefix:
            return "[" + ",".join(prefix) + "]"

    objects = [obj for obj in _FLAT_OBJECT.findall(trimmed) if _is_valid_json(obj)]
    if objects:
        return "[" + ",".join(objects) + "]"

    return "[]"


def repair_with_report(raw_text: Optional[str]) -> RepairResult:
    """Run the full repair pipeline and report whether truncation recovery ran"""
    if not raw_text:
        return RepairResult("[]", True)

    candidate = repair_json(strip_code_fences(raw_text))
    if is_complete_json(candidate):
        return RepairResult(candidate, False)

    logger.warning("JSON appears to be truncated or incomplete")
    return RepairResult(extract_largest_valid_json(candidate), True)


def repair(raw_text: Optional[str]) -> str:
    """
    Extract a best-effort JSON text from raw model output.

    Args:
        raw_text: Model output, possibly fenced, prefixed with prose or truncated

    Returns:
        Candidate JSON text; "[]" when nothing is recoverable
    """
    return repair_with_report(raw_text).text
