"""
Tolerant JSON extraction for LLM output.

Models wrap JSON in markdown fences, add chatter around it, or stop
mid-object when they hit the token limit. parse_json_object() tries, in
order: direct parse, fenced block, first balanced object, then closes
a truncated object.
"""
from __future__ import annotations

import json
import re
import logging
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

_FENCE = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')


class JSONParseError(Exception):
    """Raised when no JSON object can be recovered from a response"""
    def __init__(self, message: str, raw_content: str):
        super().__init__(message)
        self.raw_content = raw_content


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _scan(text: str) -> Tuple[Optional[int], bool, list]:
    """
    Walk text from its first '{', tracking strings and open brackets.

    Returns (end index of the balanced object or None, still inside a
    string, stack of unclosed openers).
    """
    stack = []
    in_string = False
    escape_next = False
    start = text.find('{')
    for i in range(start, len(text)):
        char = text[i]
        if escape_next:
            escape_next = False
            continue
        if char == '\\':
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in '{[':
            stack.append(char)
        elif char in '}]' and stack:
            stack.pop()
            if not stack:
                return i, False, []
    return None, in_string, stack


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first complete JSON object found in text."""
    if not text:
        return None
    text = text.strip()

    direct = _loads_object(text)
    if direct is not None:
        return direct

    for block in _FENCE.findall(text):
        parsed = _loads_object(block.strip())
        if parsed is not None:
            return parsed

    if '{' not in text:
        return None
    start = text.find('{')
    end, _, _ = _scan(text)
    if end is not None:
        return _loads_object(text[start:end + 1])
    return None


def repair_truncated_json(text: str) -> Optional[Dict[str, Any]]:
    """Close an object that was cut off mid-stream."""
    if not text or '{' not in text:
        return None
    fragment = text[text.find('{'):].rstrip()
    end, in_string, stack = _scan(fragment)
    if end is not None:
        return _loads_object(fragment[:end + 1])

    if in_string:
        fragment += '"'
    fragment = fragment.rstrip()
    if fragment.endswith(':'):
        fragment += ' null'
    elif fragment.endswith(','):
        fragment = fragment[:-1]

    for opener in reversed(stack):
        fragment += '}' if opener == '{' else ']'

    repaired = _loads_object(fragment)
    if repaired is not None:
        logger.info("Repaired truncated JSON from LLM response")
    return repaired


def parse_json_object(content: str, schema: Optional[Type[T]] = None) -> Dict[str, Any]:
    """
    Parse a JSON object from an LLM response, optionally validating it.

    Raises:
        JSONParseError: If nothing parseable (or schema-valid) is found
    """
    if not content or not content.strip():
        raise JSONParseError("Empty content", content or "")

    parsed = extract_json_object(content) or repair_truncated_json(content)
    if parsed is None:
        raise JSONParseError("No JSON object in response", content)

    if schema is not None:
        try:
            schema.model_validate(parsed)
        except ValidationError as exc:
            raise JSONParseError(f"Response failed validation: {exc.error_count()} errors", content) from exc
    return parsed
