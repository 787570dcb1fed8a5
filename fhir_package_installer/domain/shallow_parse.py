"""
Shallow scanner for JSON objects.

Package resources can be large (deeply nested StructureDefinitions, big
ValueSet expansions) while the index only needs a handful of top-level
scalar fields from each one. ``shallow_parse`` walks the object once and
keeps only top-level strings, numbers, booleans and nulls; arrays and
nested objects are skipped by bracket-depth counting without being built.

Grammar handled::

    object := '{' [ pair (',' pair)* ] '}'
    pair   := string ':' value
    value  := string | number | 'true' | 'false' | 'null' | <skipped array/object>
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from .errors import StructuralScanError

__all__ = ["shallow_parse"]

_WHITESPACE = re.compile(r"\s*")
_STRING = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_NUMBER = re.compile(r"-?[0-9.eE+\-]+")

_LITERALS = (("true", True), ("false", False), ("null", None))


def _skip_whitespace(text: str, pos: int) -> int:
    return _WHITESPACE.match(text, pos).end()


def _read_string(text: str, pos: int) -> tuple[str, int]:
    """Decode the JSON string starting at ``pos`` (which must be a quote)."""
    match = _STRING.match(text, pos)
    if match is None:
        raise StructuralScanError(f"Unterminated string at position {pos}")
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise StructuralScanError(f"Invalid string at position {pos}: {e}") from e
    return value, match.end()


def _read_number(text: str, pos: int) -> tuple[Any, int]:
    match = _NUMBER.match(text, pos)
    raw = match.group(0)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StructuralScanError(f"Invalid number {raw!r} at position {pos}") from e
    return value, match.end()


def _skip_container(text: str, pos: int, end: int) -> int:
    """Skip an array or object starting at ``pos`` and return the index after it."""
    stack = [text[pos]]
    pos += 1
    while pos < end and stack:
        char = text[pos]
        if char == '"':
            match = _STRING.match(text, pos)
            if match is None:
                raise StructuralScanError(f"Unterminated string at position {pos}")
            pos = match.end()
            continue
        if char in "{[":
            stack.append(char)
        elif (char == "}" and stack[-1] == "{") or (char == "]" and stack[-1] == "["):
            stack.pop()
        pos += 1
    return pos


def shallow_parse(text: str) -> Dict[str, Any]:
    """
    Return the top-level scalar members of the JSON object in ``text``.

    Args:
        text: JSON document whose root is an object.

    Returns:
        Mapping of every top-level key whose value is a string, number,
        boolean or null. Keys holding arrays or objects are left out.

    Raises:
        StructuralScanError: If the trimmed text is not delimited by braces,
            a key is not a quoted string, or a key is not followed by ':'.
    """
    if not isinstance(text, str):
        raise TypeError("Input must be a string")

    text = text.strip()
    if not text.startswith("{") or not text.endswith("}"):
        raise StructuralScanError("Input must be a JSON object")

    result: Dict[str, Any] = {}
    end = len(text) - 1  # index of the closing brace
    pos = 1

    while pos < end:
        pos = _skip_whitespace(text, pos)
        if pos >= end:
            break
        if text[pos] != '"':
            raise StructuralScanError(f"Expected key string at position {pos}")
        key, pos = _read_string(text, pos)

        pos = _skip_whitespace(text, pos)
        if pos >= end or text[pos] != ":":
            raise StructuralScanError(f"Expected ':' after key at position {pos}")
        pos = _skip_whitespace(text, pos + 1)

        char = text[pos] if pos < end else ""
        if char == '"':
            result[key], pos = _read_string(text, pos)
        elif char and char in "-0123456789":
            result[key], pos = _read_number(text, pos)
        elif char in ("{", "["):
            pos = _skip_container(text, pos, end)
        else:
            for literal, value in _LITERALS:
                if text.startswith(literal, pos):
                    result[key] = value
                    pos += len(literal)
                    break
            else:
                # Unknown token: skip to the next member.
                while pos < end and text[pos] not in ",}":
                    pos += 1

        pos = _skip_whitespace(text, pos)
        if pos < end and text[pos] == ",":
            pos += 1

    return result
