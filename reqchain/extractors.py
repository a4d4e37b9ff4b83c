"""reqchain extractors - pull property values out of responses for chaining."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Directives look like "<kind>:<selector>":
#   json:data.items[0].id   → walk the JSON body
#   header:ETag             → exact (case-sensitive) response header
# ---------------------------------------------------------------------------

_SEGMENT_RE = re.compile(r"^(\w+)\[(\d+)\]$")


class ExtractionError(Exception):
    """A single directive could not produce a value."""


class ExtractorKind(Enum):
    JSON = "json"
    HEADER = "header"


class ExtractionResult:
    """Outcome of running a batch of directives against one response."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.errors: dict[str, str] = {}


def parse_directive(directive: str) -> tuple[ExtractorKind, str]:
    """Split a directive into (kind, selector).

    Raises ExtractionError for a missing or unknown kind prefix.
    """
    kind, sep, selector = directive.partition(":")
    if sep:
        for member in ExtractorKind:
            if member.value == kind:
                return member, selector
    raise ExtractionError(f"Unknown extractor type in [{directive}]")


# ---------------------------------------------------------------------------
# Body decoding
# ---------------------------------------------------------------------------


_MISSING = object()


class _ParsedBody:
    """Parses a response body once and remembers the outcome."""

    def __init__(self, response):
        self._response = response
        self._value: Any = _MISSING
        self._error: str | None = None

    def get(self) -> Any:
        if self._error is not None:
            raise ExtractionError(self._error)
        if self._value is _MISSING:
            try:
                self._value = parse_json_body(self._response)
            except ExtractionError as e:
                self._error = str(e)
                raise
        return self._value


def parse_json_body(response) -> Any:
    """Decode the response body as UTF-8 text and parse it as JSON."""
    body = response.body
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"Response body is not valid UTF-8: {e}") from e
    try:
        return json.loads(body)
    except (json.JSONDecodeError, TypeError) as e:
        raise ExtractionError(f"Response body is not valid JSON: {e}") from e


# ---------------------------------------------------------------------------
# JSON path extraction
# ---------------------------------------------------------------------------


def _parse_segment(segment: str) -> tuple[str, int | None]:
    """Split "phones[1]" into ("phones", 1); plain segments get no index."""
    m = _SEGMENT_RE.match(segment)
    if m:
        return m.group(1), int(m.group(2))
    return segment, None


def _get_key(current: Any, key: str, segment: str, selector: str) -> Any:
    if not isinstance(current, dict) or key not in current:
        raise ExtractionError(f"Couldn't find [{segment}] of [{selector}] in response body")
    return current[key]


def walk_json(data: Any, selector: str) -> Any:
    """Follow a dotted selector with optional [n] indices through data."""
    current = data
    for segment in selector.split("."):
        key, index = _parse_segment(segment)
        current = _get_key(current, key, segment, selector)
        if index is None:
            continue
        if not isinstance(current, list):
            raise ExtractionError(f"[{key}] of [{selector}] is not an array")
        if index >= len(current):
            raise ExtractionError(
                f"Index {index} of [{selector}] is out of bounds (length {len(current)})",
            )
        current = current[index]
    return current


def stringify_json(value: Any) -> str:
    """Strings come back bare, everything else as compact JSON text.

    Object keys are sorted so the same document always yields the same text.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def extract_json(selector: str, response, _body: _ParsedBody | None = None) -> str:
    """Extract the value at selector from a JSON response body.

    Examples against {"name": "John Doe", "age": 43, "phones": ["a", "b"]}:
        extract_json("name", r)       → "John Doe"
        extract_json("age", r)        → "43"
        extract_json("phones[1]", r)  → "b"
        extract_json("phones", r)     → '["a","b"]'
    """
    data = _body.get() if _body is not None else parse_json_body(response)
    return stringify_json(walk_json(data, selector))


# ---------------------------------------------------------------------------
# Header extraction
# ---------------------------------------------------------------------------


def extract_header(selector: str, response) -> str:
    """Return the value of the header named exactly selector."""
    for name, value in (response.headers or {}).items():
        if name == selector:
            return str(value)
    raise ExtractionError(f"Could not find header [{selector}] in response")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract(directives: Mapping[str, str], response) -> ExtractionResult:
    """Run every directive against response.

    Each directive succeeds or fails on its own: successes land in
    result.values, failures in result.errors. Never raises.
    """
    result = ExtractionResult()
    body = _ParsedBody(response)
    handlers: dict[ExtractorKind, Callable[[str], str]] = {
        ExtractorKind.JSON: lambda selector: extract_json(selector, response, body),
        ExtractorKind.HEADER: lambda selector: extract_header(selector, response),
    }

    for name, directive in directives.items():
        try:
            kind, selector = parse_directive(directive)
            result.values[name] = handlers[kind](selector)
        except ExtractionError as e:
            result.errors[name] = str(e)

    return result
