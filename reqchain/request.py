"""reqchain request model - declarative requests and their resolved views."""

import dataclasses
from collections import ChainMap
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

from reqchain.core import CollectionError, resolve_template, to_property_value

FILE_PREFIX = "file:"


class BodyFileError(Exception):
    """A `file:` body reference could not be read."""


class Verb(str, Enum):
    GET = "GET"
    POST = "POST"
    DELETE = "DELETE"
    PUT = "PUT"
    PATCH = "PATCH"


class ContentType(str, Enum):
    """How a request body is treated before sending.

    TEXT bodies are template-substituted, BINARY bodies are sent as-is.
    """

    TEXT = "Text"
    BINARY = "Binary"


@dataclass(frozen=True, eq=False)
class Request:
    """One declarative request from a collection.

    The property, header and extract maps are read-only views.
    """

    uri: str
    verb: Verb
    properties: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | bytes = ""
    content_type: ContentType = ContentType.TEXT
    extract: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("properties", "headers", "extract"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @classmethod
    def from_dict(cls, data: Any) -> "Request":
        """Build a Request from a parsed collection entry.

        Required: uri, verb. Everything else defaults to empty / Text.
        """
        if not isinstance(data, dict):
            raise CollectionError("request definition must be a mapping")

        uri = data.get("uri")
        if not isinstance(uri, str) or not uri:
            raise CollectionError("missing required field 'uri'")

        verb = data.get("verb")
        if verb is None:
            raise CollectionError("missing required field 'verb'")
        try:
            verb = Verb(str(verb).upper())
        except ValueError:
            choices = "|".join(v.value for v in Verb)
            raise CollectionError(f"unknown verb '{verb}' (expected {choices})") from None

        raw_type = data.get("content_type") or ContentType.TEXT.value
        try:
            content_type = ContentType(raw_type)
        except ValueError:
            raise CollectionError(
                f"unknown content_type '{raw_type}' (expected Text|Binary)",
            ) from None

        body = data.get("body")
        if body is None:
            body = ""
        elif not isinstance(body, str | bytes):
            raise CollectionError("'body' must be a string or bytes")

        headers = _string_map(data, "headers")
        _check_encodable("uri", uri)
        _check_encodable("body", body)
        for value in headers.values():
            _check_encodable("headers", value)

        return cls(
            uri=uri,
            verb=verb,
            properties=_string_map(data, "properties"),
            headers=headers,
            body=body,
            content_type=content_type,
            extract=_string_map(data, "extract"),
        )

    # ── Resolved views ───────────────────────────────────────────────────

    def lookup(self, store: Mapping[str, str]) -> Mapping[str, str]:
        """Request properties first, then the chain's store."""
        return ChainMap(self.properties, store)

    def resolved_uri(self, store: Mapping[str, str]) -> str:
        return resolve_template(self.uri, self.lookup(store))

    def resolved_headers(self, store: Mapping[str, str]) -> dict[str, str]:
        props = self.lookup(store)
        return {k: resolve_template(v, props) for k, v in self.headers.items()}

    def resolved_body(self, store: Mapping[str, str]) -> bytes:
        """Body bytes to send. Binary bodies are never substituted."""
        if self.content_type is ContentType.BINARY:
            if isinstance(self.body, bytes):
                return self.body
            return self.body.encode("utf-8")

        text = self.body
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError:
                return self.body
        return resolve_template(text, self.lookup(store)).encode("utf-8")

    # ── File bodies ──────────────────────────────────────────────────────

    @property
    def body_file(self) -> str | None:
        """Relative path named by a `file:` body, or None."""
        if isinstance(self.body, str) and self.body.startswith(FILE_PREFIX):
            return self.body[len(FILE_PREFIX) :]
        return None

    def load_body_file(self, working_dir: str | Path) -> "Request":
        """Return a copy whose `file:` body is replaced by the file contents.

        Requests without a file reference are returned unchanged.
        Raises BodyFileError if the file cannot be read.
        """
        rel = self.body_file
        if rel is None:
            return self

        file_path = Path(working_dir) / rel
        try:
            if self.content_type is ContentType.BINARY:
                data: str | bytes = file_path.read_bytes()
            else:
                data = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise BodyFileError(f"Failed to load {file_path}: {e}") from e

        return dataclasses.replace(self, body=data)


def _string_map(data: dict, key: str) -> dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise CollectionError(f"'{key}' must be a mapping")
    return {str(k): to_property_value(v) for k, v in value.items()}


def _check_encodable(field_name: str, value: str | bytes) -> None:
    """Reject text that cannot be sent as UTF-8 (e.g. lone surrogates)."""
    if isinstance(value, bytes):
        return
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise CollectionError(f"'{field_name}' is not valid UTF-8 text: {e}") from None
