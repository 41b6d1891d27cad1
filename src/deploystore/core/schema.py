"""
Document and error-payload schemas.

The shared state is one JSON object with three required collections and a
version string. Anything read back from the publish target or the durable
cache is validated against :class:`Document` before it reaches a caller;
anything that does not conform is a :class:`~deploystore.core.errors.SchemaError`,
never a half-trusted dict.

Wire format::

    {
      "projects": [...],
      "folders":  [...],
      "offers":   [...],
      "version":  "1.0.0"
    }

Unknown top-level keys (``cachedAt``, ``exportedAt``) are preserved.

Tags:
    deploystore, schema, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from deploystore.core.errors import SchemaError
from deploystore.core.settings import DATA_VERSION

OFFERS_FOLDER: dict[str, Any] = {"name": "Offers", "special": True, "icon": "offers"}

COLLECTIONS = ("projects", "folders", "offers")


class Document(BaseModel):
    """The whole shared state, replaced wholesale on every save."""

    model_config = ConfigDict(extra="allow")

    projects: list[dict[str, Any]]
    folders: list[dict[str, Any]]
    offers: list[dict[str, Any]]
    version: str

    @classmethod
    def empty(cls) -> Document:
        """Default document: no projects or offers, only the special Offers folder."""
        return cls(projects=[], folders=[dict(OFFERS_FOLDER)], offers=[], version=DATA_VERSION)

    def to_payload(self) -> dict[str, Any]:
        """Plain JSON-compatible dict including extra keys."""
        return self.model_dump(mode="json")

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_payload(), indent=indent, ensure_ascii=False)

    def content(self) -> dict[str, list[dict[str, Any]]]:
        """The three collections only, for comparisons that ignore version/timestamps."""
        return {name: getattr(self, name) for name in COLLECTIONS}


def validate_document(payload: Any) -> Document:
    """Validate a parsed payload and return a :class:`Document`.

    Raises:
        SchemaError: payload is not an object, a collection is missing or is
            not an array, or ``version`` is missing or not a string.
    """
    if not isinstance(payload, dict):
        raise SchemaError(
            f"Document must be a JSON object, got {type(payload).__name__}",
        )
    try:
        return Document.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise SchemaError(
            f"Invalid document structure: {first['msg']}",
            field=field,
            cause=exc,
        ) from exc


def parse_document(text: str | bytes) -> Document:
    """Parse JSON text and validate it as a Document."""
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SchemaError(f"Malformed document JSON: {exc}", cause=exc) from exc
    return validate_document(payload)


def content_equal(left: Document, right: Document) -> bool:
    """True when both documents hold the same projects, folders and offers."""
    return left.content() == right.content()


_PROTOCOL = re.compile(r"^https?://")
_TRAILING = re.compile(r"[./]+$")


def clean_url(url: str | None) -> str:
    """Reduce a project URL to ``https://<host>``.

    Examples:
        >>> clean_url("my-site.vercel.app/path?x=1")
        'https://my-site.vercel.app'
        >>> clean_url("")
        ''
    """
    if not url:
        return ""
    cleaned = _PROTOCOL.sub("", url)
    cleaned = cleaned.split("/")[0].split("?")[0].split("#")[0]
    cleaned = _TRAILING.sub("", cleaned)
    return f"https://{cleaned}"


def clean_project_urls(document: Document) -> Document:
    """Normalize ``url`` / ``actualUrl`` of every project in place."""
    for project in document.projects:
        for key in ("url", "actualUrl"):
            if project.get(key):
                project[key] = clean_url(project[key])
    return document


# ── Platform error payloads ──────────────────────────────────────────────


class _ErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str | None = None
    code: str | int | None = None


class ApiErrorPayload(BaseModel):
    """Platform error body: ``{"error": {"message", "code"}}`` or ``{"message", "code"}``."""

    model_config = ConfigDict(extra="allow")

    error: _ErrorBody | None = None
    message: str | None = None
    code: str | int | None = None
    details: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def parse(cls, body: bytes, status: int, reason: str) -> ApiErrorPayload:
        """Parse a response body, falling back to ``HTTP {status}: {reason}``."""
        try:
            data = json.loads(body)
            if not isinstance(data, dict):
                raise ValueError("error body is not an object")
            payload = cls.model_validate(data)
            payload.details = data
        except (ValueError, PydanticValidationError):
            return cls(message=f"HTTP {status}: {reason}", code=status)
        return payload

    @property
    def error_message(self) -> str:
        if self.error and self.error.message:
            return self.error.message
        return self.message or "Unknown error"

    @property
    def error_code(self) -> str | None:
        code = self.error.code if self.error and self.error.code is not None else self.code
        return str(code) if code is not None else None


__all__ = [
    "OFFERS_FOLDER",
    "Document",
    "validate_document",
    "parse_document",
    "content_equal",
    "clean_url",
    "clean_project_urls",
    "ApiErrorPayload",
]
