"""
Structured error types for deploystore.

Every failure the synchronization layer can surface is one of the types
below. Each error carries a category, an explicit retry flag, an optional
``retry_after`` hint and an :class:`ErrorContext` with request metadata, so
the request pipeline can decide what to retry and collaborators can decide
what to show.

Manifesto:
    - **Typed taxonomy:** Transport, server, client, auth, schema, storage
      and timeout failures are distinct types, never bare ``Exception``
    - **Explicit retry semantics:** ``retryable`` is set by the type, the
      pipeline never guesses from messages
    - **Rich context:** URL, HTTP status and platform error code travel with
      the error for logging
    - **Error chaining:** The underlying httpx/sqlite exception is kept as
      ``cause``

Architecture:
    ::

        DeployStoreError (category, retryable, retry_after, context, cause)
        ├── TransientError (retryable=True)
        │   ├── NetworkError      transport-level failure
        │   ├── ServerError       5xx
        │   ├── RateLimitError    quota exhausted (429 / wait too long)
        │   └── TimeoutError      bounded wait exceeded
        ├── ClientError           4xx other than auth
        │   ├── NotFoundError     404
        │   └── ConflictError     409 / "already exists"
        ├── AuthError             missing / invalid credential, 401 / 403
        ├── ValidationError
        │   └── SchemaError       payload fails structural validation
        ├── StorageError          durable cache failure
        │   └── StorageQuotaError
        ├── DeploymentError       publish reported ERROR
        └── ConfigError

Examples:
    >>> error = ServerError("HTTP 502: Bad Gateway").with_context(http_status=502)
    >>> error.retryable
    True
    >>> error.to_dict()["context"]
    {'http_status': 502}

Tags:
    error-handling, exception-hierarchy, retry-logic, deploystore

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"           # Connection, DNS, 5xx
    RATE_LIMIT = "RATE_LIMIT"     # Quota exhausted
    CLIENT = "CLIENT"             # 4xx request errors
    AUTH = "AUTH"                 # Missing / rejected credential
    VALIDATION = "VALIDATION"     # Schema violations
    STORAGE = "STORAGE"           # Durable cache, disk, quota
    DEPLOYMENT = "DEPLOYMENT"     # Publish failures
    CONFIG = "CONFIG"             # Invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        operation: Logical operation (e.g. ``read_document``)
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        code: Platform error code from the error payload
        attempt: Zero-based attempt index that produced the error
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    url: str | None = None
    http_status: int | None = None
    code: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation", "url", "http_status", "code", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DeployStoreError(Exception):
    """
    Base exception for all deploystore errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Examples:
        >>> error = DeployStoreError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def status(self) -> int | None:
        """HTTP status carried in the context, if any."""
        return self.context.http_status

    def with_context(self, **kwargs: Any) -> DeployStoreError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NetworkError("Failed").with_context(url="https://api.vercel.com")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (retried by the request pipeline)
# =============================================================================


class TransientError(DeployStoreError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Transport-level failure: connection refused, DNS, read timeout."""


class ServerError(TransientError):
    """The platform answered with a 5xx status or an unreadable 2xx body."""


class RateLimitError(TransientError):
    """
    Rate limit exhausted.

    The pipeline normally absorbs quota exhaustion by waiting for the window
    to reset. This error is raised only when the platform answers 429 or the
    required wait exceeds the configured maximum.
    """

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class TimeoutError(TransientError):  # noqa: A001
    """A bounded wait (deployment readiness, publish visibility) exceeded its maximum."""


# =============================================================================
# CLIENT ERRORS (never retried)
# =============================================================================


class ClientError(DeployStoreError):
    """The platform rejected the request with a 4xx status."""

    default_category = ErrorCategory.CLIENT
    default_retryable = False


class NotFoundError(ClientError):
    """The addressed resource does not exist (404)."""


class ConflictError(ClientError):
    """The resource already exists or changed underneath the caller (409)."""


class AuthError(DeployStoreError):
    """Missing credential, malformed credential, or 401/403 from the platform."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


# =============================================================================
# DATA / STORAGE ERRORS
# =============================================================================


class ValidationError(DeployStoreError):
    """Data failed validation."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        return result


class SchemaError(ValidationError):
    """A parsed payload does not have the structure of a Document."""


class StorageError(DeployStoreError):
    """The durable cache could not be read or written."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class StorageQuotaError(StorageError):
    """A durable write was refused because the storage quota is exhausted."""


class DeploymentError(DeployStoreError):
    """The platform accepted a deployment and then reported it as failed."""

    default_category = ErrorCategory.DEPLOYMENT
    default_retryable = False


class ConfigError(DeployStoreError):
    """Configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# HELPERS
# =============================================================================


def from_status(
    status: int,
    message: str,
    *,
    code: str | None = None,
    retry_after: float | None = None,
    url: str | None = None,
) -> DeployStoreError:
    """
    Map a non-2xx HTTP status to the matching error type.

    Examples:
        >>> type(from_status(404, "missing")).__name__
        'NotFoundError'
        >>> from_status(503, "down").retryable
        True
    """
    context = ErrorContext(url=url, http_status=status, code=code)
    if status in (401, 403):
        return AuthError(message, context=context)
    if status == 404:
        return NotFoundError(message, context=context)
    if status == 409:
        return ConflictError(message, context=context)
    if status == 429:
        return RateLimitError(message, retry_after=retry_after, context=context)
    if 400 <= status < 500:
        return ClientError(message, context=context)
    return ServerError(message, context=context)


def is_retryable(error: Exception) -> bool:
    """Return True if the error is marked retryable."""
    if isinstance(error, DeployStoreError):
        return error.retryable
    return False


def get_retry_after(error: Exception) -> float | None:
    """Return the retry-after hint of an error, if it has one."""
    if isinstance(error, DeployStoreError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DeployStoreError",
    "TransientError",
    "NetworkError",
    "ServerError",
    "RateLimitError",
    "TimeoutError",
    "ClientError",
    "NotFoundError",
    "ConflictError",
    "AuthError",
    "ValidationError",
    "SchemaError",
    "StorageError",
    "StorageQuotaError",
    "DeploymentError",
    "ConfigError",
    "from_status",
    "is_retryable",
    "get_retry_after",
]
