"""
deploystore logging - structured logging via structlog.

Manifesto:
    A sync layer that silently degrades to cached data is only debuggable if
    every fallback, retry and rate-limit wait leaves a structured trace.
    All modules log through :func:`get_logger` with snake_case event names
    and key/value fields:

    - **Structured:** ``logger.warning("remote_read_failed", url=..., error=...)``
    - **Safe:** bearer tokens never reach the output, whatever field carries them
    - **Scoped:** ``LogContext`` binds per-cycle fields and restores the outer
      values on exit, so nested cycles do not clobber each other

Examples:
    >>> from deploystore.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("document_loaded", source="remote", projects=3)

Tags:
    logging, structlog, observability, deploystore

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from deploystore.core.errors import ConfigError

REDACTED = "***"

# field names whose values are credentials
SECRET_FIELDS = frozenset({"token", "authorization", "api_key", "password"})

_BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9_\-.]+")


def _redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if key.lower() in SECRET_FIELDS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "Bearer" in value:
            event_dict[key] = _BEARER.sub(rf"\g<1>{REDACTED}", value)
    return event_dict


def _service_stamp(service: str) -> Processor:
    def stamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return stamp


def resolve_level(level: str | int) -> int:
    """Map a level name (``"debug"``, ``"WARNING"``) or number to a logging level."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ConfigError(f"Unknown log level: {level!r}")
    return value


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    service: str = "deploystore",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog (and the stdlib root logger) for the process.

    Args:
        level: Minimum level, by name or number
        json_format: JSON lines when True, console rendering when False,
            JSON unless stderr is a terminal when None
        service: Value of the ``service`` field on every record
        add_timestamp: Stamp records with an ISO-8601 UTC ``timestamp``

    Raises:
        ConfigError: ``level`` is not a known level name
    """
    numeric_level = resolve_level(level)
    interactive = sys.stderr.isatty()
    if json_format is None:
        json_format = not interactive

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _service_stamp(service),
        _redact_secrets,
    ]
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=interactive))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    # httpx logs every request at INFO through stdlib logging
    logging.basicConfig(stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(numeric_level)
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None, **initial: Any) -> Any:
    """Return a lazy structlog logger; ``name`` is bound as ``logger_name`` when given.

    Resolution is deferred to the first log call, so module-level loggers pick
    up whatever :func:`configure_logging` installs later.
    """
    if name:
        initial.setdefault("logger_name", name)
    return structlog.get_logger(**initial)


def bind_context(**kwargs: Any) -> None:
    """Bind fields onto every record emitted from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a block (sync or async).

    On exit the previous values of the bound keys are restored, and keys that
    were not bound before are removed.

    Example:
        async with LogContext(sync_operation="save"):
            logger.info("sync_started")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._tokens: dict[str, Any] | None = None

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self.fields)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._tokens is not None:
            structlog.contextvars.reset_contextvars(**self._tokens)
            self._tokens = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "resolve_level",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    "SECRET_FIELDS",
]
