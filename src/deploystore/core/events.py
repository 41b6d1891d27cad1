"""Lifecycle events for sync progress reporting.

Why This Module Exists
----------------------
Presentation layers want to show "syncing…", "using cached data" or a
rate-limit countdown, but the sync layer must not depend on them. The
coordinator and the request pipeline publish :class:`Event` objects on an
:class:`EventBus`; collaborators subscribe with wildcard patterns. Handler
failures are logged and isolated, so observers can never change the outcome
of a sync.

Event types
-----------
``sync.started``      a save/refresh cycle began (``operation``)
``sync.progress``     step ``n`` of ``total`` completed
``sync.succeeded``    cycle finished (``operation``, ``source``)
``sync.failed``       cycle failed (``operation``, ``reason``, ``error_type``)
``rate_limit.wait``   pipeline suspends for ``wait_seconds``
``batch.progress``    batch item ``n`` of ``total`` processed (``item``, ``ok``)

Usage::

    bus = InMemoryEventBus()

    async def on_failure(event: Event) -> None:
        notify_user(event.payload["reason"])

    await bus.subscribe("sync.failed", on_failure)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from deploystore.core.logging import get_logger

logger = get_logger(__name__)

SYNC_STARTED = "sync.started"
SYNC_PROGRESS = "sync.progress"
SYNC_SUCCEEDED = "sync.succeeded"
SYNC_FAILED = "sync.failed"
RATE_LIMIT_WAIT = "rate_limit.wait"
BATCH_PROGRESS = "batch.progress"


@dataclass
class Event:
    """Immutable event payload.

    Attributes:
        event_type: Dot-separated type (e.g. ``sync.started``)
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (``*``, ``sync.*`` or exact)."""
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ".")
        return self.event_type == pattern


EventHandler = Callable[[Event], Awaitable[None]]


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe with wildcard patterns."""

    async def publish(self, event: Event) -> None: ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str: ...

    async def unsubscribe(self, subscription_id: str) -> None: ...

    async def close(self) -> None: ...


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus.

    Handlers run concurrently via ``asyncio.gather``; an exception in one
    handler is logged and does not reach the publisher or other handlers.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._closed = False

    async def publish(self, event: Event) -> None:
        if self._closed:
            return

        handlers = [
            (sub.id, sub.handler)
            for sub in list(self._subscriptions.values())
            if event.matches(sub.pattern)
        ]
        if not handlers:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    error=str(e),
                )

        await asyncio.gather(*[safe_call(sub_id, handler) for sub_id, handler in handlers])

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        self._subscriptions[sub_id] = Subscription(id=sub_id, pattern=event_type, handler=handler)
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        self._closed = True
        self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


class EventRecorder:
    """Handler that keeps every received event, for progress displays and tests."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def __call__(self, event: Event) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "EventRecorder",
    "InMemoryEventBus",
    "SYNC_STARTED",
    "SYNC_PROGRESS",
    "SYNC_SUCCEEDED",
    "SYNC_FAILED",
    "RATE_LIMIT_WAIT",
    "BATCH_PROGRESS",
]
