"""
Sync session — the explicit context shared by pipelines and coordinators.

Manifesto:
    Rate-limit accounting, credentials and the event bus are process-wide
    state. Instead of module-level singletons they live on one
    :class:`SyncSession`, constructed once and passed by reference to every
    :class:`~deploystore.remote.pipeline.RequestPipeline` and
    :class:`~deploystore.sync.coordinator.SyncCoordinator`. Tests build a
    session with a fake ``clock``/``sleep`` pair and drive time directly.

Examples:
    >>> session = SyncSession.from_settings(get_settings())
    >>> session.set_token("abc_123")
    >>> session.rate_limit.remaining
    60

Tags:
    deploystore, session, context, rate-limit, credentials

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from deploystore.core.errors import AuthError
from deploystore.core.events import Event, EventBus, InMemoryEventBus
from deploystore.core.settings import DeployStoreSettings
from deploystore.execution.rate_limit import RateLimitWindow

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class SyncSession:
    """Explicit process-wide context.

    Attributes:
        settings: Validated configuration
        token: Platform bearer token (``None`` until authenticated)
        team_id: Optional team scope sent as ``teamId``
        rate_limit: The shared rate-limit window
        events: Lifecycle event bus
        clock: Epoch-seconds time source
        sleep: Coroutine used for every wait
    """

    settings: DeployStoreSettings
    rate_limit: RateLimitWindow
    token: str | None = None
    team_id: str | None = None
    events: EventBus = field(default_factory=InMemoryEventBus)
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        settings: DeployStoreSettings,
        *,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> SyncSession:
        """Build a session, its rate-limit window and credentials from settings."""
        window = RateLimitWindow(
            budget=settings.calls_per_window,
            window_seconds=settings.rate_limit_window_seconds,
            clock=clock,
        )
        session = cls(
            settings=settings,
            rate_limit=window,
            team_id=settings.team_id,
            events=events or InMemoryEventBus(),
            clock=clock,
            sleep=sleep,
        )
        if settings.token_value:
            session.set_token(settings.token_value)
        return session

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def set_token(self, token: str | None) -> None:
        """Set or clear the credential.

        Raises:
            AuthError: the token contains characters outside ``[A-Za-z0-9_-]``
        """
        if token is None:
            self.token = None
            return
        token = token.strip()
        if not TOKEN_PATTERN.match(token):
            raise AuthError("Invalid token format")
        self.token = token

    def set_team(self, team_id: str | None) -> None:
        self.team_id = team_id or None

    def clear_credentials(self) -> None:
        self.token = None
        self.team_id = None

    async def emit(self, event_type: str, source: str, /, **payload: Any) -> Event:
        """Publish a lifecycle event on the session bus."""
        event = Event(event_type=event_type, source=source, payload=payload)
        await self.events.publish(event)
        return event


__all__ = ["SyncSession", "TOKEN_PATTERN"]
