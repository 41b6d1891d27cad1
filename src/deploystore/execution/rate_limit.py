"""Rate limiting — fixed-window call budget shared by every pipeline call.

Manifesto:
The platform API allows a fixed number of calls per window and reports its
own view of the budget in ``X-RateLimit-Remaining`` / ``X-RateLimit-Reset``
response headers. Exceeding the budget costs a 429 and, on repeat, a ban.
The window below throttles outgoing calls *before* the limit is hit:

- Each call consumes exactly one unit, success or failure.
- When the budget is spent, the next call suspends until ``reset_at`` and
  the window restarts at full budget.
- Server-reported headers always overwrite local accounting.

ARCHITECTURE
────────────
::

    RateLimitWindow
      ├── acquire()              ─ wait if exhausted, then consume one unit
      ├── update_from_headers()  ─ server state wins
      └── drain()                ─ 429 received: block until reset

    One window per SyncSession; every RequestPipeline built from the
    session shares it.

Example::

    window = RateLimitWindow(budget=60, window_seconds=60)
    await window.acquire(sleep=asyncio.sleep)
    window.update_from_headers(response.headers)

Tags:
    deploystore, execution, rate-limit, throttle, fixed-window

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from deploystore.core.errors import RateLimitError
from deploystore.core.logging import get_logger

logger = get_logger(__name__)

REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"

Sleeper = Callable[[float], Awaitable[None]]
WaitListener = Callable[[float], Awaitable[None]]


@dataclass
class RateLimitWindow:
    """Shared quota state.

    Attributes:
        budget: Calls permitted per window
        window_seconds: Window length in seconds
        clock: Wall-clock source (epoch seconds); reset headers are epoch based
        remaining: Calls left in the current window, never negative
        reset_at: Epoch seconds at which the window restarts
    """

    budget: int
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.time

    remaining: int = field(init=False)
    reset_at: float = field(init=False)
    total_acquired: int = field(default=0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.remaining = self.budget
        self.reset_at = self.clock() + self.window_seconds

    def _restart(self) -> None:
        self.remaining = self.budget
        self.reset_at = self.clock() + self.window_seconds

    def roll_forward(self) -> None:
        """Restart the window at full budget once ``reset_at`` has passed."""
        if self.clock() > self.reset_at:
            self._restart()

    def get_wait_time(self) -> float:
        """Seconds until a unit is available (0 if available now)."""
        self.roll_forward()
        if self.remaining > 0:
            return 0.0
        return max(0.0, self.reset_at - self.clock())

    async def acquire(
        self,
        sleep: Sleeper = asyncio.sleep,
        *,
        max_wait: float | None = None,
        on_wait: WaitListener | None = None,
    ) -> float:
        """Consume one unit, suspending until the window resets if exhausted.

        Args:
            sleep: Coroutine used to wait
            max_wait: Raise instead of waiting longer than this many seconds
            on_wait: Notified with the wait time before suspending

        Returns:
            Seconds spent waiting (0 when budget was available)

        Raises:
            RateLimitError: the required wait exceeds ``max_wait``
        """
        async with self._lock:
            waited = 0.0
            self.roll_forward()

            if self.remaining <= 0:
                waited = max(0.0, self.reset_at - self.clock())
                if max_wait is not None and waited > max_wait:
                    raise RateLimitError(
                        f"Rate limit exhausted; window resets in {waited:.1f}s",
                        retry_after=waited,
                        retryable=False,
                    )
                logger.info("rate_limit_wait", wait_seconds=round(waited, 3), budget=self.budget)
                if on_wait is not None:
                    await on_wait(waited)
                if waited > 0:
                    await sleep(waited)
                self._restart()

            self.remaining = max(0, self.remaining - 1)
            self.total_acquired += 1
            return waited

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Overwrite local state with the server-reported budget, when present."""
        remaining = headers.get(REMAINING_HEADER)
        reset = headers.get(RESET_HEADER)

        if remaining:
            try:
                self.remaining = max(0, int(remaining))
            except ValueError:
                logger.debug("rate_limit_header_invalid", header=REMAINING_HEADER, value=remaining)

        if reset:
            try:
                self.reset_at = float(reset)
            except ValueError:
                logger.debug("rate_limit_header_invalid", header=RESET_HEADER, value=reset)

    def drain(self, retry_after: float | None = None) -> None:
        """Mark the budget as spent, e.g. after a 429."""
        self.remaining = 0
        if retry_after is not None:
            self.reset_at = self.clock() + retry_after


__all__ = [
    "RateLimitWindow",
    "REMAINING_HEADER",
    "RESET_HEADER",
    "Sleeper",
]
