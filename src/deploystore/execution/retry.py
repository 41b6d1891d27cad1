"""Retry strategy with exponential backoff for pipeline calls.

A logical request becomes up to ``max_attempts`` physical attempts. After
failed attempt ``i`` (zero-based) the caller waits
``base_delay * multiplier ** i`` before the next one, so with the defaults
a call failing twice waits 1s then 2s. Only errors flagged ``retryable``
(network, 5xx) are retried; everything else is raised on the spot.

Example:
    >>> strategy = ExponentialBackoff(max_attempts=3, base_delay=1.0)
    >>> [strategy.next_delay(i) for i in range(3)]
    [1.0, 2.0, 4.0]
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from deploystore.core.errors import is_retryable

T = TypeVar("T")


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional cap and jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) [+ jitter]

    Attributes:
        max_attempts: Total physical attempts, first try included
        base_delay: Delay after the first failed attempt, in seconds
        multiplier: Exponential multiplier
        max_delay: Optional cap in seconds
        jitter: Add randomness to spread out concurrent retries
        jitter_range: Jitter as a fraction of the delay
        retryable_errors: Exception types eligible for retry (None = any
            error flagged ``retryable``)
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None
    jitter: bool = False
    jitter_range: float = 0.25
    retryable_errors: tuple[type[Exception], ...] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def next_delay(self, attempt: int) -> float:
        """Delay after failed attempt ``attempt`` (zero-based)."""
        delay = self.base_delay * (self.multiplier ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """True if attempt ``attempt`` failed with a retryable error and attempts remain."""
        if attempt + 1 >= self.max_attempts:
            return False
        if error is None:
            return True
        if self.retryable_errors is not None and not isinstance(error, self.retryable_errors):
            return False
        return is_retryable(error)


@dataclass
class RequestAttempt:
    """One physical try of a pipeline call."""

    index: int
    error: Exception | None = None
    delay: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RetryContext:
    """Runs an async callable under a strategy and records every attempt.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> result = await ctx.run_async(send_request)
        >>> [a.delay for a in ctx.attempts]
    """

    strategy: ExponentialBackoff
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    on_retry: Callable[[int, Exception, float], None] | None = None
    attempts: list[RequestAttempt] = field(default_factory=list, init=False)

    @property
    def attempt(self) -> int:
        """Number of attempts started so far (the one in progress included)."""
        return len(self.attempts)

    @property
    def last_error(self) -> Exception | None:
        for attempt in reversed(self.attempts):
            if attempt.error is not None:
                return attempt.error
        return None

    async def run_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` with retry logic.

        Raises:
            The last error once attempts are exhausted, or the first
            non-retryable error immediately.
        """
        while True:
            record = RequestAttempt(index=self.attempt)
            self.attempts.append(record)
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                record.error = e

                if not self.strategy.should_retry(record.index, e):
                    raise

                record.delay = self.strategy.next_delay(record.index)

                if self.on_retry:
                    self.on_retry(record.index, e, record.delay)

                await self.sleep(record.delay)


__all__ = [
    "ExponentialBackoff",
    "RequestAttempt",
    "RetryContext",
]
