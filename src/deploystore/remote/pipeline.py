"""
Request pipeline — rate-limited, retrying calls to the platform API.

Turns one logical operation, ``request(endpoint, ...)``, into zero or more
physical HTTP attempts:

1. No credential on the session → :class:`AuthError`, nothing is sent.
2. Before every attempt the shared :class:`RateLimitWindow` is acquired,
   suspending until the window resets when the budget is spent.
3. Every response's rate-limit headers overwrite the window.
4. The outcome is classified:

   ====================  =======================  =========
   outcome               error                    retried
   ====================  =======================  =========
   2xx                   (parsed JSON returned)   -
   401 / 403             AuthError                no
   404 / 409 / 4xx       NotFound/Conflict/Client no
   429                   RateLimitError           yes (waits for the window)
   5xx, bad 2xx body     ServerError              yes
   transport / timeout   NetworkError             yes
   ====================  =======================  =========

5. Retried failures wait ``base_delay * 2 ** attempt`` and the last error is
   raised once ``max_attempts`` is exhausted.

Endpoint paths and payload shapes belong to the caller; the pipeline only
knows about transport, quota and failure classification.

Example::

    async with RequestPipeline(session) as pipeline:
        user = await pipeline.request("/v2/user")
        await pipeline.request("/v9/projects", method="POST", json={"name": "x"})
"""

from __future__ import annotations

from functools import partial
from typing import Any

import httpx

from deploystore.core.errors import (
    AuthError,
    ErrorContext,
    NetworkError,
    RateLimitError,
    ServerError,
    from_status,
)
from deploystore.core.events import RATE_LIMIT_WAIT
from deploystore.core.logging import get_logger
from deploystore.core.schema import ApiErrorPayload
from deploystore.core.session import SyncSession
from deploystore.execution.retry import ExponentialBackoff, RequestAttempt, RetryContext

logger = get_logger(__name__)

RETRYABLE_ERRORS = (NetworkError, ServerError, RateLimitError)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class RequestPipeline:
    """Issues platform API calls with rate limiting and retry/backoff.

    Args:
        session: Shared session (credential, rate-limit window, clock/sleep)
        client: Optional externally managed ``httpx.AsyncClient``
        transport: Optional httpx transport for the internally created client
        strategy: Override the backoff policy built from settings
    """

    def __init__(
        self,
        session: SyncSession,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        strategy: ExponentialBackoff | None = None,
    ):
        self.session = session
        settings = session.settings
        self.strategy = strategy or ExponentialBackoff(
            max_attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay,
            retryable_errors=RETRYABLE_ERRORS,
        )
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self.last_attempts: list[RequestAttempt] = []

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.session.settings.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> RequestPipeline:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.session.settings.api_base_url}{endpoint}"

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform a platform call and return its parsed JSON body (None if empty).

        Raises:
            AuthError: no token configured, or 401/403
            ClientError: 4xx (NotFoundError for 404, ConflictError for 409)
            ServerError / NetworkError / RateLimitError: after retries are exhausted
        """
        token = self.session.token
        if not token:
            raise AuthError("Authentication token not set").with_context(
                operation=f"{method} {endpoint}",
            )

        url = self.build_url(endpoint)
        query = dict(params or {})
        if self.session.team_id and "teamId" not in query:
            query["teamId"] = self.session.team_id

        request_headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            **(headers or {}),
        }

        ctx = RetryContext(
            self.strategy,
            sleep=self.session.sleep,
            on_retry=partial(self._log_retry, method, url),
        )
        try:
            return await ctx.run_async(
                self._attempt, ctx, method, url, query, request_headers, json
            )
        finally:
            self.last_attempts = ctx.attempts

    async def _attempt(
        self,
        ctx: RetryContext,
        method: str,
        url: str,
        query: dict[str, Any],
        headers: dict[str, str],
        body: Any,
    ) -> Any:
        index = ctx.attempt - 1
        window = self.session.rate_limit
        await window.acquire(
            self.session.sleep,
            max_wait=self.session.settings.max_rate_limit_wait,
            on_wait=self._on_rate_limit_wait,
        )

        try:
            response = await self.client.request(
                method,
                url,
                params=query or None,
                headers=headers,
                json=body,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timed out: {method} {url}",
                context=ErrorContext(url=url, attempt=index),
                cause=e,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error: {e}",
                context=ErrorContext(url=url, attempt=index),
                cause=e,
            ) from e

        window.update_from_headers(response.headers)

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise ServerError(
                    f"Malformed JSON in {response.status_code} response",
                    context=ErrorContext(url=url, http_status=response.status_code, attempt=index),
                    cause=e,
                ) from e

        payload = ApiErrorPayload.parse(response.content, response.status_code, response.reason_phrase)
        retry_after = _retry_after(response)
        error = from_status(
            response.status_code,
            payload.error_message,
            code=payload.error_code,
            retry_after=retry_after,
            url=url,
        )
        error.context.attempt = index
        if payload.details:
            error.context.metadata["details"] = payload.details
        if isinstance(error, RateLimitError) and "X-RateLimit-Reset" not in response.headers:
            window.drain(retry_after if retry_after is not None else window.window_seconds)
        elif isinstance(error, RateLimitError):
            window.drain()
        raise error

    async def _on_rate_limit_wait(self, wait_seconds: float) -> None:
        await self.session.emit(RATE_LIMIT_WAIT, "pipeline", wait_seconds=wait_seconds)

    def _log_retry(self, method: str, url: str, attempt: int, error: Exception, delay: float) -> None:
        logger.warning(
            "request_retry",
            method=method,
            url=url,
            attempt=attempt,
            delay=delay,
            error_type=type(error).__name__,
            error=str(error),
        )


__all__ = ["RequestPipeline", "RETRYABLE_ERRORS"]
