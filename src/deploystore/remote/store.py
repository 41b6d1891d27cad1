"""
Remote store — a publish target used as a single-document database.

The platform has no database, so the shared document is published as the
only file of a public deployment and read back from the deployment's URL:

    write:  POST /v13/deployments  {files: [{file: "data.json", data: <json>}]}
    read:   GET  https://<store>.vercel.app/data.json?t=<ms>

Consistency contract:
    A write returns as soon as the platform *accepts* the deployment; the new
    content becomes servable only after a propagation delay. The returned
    :class:`PublishReceipt` states the revision written and when it is
    expected to be visible. Reads issued inside that window first wait out
    the remainder of the delay; callers needing confirmed visibility use
    :meth:`RemoteStore.wait_until_visible`, which polls until the published
    ``version`` matches the receipt.

Read path:
    1. GET with a ``t`` cache-busting parameter.
    2. On any failure (transport, non-2xx, malformed JSON, schema), one more
       GET without the parameter.
    3. If that fails too, the first error is raised.

Public reads go straight to the deployment host: they carry no credential
and do not count against the API rate limit.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import httpx

from deploystore.core.errors import (
    ClientError,
    ConflictError,
    DeployStoreError,
    ErrorContext,
    NetworkError,
    NotFoundError,
    TimeoutError,
    from_status,
)
from deploystore.core.logging import get_logger
from deploystore.core.schema import Document, parse_document
from deploystore.remote.platform import PlatformClient

logger = get_logger(__name__)


@dataclass
class PublishTarget:
    """The backing deployment slot."""

    name: str
    base_url: str
    created: bool = False


@dataclass
class PublishReceipt:
    """A publish accepted by the platform but not necessarily servable yet.

    Attributes:
        deployment_id: Platform deployment identifier
        version: Revision stamped into the published document
        accepted_at: Epoch seconds when the publish was accepted
        visible_after: Seconds after ``accepted_at`` before reads should see it
        url: Deployment URL reported by the platform, if any
    """

    deployment_id: str | None
    version: str
    accepted_at: float
    visible_after: float
    url: str | None = None

    @property
    def ready_at(self) -> float:
        return self.accepted_at + self.visible_after


class RemoteStore:
    """Treats a publish target as a single-document store."""

    def __init__(
        self,
        platform: PlatformClient,
        *,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.platform = platform
        self.session = platform.session
        settings = self.session.settings
        self.name = settings.store_name
        self.base_url = settings.store_url
        self.file_name = settings.file_name
        self.propagation_delay = settings.propagation_delay
        self._http = http
        self._owns_http = http is None
        self._transport = transport
        self._last_publish_at: float | None = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.session.settings.request_timeout,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    @property
    def read_url(self) -> str:
        """Published document URL without the cache-busting parameter."""
        return f"{self.base_url}/{self.file_name}"

    def new_revision(self) -> str:
        return f"{int(self.session.clock() * 1000)}-{uuid.uuid4().hex[:8]}"

    # ── Target lifecycle ─────────────────────────────────────────────────

    async def ensure_store_exists(self) -> PublishTarget:
        """Make sure the publish target exists, creating and seeding it if absent.

        A creation rejected as "already exists" means another client won the
        race and is treated as success.
        """
        try:
            await self.platform.get_project(self.name)
            logger.info("store_exists", store=self.name)
            return PublishTarget(self.name, self.base_url)
        except NotFoundError:
            logger.info("store_creating", store=self.name)

        try:
            await self.platform.create_project(self.name)
        except ClientError as e:
            if isinstance(e, ConflictError) or "already exists" in e.message.lower():
                logger.info("store_created_concurrently", store=self.name)
                return PublishTarget(self.name, self.base_url)
            raise

        await self.write_document(Document.empty())
        return PublishTarget(self.name, self.base_url, created=True)

    # ── Write ────────────────────────────────────────────────────────────

    async def write_document(
        self,
        document: Document,
        *,
        expected_version: str | None = None,
    ) -> PublishReceipt:
        """Publish ``document`` as the target's content under a fresh revision.

        Args:
            document: Full replacement document
            expected_version: When given, the currently published version must
                match or :class:`ConflictError` is raised. Best effort: the
                check and the publish are not atomic.
        """
        if expected_version is not None:
            current = await self.read_document()
            if current.version != expected_version:
                raise ConflictError(
                    f"Published version {current.version!r} does not match expected {expected_version!r}",
                ).with_context(operation="write_document", url=self.read_url)

        revision = self.new_revision()
        stamped = document.model_copy(update={"version": revision})
        payload = {
            "name": self.name,
            "files": [{"file": self.file_name, "data": stamped.to_json(indent=2)}],
            "target": "production",
            "public": True,
        }

        deployment = await self.platform.create_deployment(payload) or {}
        accepted_at = self.session.clock()
        self._last_publish_at = accepted_at

        receipt = PublishReceipt(
            deployment_id=deployment.get("id"),
            version=revision,
            accepted_at=accepted_at,
            visible_after=self.propagation_delay,
            url=deployment.get("url"),
        )
        logger.info(
            "document_published",
            deployment_id=receipt.deployment_id,
            version=revision,
            projects=len(document.projects),
            folders=len(document.folders),
            offers=len(document.offers),
        )
        return receipt

    # ── Read ─────────────────────────────────────────────────────────────

    async def read_document(self) -> Document:
        """Read and validate the currently published document.

        Raises:
            NetworkError / ClientError / ServerError: both reads failed
            SchemaError: the payload is malformed or structurally invalid
        """
        await self._await_propagation()

        busted_url = f"{self.read_url}?t={int(self.session.clock() * 1000)}"
        try:
            return await self._fetch(busted_url)
        except DeployStoreError as primary:
            logger.warning("remote_read_failed", url=busted_url, error=primary.message)
            try:
                document = await self._fetch(self.read_url)
            except DeployStoreError as secondary:
                logger.warning("remote_read_fallback_failed", url=self.read_url, error=secondary.message)
                raise primary
            logger.info("remote_read_fallback_succeeded", url=self.read_url)
            return document

    async def _await_propagation(self) -> None:
        if self._last_publish_at is None:
            return
        remaining = self.propagation_delay - (self.session.clock() - self._last_publish_at)
        if remaining > 0:
            logger.debug("propagation_wait", wait_seconds=round(remaining, 3))
            await self.session.sleep(remaining)

    async def _fetch(self, url: str) -> Document:
        try:
            response = await self.http.get(url, headers={"Accept": "application/json"})
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error reading document: {e}",
                context=ErrorContext(operation="read_document", url=url),
                cause=e,
            ) from e

        if not response.is_success:
            raise from_status(
                response.status_code,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                url=url,
            )

        return parse_document(response.content)

    async def wait_until_visible(
        self,
        receipt: PublishReceipt,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> Document:
        """Poll reads until the published version matches ``receipt.version``.

        Raises:
            TimeoutError: the revision is not visible within ``timeout`` seconds
        """
        settings = self.session.settings
        timeout = settings.deployment_wait_timeout if timeout is None else timeout
        poll_interval = settings.deployment_poll_interval if poll_interval is None else poll_interval
        started = self.session.clock()

        while True:
            try:
                document = await self.read_document()
                if document.version == receipt.version:
                    return document
                logger.debug("revision_not_visible", expected=receipt.version, seen=document.version)
            except DeployStoreError as e:
                logger.debug("visibility_poll_failed", error=e.message)

            if self.session.clock() - started >= timeout:
                raise TimeoutError(
                    f"Revision {receipt.version} not visible after {timeout:.0f}s",
                ).with_context(operation="wait_until_visible", url=self.read_url)
            await self.session.sleep(poll_interval)


__all__ = ["RemoteStore", "PublishTarget", "PublishReceipt"]
