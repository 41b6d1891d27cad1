"""
Sync coordinator — ``load_all`` / ``save_all`` over remote store and caches.

Manifesto:
    Collaborators need two things: *some* usable document on every load, and
    a clear answer on every save. The coordinator composes the
    :class:`RemoteStore`, the in-memory :class:`LocalCache` and the durable
    :class:`PersistentCache` to give exactly that:

    - **load_all never raises:** remote → durable cache → empty default,
      and the result says which one was used
    - **save_all is durability-first:** the local copy is written before the
      remote publish is attempted, so a remote failure is partial success
    - **Observable:** every cycle publishes ``sync.*`` events; observers
      never influence control flow

Architecture:
    ::

        load_all(force=False)
          ├─ LocalCache hit (not forced)          → MEMORY
          ├─ RemoteStore.read_document()          → REMOTE  (caches refreshed)
          │    └─ pending local save on disk      → LOCAL   (unsynced)
          ├─ PersistentCache.load_document()      → CACHED  (stale)
          └─ Document.empty()                     → DEFAULT (stale)

        save_all(doc)
          ├─ PersistentCache.save_document(doc)   (authoritative locally)
          ├─ LocalCache.set(read_url, doc)
          └─ RemoteStore.write_document(doc)      → PublishReceipt | raises

    Sync cycle state: IDLE → SYNCING → {SUCCESS, ERROR} → IDLE

Examples:
    >>> coordinator = SyncCoordinator(session, store, local, persistent)
    >>> result = await coordinator.load_all()
    >>> if result.stale:
    ...     warn("Using cached data")
    >>> await coordinator.save_all(result.document)

Tags:
    deploystore, sync, coordinator, fallback, cache, eventual-consistency

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from deploystore.core.cache import LocalCache
from deploystore.core.errors import DeployStoreError, StorageError
from deploystore.core.events import (
    SYNC_FAILED,
    SYNC_PROGRESS,
    SYNC_STARTED,
    SYNC_SUCCEEDED,
    EventHandler,
)
from deploystore.core.logging import LogContext, get_logger
from deploystore.core.persistent import PersistentCache
from deploystore.core.schema import Document
from deploystore.core.session import SyncSession
from deploystore.remote.store import PublishReceipt, PublishTarget, RemoteStore

logger = get_logger(__name__)

SOURCE = "coordinator"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class DocumentSource(str, Enum):
    """Where a loaded document came from."""

    REMOTE = "remote"
    MEMORY = "memory"
    LOCAL = "local"      # saved locally, remote publish still pending
    CACHED = "cached"
    DEFAULT = "default"


@dataclass
class LoadResult:
    """A loaded document plus its provenance.

    Attributes:
        document: The usable document
        source: Which tier produced it
        error: The remote failure behind a degraded load, if any
    """

    document: Document
    source: DocumentSource
    error: DeployStoreError | None = None

    @property
    def stale(self) -> bool:
        """True when the remote store could not be read and a fallback was served."""
        return self.source in (DocumentSource.CACHED, DocumentSource.DEFAULT)

    @property
    def unsynced(self) -> bool:
        """True when the document holds local changes not yet published."""
        return self.source is DocumentSource.LOCAL


class SyncCoordinator:
    """Composes the remote store and both caches into load/save operations."""

    def __init__(
        self,
        session: SyncSession,
        store: RemoteStore,
        local_cache: LocalCache,
        persistent_cache: PersistentCache,
    ):
        self.session = session
        self.store = store
        self.local_cache = local_cache
        self.persistent_cache = persistent_cache
        self.state = SyncState.IDLE
        self.last_error: DeployStoreError | None = None

    async def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Subscribe to lifecycle events (``sync.*``, ``rate_limit.wait``...)."""
        return await self.session.events.subscribe(pattern, handler)

    async def ensure_ready(self) -> PublishTarget:
        return await self.store.ensure_store_exists()

    # ── Load ─────────────────────────────────────────────────────────────

    async def load_all(self, *, force: bool = False) -> LoadResult:
        """Return the best available document. Never raises a sync error."""
        key = self.store.read_url

        if not force:
            cached = self.local_cache.get(key)
            if cached is not None:
                logger.debug("document_loaded", source=DocumentSource.MEMORY.value)
                return LoadResult(cached, DocumentSource.MEMORY)

        try:
            document = await self.store.read_document()
        except DeployStoreError as e:
            logger.warning("remote_load_failed", error_type=type(e).__name__, error=e.message)
            return self._fallback(e)

        pending = self._pending_document()
        if pending is not None:
            logger.warning("local_changes_pending", remote_version=document.version)
            self.local_cache.set(key, pending)
            return LoadResult(pending, DocumentSource.LOCAL)

        self.local_cache.set(key, document)
        self._persist(document)
        logger.info("document_loaded", source=DocumentSource.REMOTE.value, version=document.version)
        return LoadResult(document, DocumentSource.REMOTE)

    def _fallback(self, error: DeployStoreError) -> LoadResult:
        try:
            cached = self.persistent_cache.load_document()
        except StorageError as e:
            logger.error("persistent_load_failed", error=e.message)
            cached = None

        if cached is not None:
            logger.warning("using_cached_document", version=cached.version)
            return LoadResult(cached, DocumentSource.CACHED, error)

        logger.warning("using_default_document")
        return LoadResult(Document.empty(), DocumentSource.DEFAULT, error)

    def _pending_document(self) -> Document | None:
        try:
            if not self.persistent_cache.has_pending():
                return None
            return self.persistent_cache.load_document()
        except StorageError as e:
            logger.error("persistent_load_failed", error=e.message)
            return None

    @property
    def pending(self) -> bool:
        """True when the last save reached the durable cache but not the remote store."""
        try:
            return self.persistent_cache.has_pending()
        except StorageError:
            return False

    def _persist(self, document: Document) -> bool:
        try:
            stored = self.persistent_cache.save_document(document)
        except StorageError as e:
            logger.error("persistent_save_failed", error=e.message)
            return False
        if not stored:
            logger.error("persistent_save_failed", error="quota exhausted after purge")
        return stored

    def _set_pending(self, pending: bool) -> None:
        try:
            stored = self.persistent_cache.mark_pending(pending)
        except StorageError as e:
            logger.error("persistent_pending_flag_failed", pending=pending, error=e.message)
            return
        if not stored:
            logger.error("persistent_pending_flag_failed", pending=pending, error="quota exhausted after purge")

    async def refresh(self) -> LoadResult:
        """Force a remote read as a full sync cycle with lifecycle events."""
        async with LogContext(sync_operation="refresh"):
            await self._begin("refresh")
            result = await self.load_all(force=True)
            if result.source in (DocumentSource.REMOTE, DocumentSource.LOCAL):
                await self._succeed("refresh", document_source=result.source.value)
            else:
                await self._fail("refresh", result.error, document_source=result.source.value)
            return result

    # ── Save ─────────────────────────────────────────────────────────────

    async def save_all(self, document: Document) -> PublishReceipt:
        """Persist locally, then publish remotely.

        Raises:
            DeployStoreError: the remote publish failed. The document is
                already durable locally and will be served by ``load_all``
                fallbacks until the next successful remote write.
        """
        async with LogContext(sync_operation="save"):
            await self._begin("save")

            if self._persist(document):
                self._set_pending(True)
            self.local_cache.set(self.store.read_url, document)
            await self._progress("save", 1, 2, step="local")

            try:
                receipt = await self.store.write_document(document)
            except DeployStoreError as e:
                logger.error("remote_save_failed", error_type=type(e).__name__, error=e.message)
                await self._fail("save", e)
                raise

            published = document.model_copy(update={"version": receipt.version})
            self.local_cache.set(self.store.read_url, published)
            self._persist(published)
            self._set_pending(False)
            await self._progress("save", 2, 2, step="remote")
            await self._succeed("save", version=receipt.version, deployment_id=receipt.deployment_id)
            return receipt

    # ── State machine & events ───────────────────────────────────────────

    async def _begin(self, operation: str) -> None:
        self.state = SyncState.SYNCING
        await self.session.emit(SYNC_STARTED, SOURCE, operation=operation)

    async def _progress(self, operation: str, n: int, total: int, **payload: Any) -> None:
        await self.session.emit(SYNC_PROGRESS, SOURCE, operation=operation, n=n, total=total, **payload)

    async def _succeed(self, operation: str, **payload: Any) -> None:
        self.state = SyncState.SUCCESS
        self.last_error = None
        await self.session.emit(SYNC_SUCCEEDED, SOURCE, operation=operation, **payload)
        self.state = SyncState.IDLE

    async def _fail(self, operation: str, error: DeployStoreError | None, **payload: Any) -> None:
        self.state = SyncState.ERROR
        self.last_error = error
        await self.session.emit(
            SYNC_FAILED,
            SOURCE,
            operation=operation,
            reason=error.message if error else "remote unavailable",
            error_type=type(error).__name__ if error else None,
            **payload,
        )
        self.state = SyncState.IDLE


__all__ = ["SyncCoordinator", "SyncState", "DocumentSource", "LoadResult"]
