"""
deploystore — a shared JSON document persisted through a deployment platform.

The platform has no database, so the document is published as the single
file of a public deployment and read back over HTTP. Around that, the
package layers rate limiting, retry with backoff, an in-memory LRU cache,
a durable SQLite cache and a coordinator that always returns a usable
document.

Layers::

    core/        errors, settings, logging, schema, events, session, caches
    execution/   rate-limit window, exponential backoff
    remote/      request pipeline, platform endpoints, remote store
    sync/        load/save coordinator, backup import/export
    cli/         typer application
"""

__version__ = "0.1.0"

from deploystore.core.errors import DeployStoreError
from deploystore.core.schema import Document
from deploystore.core.session import SyncSession
from deploystore.core.settings import DeployStoreSettings, get_settings
from deploystore.sync.coordinator import DocumentSource, LoadResult, SyncCoordinator

__all__ = [
    "__version__",
    "DeployStoreError",
    "DeployStoreSettings",
    "Document",
    "DocumentSource",
    "LoadResult",
    "SyncCoordinator",
    "SyncSession",
    "get_settings",
]
