"""
CLI utility helpers — wiring the sync stack and rendering results.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.table import Table

from deploystore.core.cache import LocalCache
from deploystore.core.errors import DeployStoreError
from deploystore.core.persistent import PersistentCache
from deploystore.core.schema import Document
from deploystore.core.session import SyncSession
from deploystore.core.settings import DeployStoreSettings, get_settings
from deploystore.remote.pipeline import RequestPipeline
from deploystore.remote.platform import PlatformClient
from deploystore.remote.store import RemoteStore
from deploystore.sync.coordinator import SyncCoordinator

console = Console()
err_console = Console(stderr=True)


# ── Stack wiring ─────────────────────────────────────────────────────────


def open_persistent(settings: DeployStoreSettings, **kwargs: Any) -> PersistentCache:
    """Open the durable cache configured in settings."""
    return PersistentCache(settings.persistent_path, max_bytes=settings.persistent_max_bytes, **kwargs)


def build_coordinator(
    settings: DeployStoreSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    session: SyncSession | None = None,
) -> SyncCoordinator:
    """Assemble session → pipeline → platform → store → coordinator from settings."""
    session = session or SyncSession.from_settings(settings)
    pipeline = RequestPipeline(session, transport=transport)
    store = RemoteStore(PlatformClient(pipeline), transport=transport)
    local = LocalCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_bytes=settings.cache_max_bytes,
        clock=session.clock,
    )
    return SyncCoordinator(session, store, local, open_persistent(settings, clock=session.clock))


async def close_coordinator(coordinator: SyncCoordinator) -> None:
    await coordinator.store.platform.pipeline.aclose()
    await coordinator.store.aclose()
    coordinator.persistent_cache.close()
    await coordinator.session.events.close()


@asynccontextmanager
async def open_coordinator(
    settings: DeployStoreSettings | None = None,
) -> AsyncIterator[SyncCoordinator]:
    """Yield a ready coordinator and release its clients and cache on exit."""
    coordinator = build_coordinator(settings or get_settings())
    try:
        yield coordinator
    finally:
        await close_coordinator(coordinator)


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: DeployStoreError) -> None:
    """Print a typed error and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {error.message}")
    raise typer.Exit(code=1)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_summary(document: Document, *, title: str = "") -> None:
    """Render collection counts and the revision as a Rich table."""
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    table.add_column("collection")
    table.add_column("items", justify="right")
    for name, items in document.content().items():
        table.add_row(name, str(len(items)))
    console.print(table)
    console.print(f"[dim]version {document.version}[/dim]")


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
