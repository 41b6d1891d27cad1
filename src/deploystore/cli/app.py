"""
Root Typer application for the deploystore CLI.

Each command opens the sync stack from settings, runs one coroutine and
renders the outcome with rich. Typed errors exit with status 1.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from typer import Typer

from deploystore.cli import utils
from deploystore.core.errors import DeployStoreError, StorageError
from deploystore.core.logging import configure_logging
from deploystore.core.settings import get_settings
from deploystore.sync.transfer import default_export_name, export_document, import_document

app = Typer(
    name="deploystore",
    help="deploystore — a shared JSON document published through a deployment platform.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from deploystore import __version__

        typer.echo(f"deploystore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override DEPLOYSTORE_LOG_LEVEL."),
) -> None:
    """deploystore CLI — ensure, load, save, export and import the shared document."""
    settings = get_settings()
    try:
        configure_logging(
            level=log_level or settings.log_level,
            json_format=settings.log_format == "json",
        )
    except DeployStoreError as e:
        utils.fail(e)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("ensure")
def ensure() -> None:
    """Create and seed the publish target if it does not exist."""

    async def run():
        async with utils.open_coordinator() as coordinator:
            return await coordinator.ensure_ready()

    try:
        target = asyncio.run(run())
    except DeployStoreError as e:
        utils.fail(e)
    state = "created" if target.created else "exists"
    utils.console.print(f"[green]✓[/green] Store [bold]{target.name}[/bold] {state} ({target.base_url})")


@app.command("load")
def load(
    json_out: bool = typer.Option(False, "--json", help="Print the full document as JSON."),
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the in-memory cache."),
) -> None:
    """Load the best available document (remote, then durable cache, then default)."""

    async def run():
        async with utils.open_coordinator() as coordinator:
            return await coordinator.load_all(force=force)

    try:
        result = asyncio.run(run())
    except DeployStoreError as e:
        utils.fail(e)
    if json_out:
        utils.print_json(result.document.to_payload())
    else:
        utils.print_summary(result.document, title=f"Document ({result.source.value})")
    if result.stale:
        reason = result.error.message if result.error else "remote unavailable"
        utils.err_console.print(f"[yellow]Using {result.source.value} data:[/yellow] {reason}")
    elif result.unsynced:
        utils.err_console.print("[yellow]Local changes have not been published yet.[/yellow]")


@app.command("save")
def save(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document JSON to publish."),
) -> None:
    """Replace the shared document with FILE."""
    try:
        document = import_document(file)
    except DeployStoreError as e:
        utils.fail(e)

    async def run():
        async with utils.open_coordinator() as coordinator:
            return await coordinator.save_all(document)

    try:
        receipt = asyncio.run(run())
    except DeployStoreError as e:
        if not isinstance(e, StorageError):
            utils.err_console.print("[yellow]Saved locally; remote publish failed.[/yellow]")
        utils.fail(e)
    utils.console.print(
        f"[green]✓[/green] Published version [bold]{receipt.version}[/bold]"
        f" (visible in ~{receipt.visible_after:g}s)"
    )


@app.command("export")
def export(
    path: Path | None = typer.Argument(None, help="Output file (default: deploystore-backup-<ms>.json)."),
) -> None:
    """Write the current document to a backup file."""

    async def run():
        async with utils.open_coordinator() as coordinator:
            return await coordinator.load_all()

    try:
        result = asyncio.run(run())
        written = export_document(result.document, path or Path(default_export_name()))
    except DeployStoreError as e:
        utils.fail(e)
    utils.console.print(f"[green]✓[/green] Exported {result.source.value} document to {written}")


@app.command("import")
def import_(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup file to import."),
    push: bool = typer.Option(False, "--push", help="Also publish the imported document."),
) -> None:
    """Validate a backup file and store it locally (optionally publishing it)."""
    try:
        document = import_document(file)
    except DeployStoreError as e:
        utils.fail(e)

    if not push:
        try:
            with utils.open_persistent(get_settings()) as cache:
                stored = cache.save_document(document)
                if stored:
                    cache.mark_pending(True)
        except DeployStoreError as e:
            utils.fail(e)
        if not stored:
            utils.err_console.print("[bold red]Error[/bold red]: durable cache quota exhausted")
            raise typer.Exit(code=1)
        utils.console.print(f"[green]✓[/green] Imported {file} into the local cache")
        return

    async def run():
        async with utils.open_coordinator() as coordinator:
            return await coordinator.save_all(document)

    try:
        receipt = asyncio.run(run())
    except DeployStoreError as e:
        utils.fail(e)
    utils.console.print(f"[green]✓[/green] Imported and published version [bold]{receipt.version}[/bold]")


@app.command("status")
def status(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show configuration and local sync state."""
    settings = get_settings()
    try:
        with utils.open_persistent(settings) as cache:
            cached = cache.load_document()
            pending = cache.has_pending()
    except DeployStoreError as e:
        utils.fail(e)

    data = {
        "store": settings.store_name,
        "store_url": settings.store_url,
        "authenticated": bool(settings.token_value),
        "team_id": settings.team_id or "-",
        "durable_cache": str(settings.persistent_path),
        "cached_version": cached.version if cached else "-",
        "pending_publish": pending,
    }
    if json_out:
        utils.print_json(data)
    else:
        utils.print_dict(data, title="Status")
