"""
Backup export and import of the shared document.

An export is the document's wire form plus an ``exportedAt`` ISO timestamp;
an import accepts any file whose content validates as a :class:`Document`
(extra keys such as ``exportedAt`` or ``cachedAt`` are carried along).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from deploystore.core.errors import StorageError
from deploystore.core.logging import get_logger
from deploystore.core.schema import Document, parse_document

logger = get_logger(__name__)

EXPORT_PREFIX = "deploystore-backup"


def default_export_name(clock: Callable[[], float] = time.time) -> str:
    """``deploystore-backup-<epoch ms>.json``"""
    return f"{EXPORT_PREFIX}-{int(clock() * 1000)}.json"


def export_document(
    document: Document,
    path: Path | str,
    *,
    clock: Callable[[], float] = time.time,
) -> Path:
    """Write ``document`` as pretty JSON stamped with ``exportedAt``.

    Raises:
        StorageError: the file cannot be written
    """
    path = Path(path)
    exported_at = datetime.fromtimestamp(clock(), tz=UTC).isoformat().replace("+00:00", "Z")
    stamped = document.model_copy(update={"exportedAt": exported_at})
    try:
        path.write_text(stamped.to_json(indent=2), encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Cannot write export to {path}", cause=e).with_context(
            operation="export_document",
        ) from e

    logger.info("document_exported", path=str(path), version=document.version)
    return path


def import_document(path: Path | str) -> Document:
    """Read and validate a backup file.

    Raises:
        StorageError: the file cannot be read
        SchemaError: the content is not valid JSON or not a valid document
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Cannot read import file {path}", cause=e).with_context(
            operation="import_document",
        ) from e

    document = parse_document(text)
    logger.info(
        "document_imported",
        path=str(path),
        version=document.version,
        projects=len(document.projects),
    )
    return document


__all__ = ["default_export_name", "export_document", "import_document", "EXPORT_PREFIX"]
