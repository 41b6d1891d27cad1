"""
CLI layer for deploystore.

Handles only terminal transport: argument parsing, coloured output and
wiring the sync stack from settings.

Entry point::

    deploystore --help
"""

from deploystore.cli.app import app

__all__ = ["app"]
