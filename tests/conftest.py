"""
Shared pytest fixtures for deploystore tests.

Time is faked with :class:`FakeClock` (its ``sleep`` advances the clock),
HTTP with :class:`ScriptedTransport`. Both live in ``tests/_support/fakes.py``.

Usage:
    async def test_something(session, api):
        api.queue("GET", "/v2/user", ok({"user": {}}))
        pipeline = RequestPipeline(session, transport=api.transport)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from deploystore.core.events import EventRecorder
from deploystore.core.session import SyncSession
from deploystore.core.settings import DeployStoreSettings, clear_settings_cache
from tests._support.fakes import FakeClock, ScriptedTransport


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep DEPLOYSTORE_* variables from the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("DEPLOYSTORE_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> DeployStoreSettings:
    return DeployStoreSettings(
        _env_file=None,
        token="test_token_123",
        persistent_path=tmp_path / "cache.db",
        retry_attempts=3,
        retry_base_delay=1.0,
        calls_per_window=60,
        propagation_delay=2.0,
    )


@pytest.fixture
def session(settings: DeployStoreSettings, clock: FakeClock) -> SyncSession:
    return SyncSession.from_settings(settings, clock=clock, sleep=clock.sleep)


@pytest.fixture
def api() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def sample_document() -> dict[str, Any]:
    return {
        "projects": [{"id": "p1", "name": "Landing", "url": "https://landing.vercel.app"}],
        "folders": [{"name": "Offers", "special": True, "icon": "offers"}, {"name": "Clients"}],
        "offers": [{"id": "o1", "title": "Spring sale"}],
        "version": "1.0.0",
    }
