"""Tests for deploystore.sync.coordinator — fallback loads and durable saves."""

import httpx
import pytest

from deploystore.core.cache import LocalCache
from deploystore.core.errors import NetworkError, ServerError
from deploystore.core.events import SYNC_FAILED, SYNC_PROGRESS, SYNC_STARTED, SYNC_SUCCEEDED
from deploystore.core.persistent import PersistentCache
from deploystore.core.schema import Document, content_equal
from deploystore.remote.pipeline import RequestPipeline
from deploystore.remote.platform import PlatformClient
from deploystore.remote.store import RemoteStore
from deploystore.sync.coordinator import DocumentSource, SyncCoordinator, SyncState
from tests._support.fakes import STORE_HOST, PublishedSite


@pytest.fixture
async def coordinator(session, settings, api, clock):
    pipeline = RequestPipeline(session, transport=api.transport)
    store = RemoteStore(PlatformClient(pipeline), transport=api.transport)
    local = LocalCache(ttl_seconds=settings.cache_ttl_seconds, clock=clock)
    persistent = PersistentCache(settings.persistent_path, clock=clock)
    yield SyncCoordinator(session, store, local, persistent)
    persistent.close()
    await store.aclose()
    await pipeline.aclose()


def remote_down(api):
    api.queue("GET", "/data.json", httpx.ConnectError("offline"), host=STORE_HOST)
    api.queue("POST", "/v13/deployments", httpx.ConnectError("offline"))


class TestLoadAll:
    async def test_remote_document(self, coordinator, api, sample_document):
        PublishedSite(api, sample_document)

        result = await coordinator.load_all()

        assert result.source is DocumentSource.REMOTE
        assert not result.stale
        assert result.document.projects == sample_document["projects"]
        assert coordinator.persistent_cache.load_document() is not None

    async def test_second_load_served_from_memory(self, coordinator, api, sample_document):
        PublishedSite(api, sample_document)
        await coordinator.load_all()

        result = await coordinator.load_all()

        assert result.source is DocumentSource.MEMORY
        assert len(api.calls("GET", "/data.json", host=STORE_HOST)) == 1

    async def test_force_bypasses_memory(self, coordinator, api, sample_document):
        PublishedSite(api, sample_document)
        await coordinator.load_all()
        result = await coordinator.load_all(force=True)
        assert result.source is DocumentSource.REMOTE

    async def test_memory_entry_expires(self, coordinator, api, clock, sample_document):
        PublishedSite(api, sample_document)
        await coordinator.load_all()
        clock.advance(301)
        assert (await coordinator.load_all()).source is DocumentSource.REMOTE

    async def test_both_reads_fail_returns_persistent_copy(self, coordinator, api, sample_document):
        coordinator.persistent_cache.save_document(Document.model_validate(sample_document))
        api.queue(
            "GET",
            "/data.json",
            httpx.Response(500, text="down"),
            httpx.Response(502, text="still down"),
            host=STORE_HOST,
        )

        result = await coordinator.load_all()

        assert result.source is DocumentSource.CACHED
        assert result.stale
        assert isinstance(result.error, ServerError)
        assert result.document.projects == sample_document["projects"]

    async def test_no_cache_returns_default(self, coordinator, api):
        remote_down(api)

        result = await coordinator.load_all()

        assert result.source is DocumentSource.DEFAULT
        assert isinstance(result.error, NetworkError)
        assert content_equal(result.document, Document.empty())

    async def test_invalid_remote_payload_falls_back(self, coordinator, api):
        api.queue("GET", "/data.json", httpx.Response(200, json={"not": "a document"}), host=STORE_HOST)
        result = await coordinator.load_all()
        assert result.source is DocumentSource.DEFAULT


class TestSaveAll:
    async def test_save_publishes_and_persists(self, coordinator, api, sample_document):
        site = PublishedSite(api)
        document = Document.model_validate(sample_document)

        receipt = await coordinator.save_all(document)

        assert site.deployments == 1
        assert receipt.visible_after == 2.0
        assert content_equal(coordinator.persistent_cache.load_document(), document)
        assert coordinator.pending is False
        assert coordinator.state is SyncState.IDLE

    async def test_remote_failure_keeps_local_copy(self, coordinator, api, sample_document):
        remote_down(api)
        document = Document.model_validate(sample_document)

        with pytest.raises(NetworkError):
            await coordinator.save_all(document)

        assert coordinator.pending is True
        assert isinstance(coordinator.last_error, NetworkError)

        result = await coordinator.load_all(force=True)
        assert result.source is DocumentSource.CACHED
        assert content_equal(result.document, document)

    async def test_load_after_failed_save_is_served_from_memory(self, coordinator, api, sample_document):
        remote_down(api)
        document = Document.model_validate(sample_document)
        with pytest.raises(NetworkError):
            await coordinator.save_all(document)

        result = await coordinator.load_all()

        assert result.source is DocumentSource.MEMORY
        assert content_equal(result.document, document)

    async def test_pending_local_changes_win_over_older_remote(self, coordinator, api, sample_document):
        remote_down(api)
        local = Document.model_validate(sample_document)
        with pytest.raises(NetworkError):
            await coordinator.save_all(local)

        api.routes.clear()
        PublishedSite(api, Document.empty().to_payload())

        result = await coordinator.load_all(force=True)

        assert result.source is DocumentSource.LOCAL
        assert result.unsynced
        assert content_equal(result.document, local)

    async def test_successful_save_clears_pending(self, coordinator, api, sample_document):
        remote_down(api)
        document = Document.model_validate(sample_document)
        with pytest.raises(NetworkError):
            await coordinator.save_all(document)

        api.routes.clear()
        PublishedSite(api)
        await coordinator.save_all(document)

        assert coordinator.pending is False
        assert (await coordinator.load_all(force=True)).source is DocumentSource.REMOTE


class TestEvents:
    async def test_save_lifecycle_events(self, coordinator, api, recorder):
        PublishedSite(api)
        await coordinator.subscribe("sync.*", recorder)

        await coordinator.save_all(Document.empty())

        assert recorder.types == [SYNC_STARTED, SYNC_PROGRESS, SYNC_PROGRESS, SYNC_SUCCEEDED]
        progress = [(e.payload["n"], e.payload["total"]) for e in recorder.events if e.event_type == SYNC_PROGRESS]
        assert progress == [(1, 2), (2, 2)]

    async def test_failed_save_event(self, coordinator, api, recorder):
        remote_down(api)
        await coordinator.subscribe(SYNC_FAILED, recorder)

        with pytest.raises(NetworkError):
            await coordinator.save_all(Document.empty())

        event = recorder.events[0]
        assert event.payload["operation"] == "save"
        assert event.payload["error_type"] == "NetworkError"
        assert coordinator.state is SyncState.IDLE

    async def test_broken_observer_does_not_affect_save(self, coordinator, api):
        site = PublishedSite(api)

        async def broken(event):
            raise RuntimeError("ui crashed")

        await coordinator.subscribe("*", broken)
        await coordinator.save_all(Document.empty())
        assert site.deployments == 1

    async def test_refresh_success_and_failure(self, coordinator, api, recorder, sample_document):
        await coordinator.subscribe("sync.*", recorder)
        PublishedSite(api, sample_document)
        assert (await coordinator.refresh()).source is DocumentSource.REMOTE

        api.routes.clear()
        remote_down(api)
        result = await coordinator.refresh()

        assert result.source is DocumentSource.CACHED
        assert recorder.types == [SYNC_STARTED, SYNC_SUCCEEDED, SYNC_STARTED, SYNC_FAILED]
        assert recorder.events[-1].payload["document_source"] == "cached"


class TestEnsureReady:
    async def test_delegates_to_store(self, coordinator, api):
        api.queue("GET", "/v9/projects/deploydatasave", httpx.Response(200, json={"id": "prj_1"}))
        target = await coordinator.ensure_ready()
        assert target.created is False


class TestCachedCopies:
    async def test_edits_to_loaded_document_do_not_leak_into_cache(self, coordinator, api, sample_document):
        PublishedSite(api, sample_document)
        first = await coordinator.load_all()

        first.document.projects.append({"id": "scratch"})
        second = await coordinator.load_all()

        assert second.source is DocumentSource.MEMORY
        assert second.document.projects == sample_document["projects"]

    async def test_edits_after_save_do_not_leak_into_cache(self, coordinator, api, sample_document):
        PublishedSite(api)
        document = Document.model_validate(sample_document)
        await coordinator.save_all(document)

        document.offers.clear()

        assert (await coordinator.load_all()).document.offers == sample_document["offers"]

    async def test_caches_hold_published_revision(self, coordinator, api, sample_document):
        PublishedSite(api)

        receipt = await coordinator.save_all(Document.model_validate(sample_document))

        assert (await coordinator.load_all()).document.version == receipt.version
        assert coordinator.persistent_cache.load_document().version == receipt.version


class TestDurableQuota:
    @pytest.fixture
    async def tight_coordinator(self, session, settings, api, clock, sample_document):
        document = Document.model_validate(sample_document)
        with PersistentCache(":memory:", clock=clock) as sizing:
            sizing.save_document(document)
            document_bytes = sizing.stored_bytes()

        pipeline = RequestPipeline(session, transport=api.transport)
        store = RemoteStore(PlatformClient(pipeline), transport=api.transport)
        persistent = PersistentCache(
            settings.persistent_path, max_bytes=document_bytes + 2, clock=clock
        )
        yield SyncCoordinator(session, store, LocalCache(clock=clock), persistent)
        persistent.close()
        await store.aclose()
        await pipeline.aclose()

    async def test_pending_flag_never_evicts_saved_document(self, tight_coordinator, api, sample_document):
        remote_down(api)
        document = Document.model_validate(sample_document)

        with pytest.raises(NetworkError):
            await tight_coordinator.save_all(document)

        assert "deploystore.document" in tight_coordinator.persistent_cache.keys()
        result = await tight_coordinator.load_all(force=True)
        assert result.source is DocumentSource.CACHED
        assert content_equal(result.document, document)
