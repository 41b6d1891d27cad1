"""Tests for deploystore.remote.store — the deployment-backed document store."""

import json

import httpx
import pytest

from deploystore.core.errors import (
    ClientError,
    ConflictError,
    NetworkError,
    SchemaError,
    ServerError,
    TimeoutError,
)
from deploystore.core.schema import Document, content_equal
from deploystore.remote.pipeline import RequestPipeline
from deploystore.remote.platform import PlatformClient
from deploystore.remote.store import RemoteStore
from tests._support.fakes import STORE_HOST, PublishedSite, error, ok


@pytest.fixture
async def store(session, api):
    pipeline = RequestPipeline(session, transport=api.transport)
    remote = RemoteStore(PlatformClient(pipeline), transport=api.transport)
    yield remote
    await remote.aclose()
    await pipeline.aclose()


class TestReadDocument:
    async def test_reads_with_cache_buster(self, store, api, sample_document, clock):
        PublishedSite(api, sample_document)

        document = await store.read_document()

        assert document.projects == sample_document["projects"]
        request = api.calls("GET", "/data.json", host=STORE_HOST)[0]
        assert request.url.params["t"] == str(int(clock() * 1000))
        assert "Authorization" not in request.headers

    async def test_public_reads_skip_rate_limit(self, store, session, api, sample_document):
        PublishedSite(api, sample_document)
        await store.read_document()
        assert session.rate_limit.total_acquired == 0

    async def test_falls_back_to_plain_url(self, store, api, sample_document):
        def serve(request):
            if "t" in request.url.params:
                return httpx.Response(503, text="edge error")
            return httpx.Response(200, json=sample_document)

        api.queue("GET", "/data.json", serve, host=STORE_HOST)

        document = await store.read_document()

        assert document.offers == sample_document["offers"]
        assert len(api.calls("GET", "/data.json", host=STORE_HOST)) == 2

    async def test_both_reads_fail_raises_primary_error(self, store, api):
        api.queue(
            "GET",
            "/data.json",
            httpx.Response(500, text="first"),
            httpx.ConnectError("second"),
            host=STORE_HOST,
        )
        with pytest.raises(ServerError):
            await store.read_document()

    async def test_transport_error_is_network_error(self, store, api):
        api.queue("GET", "/data.json", httpx.ConnectError("offline"), host=STORE_HOST)
        with pytest.raises(NetworkError):
            await store.read_document()

    async def test_invalid_payload_is_schema_error(self, store, api):
        api.queue("GET", "/data.json", httpx.Response(200, json={"projects": []}), host=STORE_HOST)
        with pytest.raises(SchemaError):
            await store.read_document()

    async def test_read_url(self, store):
        assert store.read_url == f"https://{STORE_HOST}/data.json"


class TestWriteDocument:
    async def test_publishes_deployment_payload(self, store, api, sample_document):
        site = PublishedSite(api)

        receipt = await store.write_document(Document.model_validate(sample_document))

        body = json.loads(api.calls("POST", "/v13/deployments")[0].content)
        assert body["name"] == "deploydatasave"
        assert body["target"] == "production"
        assert body["public"] is True
        assert body["files"][0]["file"] == "data.json"
        published = json.loads(site.published)
        assert published["version"] == receipt.version
        assert published["projects"] == sample_document["projects"]

    async def test_receipt_states_visibility(self, store, api, clock, sample_document):
        PublishedSite(api)
        receipt = await store.write_document(Document.model_validate(sample_document))
        assert receipt.deployment_id == "dpl_1"
        assert receipt.accepted_at == clock()
        assert receipt.visible_after == 2.0
        assert receipt.ready_at == clock() + 2.0

    async def test_each_write_gets_a_new_revision(self, store, api):
        PublishedSite(api)
        first = await store.write_document(Document.empty())
        second = await store.write_document(Document.empty())
        assert first.version != second.version
        assert first.version.split("-")[0] == str(int(store.session.clock() * 1000))

    async def test_does_not_mutate_input(self, store, api):
        PublishedSite(api)
        document = Document.empty()
        await store.write_document(document)
        assert document.version == "1.0.0"

    async def test_expected_version_mismatch_raises_conflict(self, store, api, sample_document):
        site = PublishedSite(api, {**sample_document, "version": "rev-current"})
        with pytest.raises(ConflictError):
            await store.write_document(Document.empty(), expected_version="rev-stale")
        assert site.deployments == 0

    async def test_expected_version_match_publishes(self, store, api, sample_document):
        site = PublishedSite(api, {**sample_document, "version": "rev-current"})
        await store.write_document(Document.empty(), expected_version="rev-current")
        assert site.deployments == 1


class TestRoundTrip:
    async def test_read_after_propagation_delay_returns_written_content(
        self, store, api, clock, sample_document
    ):
        PublishedSite(api)
        written = Document.model_validate(sample_document)

        receipt = await store.write_document(written)
        read_back = await store.read_document()

        assert content_equal(read_back, written)
        assert read_back.version == receipt.version
        assert clock.sleeps == [2.0]

    async def test_no_propagation_wait_once_delay_elapsed(self, store, api, clock):
        PublishedSite(api)
        await store.write_document(Document.empty())
        clock.advance(5)
        await store.read_document()
        assert clock.sleeps == []

    async def test_wait_until_visible(self, store, api, clock):
        site = PublishedSite(api, {"projects": [], "folders": [], "offers": [], "version": "old"})
        receipt = await store.write_document(Document.empty())
        published = site.published
        site.published = json.dumps({"projects": [], "folders": [], "offers": [], "version": "old"})

        reads = 0
        original_serve = site._serve

        def lagging(request):
            nonlocal reads
            reads += 1
            if reads >= 2:
                site.published = published
            return original_serve(request)

        api.routes[("GET", f"{STORE_HOST}/data.json")] = [lagging]

        document = await store.wait_until_visible(receipt, poll_interval=1)

        assert document.version == receipt.version
        assert reads == 2

    async def test_wait_until_visible_times_out(self, store, api):
        site = PublishedSite(api)
        receipt = await store.write_document(Document.empty())
        site.published = json.dumps({"projects": [], "folders": [], "offers": [], "version": "old"})

        with pytest.raises(TimeoutError):
            await store.wait_until_visible(receipt, timeout=5, poll_interval=1)


class TestEnsureStoreExists:
    async def test_existing_store(self, store, api):
        api.queue("GET", "/v9/projects/deploydatasave", ok({"id": "prj_1"}))
        target = await store.ensure_store_exists()
        assert target.created is False
        assert api.calls("POST", "/v9/projects") == []

    async def test_creates_and_seeds_missing_store(self, store, api):
        api.queue("GET", "/v9/projects/deploydatasave", error(404, "Project not found"))
        api.queue("POST", "/v9/projects", ok({"id": "prj_1"}))
        site = PublishedSite(api)

        target = await store.ensure_store_exists()

        assert target.created is True
        seeded = json.loads(site.published)
        assert seeded["folders"] == [{"name": "Offers", "special": True, "icon": "offers"}]
        assert seeded["projects"] == [] and seeded["offers"] == []

    async def test_already_exists_on_create_is_success(self, store, api):
        api.queue("GET", "/v9/projects/deploydatasave", error(404, "Project not found"))
        api.queue("POST", "/v9/projects", error(400, "A project with this name already exists"))
        site = PublishedSite(api)

        target = await store.ensure_store_exists()

        assert target.created is False
        assert site.deployments == 0

    async def test_conflict_on_create_is_success(self, store, api):
        api.queue("GET", "/v9/projects/deploydatasave", error(404, "Project not found"))
        api.queue("POST", "/v9/projects", error(409, "conflict"))
        target = await store.ensure_store_exists()
        assert target.name == "deploydatasave"

    async def test_other_client_errors_propagate(self, store, api):
        api.queue("GET", "/v9/projects/deploydatasave", error(404, "Project not found"))
        api.queue("POST", "/v9/projects", error(400, "Invalid project name"))
        with pytest.raises(ClientError, match="Invalid project name"):
            await store.ensure_store_exists()
