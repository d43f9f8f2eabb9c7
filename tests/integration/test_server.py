"""
Integration tests for a wired Folio server.

Tests cover:
- Round trip: put, publish, compose on SQLite storage
- Layout and page publishing together
- Scheduled publishing through the real page service
- Webhooks via the server's notifier
- Server lifecycle and storage selection
"""

import asyncio
import json
import tempfile

import httpx
import pytest

from cms.folio_server.compose.addressing import COMPONENTS, uris_key
from cms.folio_server.config import (
    ScheduleConfig,
    ServerConfig,
    StorageBackend,
    StorageConfig,
)
from cms.folio_server.main import Server
from cms.folio_server.publish import Site
from cms.folio_server.records import HookRegistry, RequestContext, TypeHooks
from cms.folio_server.storage import InMemoryStorage, SqliteStorage

PREFIX = "example.com"
LAYOUT = f"{PREFIX}/_layouts/main"
PAGE = f"{PREFIX}/_pages/home"
ARTICLE = f"{PREFIX}/_components/article/instances/1"


class TestServerIntegration:
    """End-to-end flows across the wired services."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def requests(self):
        """Webhook requests received by the mock transport."""
        return []

    @pytest.fixture
    def config(self, data_dir):
        """SQLite-backed configuration with the schedule loop off."""
        return ServerConfig(
            storage=StorageConfig(backend=StorageBackend.SQLITE, data_dir=data_dir, wal_mode=False),
            schedule=ScheduleConfig(enabled=False),
        )

    @pytest.fixture
    def server(self, config, requests):
        """Create server with one site, one render hook and mocked webhooks."""

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        hooks = HookRegistry()
        hooks.register(
            COMPONENTS,
            "article",
            TypeHooks(render=lambda address, data, context: {**data, "wordCount": len(data["body"].split())}),
        )
        site = Site(slug="www", host=PREFIX, webhooks={"published": ["http://hooks.example.com/"]})
        return Server(config, hooks=hooks, sites=[site], webhook_transport=httpx.MockTransport(handler))

    async def build_site(self, server):
        await server.layouts.put(LAYOUT, {"main": "main"})
        await server.components.put(
            ARTICLE,
            {
                "body": "hello folio world",
                "byline": {"_ref": f"{PREFIX}/_components/byline/instances/1", "name": "Ada"},
            },
        )
        await server.pages.put(PAGE, {"layout": LAYOUT, "url": "http://example.com/", "main": [ARTICLE]})

    @pytest.mark.asyncio
    async def test_initialize_wires_sqlite(self, server):
        """initialize builds every service on the configured engine."""
        await server.initialize()

        assert isinstance(server.storage, SqliteStorage)
        assert server.hooks.frozen
        assert server.pages.components is server.components
        await server.stop()

    @pytest.mark.asyncio
    async def test_publish_and_compose(self, server, requests):
        """A published page composes from published records only."""
        await server.initialize()
        await self.build_site(server)

        await server.layouts.publish(LAYOUT)
        published = await server.pages.publish(PAGE, context=RequestContext(user="editor"))

        # Later edits to the latest copy do not leak into the published page
        await server.components.put(ARTICLE, {"body": "draft", "byline": {"_ref": f"{PREFIX}/_components/byline/instances/1"}})

        composed = await server.pages.compose(f"{PAGE}@published")
        article = composed["main"][0]

        assert published["layout"] == f"{LAYOUT}@published"
        assert article["_ref"] == f"{ARTICLE}@published"
        assert article["body"] == "hello folio world"
        assert article["wordCount"] == 3
        assert article["byline"]["name"] == "Ada"
        assert await server.storage.get(uris_key(PREFIX, "example.com/")) == PAGE
        assert len(requests) == 1
        assert requests[0].headers["x-event"] == "published"
        await server.stop()

    @pytest.mark.asyncio
    async def test_round_trip(self, server):
        """get + resolve after put gives back the nested document."""
        await server.initialize()
        original = {
            "body": "one two",
            "byline": {"_ref": f"{PREFIX}/_components/byline/instances/9", "name": "Grace"},
        }

        await server.components.put(ARTICLE, json.loads(json.dumps(original)))
        data = await server.components.get(ARTICLE, RequestContext(call_hooks=False))
        await server.components.resolve(data, RequestContext(call_hooks=False))

        assert data == original
        await server.stop()

    @pytest.mark.asyncio
    async def test_scheduled_publish(self, server):
        """Due schedule entries publish through the page service."""
        await server.initialize()
        await self.build_site(server)
        await server.layouts.publish(LAYOUT)

        await server.scheduler.schedule(f"{PREFIX}/_schedule", {"at": 1, "publish": f"http://{PAGE}"})
        count = await server.scheduler.run_once()

        assert count == 1
        page = json.loads(await server.storage.get(f"{PAGE}@published"))
        assert page["url"] == "http://example.com/"
        await server.stop()

    @pytest.mark.asyncio
    async def test_use_storage_before_initialize(self, config):
        """A custom engine can be plugged in until the server is initialized."""
        server = Server(config, sites=[])
        engine = InMemoryStorage()

        server.use_storage(engine)
        await server.initialize()

        assert server.storage is engine
        with pytest.raises(RuntimeError, match="Cannot swap the storage engine"):
            server.use_storage(InMemoryStorage())
        await server.stop()

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, config):
        """start() runs until shutdown is requested."""
        server = Server(config, sites=[])

        task = asyncio.create_task(server.start())
        for _ in range(50):
            if server.running:
                break
            await asyncio.sleep(0.01)
        assert server.running

        server.request_shutdown()
        await asyncio.wait_for(task, timeout=1.0)
        await server.stop()

        assert not server.running
