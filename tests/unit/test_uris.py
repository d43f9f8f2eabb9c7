"""
Unit tests for public uri pointers.

Tests cover:
- Destination validation
- Delete returning the prior pointer once and notifying
"""

import asyncio
import json

import httpx
import pytest

from cms.folio_server.compose.addressing import uris_key
from cms.folio_server.errors import ClientError, NotFoundError
from cms.folio_server.notify import HookDispatcher, WebhookNotifier
from cms.folio_server.publish import Site, SiteRegistry, UriService
from cms.folio_server.storage import InMemoryStorage

URI = uris_key("d.com", "d.com/about")


class TestUriService:
    """Tests for UriService."""

    @pytest.fixture
    def storage(self):
        """Create in-memory storage."""
        return InMemoryStorage()

    @pytest.fixture
    def uris(self, storage):
        """Create uri service without webhooks."""
        return UriService(storage)

    @pytest.mark.asyncio
    async def test_put_and_get(self, uris, storage):
        """Pointers are stored as plain text."""
        await uris.put(URI, "d.com/_pages/about")

        assert await uris.get(URI) == "d.com/_pages/about"
        assert await storage.get(URI) == "d.com/_pages/about"

    @pytest.mark.asyncio
    async def test_cannot_point_at_itself(self, uris):
        """Self-pointing uris are rejected."""
        with pytest.raises(ClientError, match="Cannot point uri at itself"):
            await uris.put(URI, URI)

    @pytest.mark.asyncio
    async def test_cannot_contain_quotes(self, uris):
        """Quoted destinations are rejected."""
        with pytest.raises(ClientError, match="cannot contain quotes"):
            await uris.put(URI, '"d.com/_pages/about"')

    @pytest.mark.asyncio
    async def test_cannot_point_at_published(self, uris):
        """Pointers name the latest page, never @published."""
        with pytest.raises(ClientError, match="propagating version"):
            await uris.put(URI, "d.com/_pages/about@published")

    @pytest.mark.asyncio
    async def test_delete_returns_old_value(self, uris):
        """delete returns the prior pointer and announces the public url."""
        dispatcher_events = []
        uris.dispatcher.subscribe("unpublish", lambda event, payload: dispatcher_events.append(payload))
        await uris.put(URI, "d.com/_pages/about")

        old = await uris.delete(URI)

        assert old == "d.com/_pages/about"
        assert dispatcher_events == [{"url": "d.com/about", "uri": "d.com/_pages/about"}]
        with pytest.raises(NotFoundError):
            await uris.get(URI)

    @pytest.mark.asyncio
    async def test_concurrent_deletes_pop_once(self, uris):
        """Of several concurrent deletes, exactly one gets the pointer."""
        await uris.put(URI, "d.com/_pages/about")

        results = await asyncio.gather(
            *(uris.delete(URI) for _ in range(5)), return_exceptions=True
        )

        assert [r for r in results if not isinstance(r, Exception)] == ["d.com/_pages/about"]
        assert sum(isinstance(r, NotFoundError) for r in results) == 4

    @pytest.mark.asyncio
    async def test_delete_missing(self, uris):
        """Deleting an absent pointer raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await uris.delete(URI)

    @pytest.mark.asyncio
    async def test_delete_notifies_site(self, storage):
        """The owning site's unpublished webhooks are called."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        site = Site(slug="d", host="d.com", webhooks={"unpublished": ["http://hooks.d.com/"]})
        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
        uris = UriService(storage, SiteRegistry([site]), HookDispatcher(), notifier)
        await uris.put(URI, "d.com/_pages/about")

        await uris.delete(URI)

        assert len(requests) == 1
        assert requests[0].headers["x-event"] == "unpublished"
        assert json.loads(requests[0].content) == {"url": "d.com/about"}
        await notifier.close()
