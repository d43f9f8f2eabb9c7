"""
Unit tests for notifications.

Tests cover:
- HookDispatcher fan-out, wildcard subscribers and failure isolation
- WebhookNotifier requests
"""

import json
import logging

import httpx
import pytest

from cms.folio_server.notify import ALL_EVENTS, HookDispatcher, WebhookNotifier
from cms.folio_server.publish import Site


class TestHookDispatcher:
    """Tests for HookDispatcher."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        """Both plain and coroutine subscribers receive the payload."""
        dispatcher = HookDispatcher()
        received = []

        async def on_publish(event, payload):
            received.append(("async", payload))

        dispatcher.subscribe("publishPage", lambda event, payload: received.append(("sync", payload)))
        dispatcher.subscribe("publishPage", on_publish)

        tasks = dispatcher.emit("publishPage", {"uri": "a"})
        await dispatcher.drain()

        assert len(tasks) == 1
        assert received == [("sync", {"uri": "a"}), ("async", {"uri": "a"})]

    @pytest.mark.asyncio
    async def test_wildcard(self):
        """ALL_EVENTS subscribers see every event."""
        dispatcher = HookDispatcher()
        seen = []
        dispatcher.subscribe(ALL_EVENTS, lambda event, payload: seen.append(event))

        dispatcher.emit("save", [])
        dispatcher.emit("delete", {})

        assert seen == ["save", "delete"]
        assert dispatcher.stats()["emitted"] == 2

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, caplog):
        """A failing subscriber is logged and others still run."""
        dispatcher = HookDispatcher()
        seen = []

        def broken(event, payload):
            raise RuntimeError("subscriber down")

        async def broken_async(event, payload):
            raise RuntimeError("async subscriber down")

        dispatcher.subscribe("save", broken)
        dispatcher.subscribe("save", broken_async)
        dispatcher.subscribe("save", lambda event, payload: seen.append(event))
        caplog.set_level(logging.WARNING)

        dispatcher.emit("save", [])
        await dispatcher.drain()

        assert seen == ["save"]
        assert "subscriber down" in caplog.text
        assert "async subscriber down" in caplog.text


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    @pytest.mark.asyncio
    async def test_posts_json_with_event_header(self):
        """Mappings are posted as JSON to every url for the event."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(204)

        site = Site(
            slug="d", host="d.com",
            webhooks={"published": ["http://a.example/", "http://b.example/"]},
        )
        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

        responses = await notifier.notify(site, "published", {"url": "http://d.com/"})
        await notifier.close()

        assert [r.status_code for r in responses] == [204, 204]
        assert sorted(str(r.url) for r in requests) == ["http://a.example/", "http://b.example/"]
        assert all(r.headers["x-event"] == "published" for r in requests)
        assert all(r.headers["content-type"] == "application/json" for r in requests)
        assert json.loads(requests[0].content) == {"url": "http://d.com/"}

    @pytest.mark.asyncio
    async def test_text_body(self):
        """Strings are posted as text/plain."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

        await notifier.call_webhook("unpublished", "http://a.example/", "d.com/about")
        await notifier.close()

        assert requests[0].headers["content-type"] == "text/plain"
        assert requests[0].content == b"d.com/about"

    @pytest.mark.asyncio
    async def test_no_webhooks(self):
        """Sites without webhooks for an event make no requests."""
        notifier = WebhookNotifier(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        assert await notifier.notify(Site(slug="d", host="d.com"), "published", {}) == []
        await notifier.close()
