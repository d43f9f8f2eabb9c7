"""
Outbound webhooks.

A site lists webhook urls per event name:

    Site(..., webhooks={"published": ["https://hooks.example.com/cms"]})

WebhookNotifier.notify() POSTs the event payload to every url for that
event, with an X-Event header naming the event. Mappings are sent as JSON,
strings as text/plain.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Delivers site events to configured webhook urls.

    Example:
        >>> notifier = WebhookNotifier(timeout_seconds=5.0)
        >>> await notifier.notify(site, "published", page)
        >>> await notifier.close()
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            timeout_seconds: Per-request timeout
            transport: Custom httpx transport (tests pass httpx.MockTransport)
        """
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def call_webhook(self, event: str, url: str, data: Any) -> httpx.Response:
        """POST one event to one url.

        Raises:
            httpx.HTTPError: On transport failure
        """
        headers = {"X-Event": event}
        content: Optional[str] = None

        if isinstance(data, dict):
            headers["Content-Type"] = "application/json"
            content = json.dumps(data)
        elif isinstance(data, str):
            headers["Content-Type"] = "text/plain"
            content = data

        response = await self._get_client().post(url, headers=headers, content=content)
        logger.info(
            "called webhook",
            extra={"event": event, "status": response.status_code, "reason": response.reason_phrase},
        )
        return response

    async def notify(self, site: Any, event: str, data: Any = None) -> list[httpx.Response]:
        """POST data to every webhook the site lists for event.

        Returns:
            Responses, in url order (empty when no webhooks are configured)
        """
        webhooks = getattr(site, "webhooks", None) or {}
        urls = webhooks.get(event)
        if not isinstance(urls, (list, tuple)) or not urls:
            return []

        return list(await asyncio.gather(*(self.call_webhook(event, url, data) for url in urls)))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
