"""
Public uri pointers: <prefix>/_uris/<encoded public uri> -> address.

Values are plain address text, not JSON. A pointer either names a page (the
page's latest address) or another _uris key (a redirect).
"""

from __future__ import annotations

import logging
from typing import Optional

from ..compose.addressing import decode_uri, get_prefix, is_published
from ..errors import ClientError
from ..notify.dispatcher import HookDispatcher
from ..notify.webhooks import WebhookNotifier
from ..records.context import RequestContext
from ..storage.base import StorageEngine
from .sites import SiteRegistry

logger = logging.getLogger(__name__)


class UriService:
    """Read, point and delete public uri entries."""

    def __init__(
        self,
        storage: StorageEngine,
        sites: Optional[SiteRegistry] = None,
        dispatcher: Optional[HookDispatcher] = None,
        notifier: Optional[WebhookNotifier] = None,
    ) -> None:
        self.storage = storage
        self.sites = sites or SiteRegistry()
        self.dispatcher = dispatcher or HookDispatcher()
        self.notifier = notifier

    async def get(self, address: str, context: Optional[RequestContext] = None) -> str:
        """Address the uri points at.

        Raises:
            NotFoundError: If nothing is stored at address
        """
        return await self.storage.get(address)

    async def put(
        self, address: str, destination: str, context: Optional[RequestContext] = None
    ) -> str:
        """Point address at destination.

        Raises:
            ClientError: Self-pointing, quoted, or @published destinations
        """
        if address == destination:
            raise ClientError("Cannot point uri at itself", details={"address": address})
        if '"' in destination or "'" in destination:
            raise ClientError("Destination cannot contain quotes", details={"address": address})
        if is_published(destination):
            raise ClientError(
                "Cannot point uri at propagating version, such as @published",
                details={"address": address, "destination": destination},
            )

        await self.storage.put(address, destination)
        return destination

    async def delete(self, address: str, context: Optional[RequestContext] = None) -> str:
        """Remove a pointer and return what it pointed at.

        On engines with an atomic pop(), the built-in ones included, at most
        one caller gets a given prior value back, so clients may use
        deletion as a queue pop. Other engines get then delete, and two
        concurrent callers may both see the value.

        Raises:
            NotFoundError: If nothing is stored at address
        """
        pop = getattr(self.storage, "pop", None)
        if pop is not None:
            old = await pop(address)
        else:
            old = await self.get(address, context)
            await self.storage.delete(address)

        url = decode_uri(address.rsplit("/", 1)[-1])
        self.dispatcher.emit("unpublish", {"url": url, "uri": old})

        site = context.site if context is not None and context.site else self.sites.from_prefix(
            get_prefix(address)
        )
        if self.notifier is not None and site is not None:
            try:
                await self.notifier.notify(site, "unpublished", {"url": url})
            except Exception as e:
                logger.warning(
                    f"Failed to notify unpublished for {address}: {e}",
                    extra={"address": address},
                )
        return old
