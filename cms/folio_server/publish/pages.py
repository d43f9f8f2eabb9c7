"""
Page service and the publish orchestrator.

Publishing turns a page's working copy into a public, versioned snapshot in
one atomic batch:

    1. input: caller data (validated) or the latest stored page
    2. url: site rules, then passthrough and dynamic rules
    3. url history and a redirect from the previous url, then site modifiers
    4. publish operations for every top-level component reference
    5. every address field of the page rewritten to @published
    6. a _uris pointer from the public url to the page
    7. the page itself, last; commit
    8. log, webhook "published", hook "publishPage"

Invariants:
    - The batch in step 7 is the only write; nothing is visible before it
    - A notification failure after commit is logged, never raised
    - A publish that overruns its budget raises OperationTimeoutError but is
      not cancelled: the batch may still commit

How to change safely:
    - Keep the _uris pointer second to last and the page op last; readers
      resolving a url rely on the page existing once the pointer does
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Optional

from ..compose.addressing import (
    COMPONENTS,
    INSTANCES_SEGMENT,
    LAYOUTS,
    PAGES,
    PUBLISHED,
    REF,
    get_component_name,
    get_page_references,
    get_prefix,
    get_type,
    is_instance_reference,
    is_published,
    is_uri,
    list_deep_objects,
    omit_page_configuration,
    replace_page_reference_versions,
    strip_version,
    uris_key,
    url_to_uri,
    with_version,
)
from ..config import TimeoutConfig
from ..errors import ClientError, NotFoundError
from ..notify.dispatcher import HookDispatcher
from ..notify.webhooks import WebhookNotifier
from ..records.components import ComponentService
from ..records.context import RequestContext
from ..records.layouts import LayoutService
from ..records.models import elapsed_ms, run_with_budget
from ..records.service import new_uid
from ..storage.base import BatchOp, StorageEngine
from .sites import Site, SiteRegistry
from .urls import (
    apply_publish_modifiers,
    assert_no_empty_values,
    extend_url_history,
    redirect_operation,
    resolve_publish_url,
)

logger = logging.getLogger(__name__)


def rename_reference_uniquely(address: str) -> str:
    """New instance address of the same component as address."""
    prefix = get_prefix(address)
    return f"{prefix}/{COMPONENTS}/{get_component_name(address)}{INSTANCES_SEGMENT}{new_uid()}"


def map_layout_to_page_data(page: dict, layout: dict) -> dict:
    """Fill a layout's area fields with the page's component lists.

    A layout area is a string field naming a page property. Areas the page
    does not fill become empty lists.
    """
    for key, value in list(layout.items()):
        if isinstance(value, str) and key != REF:
            areas = page.get(key)
            layout[key] = [{REF: ref} for ref in areas] if isinstance(areas, list) else []
    return layout


def _user(context: Optional[RequestContext]) -> Any:
    return context.user if context is not None else None


class PageService:
    """Pages: create, read, write, publish and unpublish.

    Example:
        >>> pages = PageService(storage, components, layouts, sites)
        >>> await pages.publish("example.com/_pages/home", context=ctx)
        {'layout': 'example.com/_layouts/main@published', 'url': ..., 'urlHistory': [...]}
    """

    def __init__(
        self,
        storage: StorageEngine,
        components: ComponentService,
        layouts: LayoutService,
        sites: Optional[SiteRegistry] = None,
        dispatcher: Optional[HookDispatcher] = None,
        notifier: Optional[WebhookNotifier] = None,
        timeouts: Optional[TimeoutConfig] = None,
    ) -> None:
        self.storage = storage
        self.components = components
        self.layouts = layouts
        self.sites = sites or SiteRegistry()
        self.dispatcher = dispatcher or components.dispatcher
        self.notifier = notifier
        self.timeouts = timeouts or components.timeouts

    def site_for(self, address: str, context: Optional[RequestContext] = None) -> Optional[Site]:
        if context is not None and context.site is not None:
            return context.site
        return self.sites.from_prefix(get_prefix(address))

    async def _notify(self, site: Optional[Site], event: str, data: Any, address: str) -> None:
        if self.notifier is None or site is None:
            return
        try:
            await self.notifier.notify(site, event, data)
        except Exception as e:
            logger.warning(
                f"Failed to notify {event} for {address}: {e}",
                extra={"address": address, "event": event},
            )

    async def get(self, address: str, context: Optional[RequestContext] = None) -> dict:
        """Stored page data.

        Raises:
            NotFoundError: If the page does not exist
        """
        return json.loads(await self.storage.get(address))

    async def compose(self, address: str, context: Optional[RequestContext] = None) -> dict:
        """Fully composed page: its layout with every area expanded."""
        page = await self.get(address, context)
        layout = await self.layouts.get(page["layout"], context)
        composed = map_layout_to_page_data(omit_page_configuration(page), layout)
        return await self.components.resolve(composed, context)

    async def put(
        self, address: str, data: dict, context: Optional[RequestContext] = None
    ) -> dict:
        """Store a page. Writing to @published publishes instead.

        Emits "createPage" for a new page, "savePage" otherwise.
        """
        if is_published(address):
            return await self.publish(address, data, context)

        layout = data.get("layout")
        if layout and get_type(layout) != LAYOUTS:
            logger.warning(f"layout must be a {LAYOUTS} address: {layout}", extra={"address": address})

        try:
            await self.storage.get(address)
            event = "savePage"
        except NotFoundError:
            event = "createPage"

        await self.storage.put(address, json.dumps(data))
        self.dispatcher.emit(event, {"uri": address, "data": data, "user": _user(context)})
        return data

    async def _clone_operations(
        self, page: dict, context: Optional[RequestContext]
    ) -> list[BatchOp]:
        """Clone every component the page references into new instances.

        Rewrites the page's references in place to point at the clones.
        """

        async def clone(ref: str) -> tuple[str, list[BatchOp]]:
            data = await self.components.get(ref, context)
            await self.components.resolve(data, context, is_instance_reference)
            for obj in list_deep_objects(data, is_instance_reference):
                obj[REF] = rename_reference_uniquely(obj[REF])
            new_ref = rename_reference_uniquely(ref)
            return new_ref, await self.components.get_put_operations(new_ref, data, context)

        slots: list[tuple[Any, Any, str]] = []
        for key, value in page.items():
            if isinstance(value, list):
                slots.extend((value, index, item) for index, item in enumerate(value)
                             if is_uri(item) and get_component_name(item))
            elif is_uri(value) and get_component_name(value):
                slots.append((page, key, value))

        cloned = await asyncio.gather(*(clone(ref) for _, _, ref in slots))

        ops: list[BatchOp] = []
        for (container, slot, _), (new_ref, clone_ops) in zip(slots, cloned):
            container[slot] = new_ref
            ops.extend(clone_ops)
        return ops

    async def create(
        self, base_address: str, data: dict, context: Optional[RequestContext] = None
    ) -> dict:
        """Create a page from a layout and default components.

        Raises:
            ClientError: If data has no layout reference
        """
        layout = (data or {}).get("layout")
        if not layout:
            raise ClientError("Data missing layout reference.", details={"address": base_address})

        prefix = get_prefix(base_address)
        address = f"{prefix}/{PAGES}/{new_uid()}"
        page = {key: value for key, value in data.items() if key != "layout"}

        await self.layouts.get(layout, context)
        ops = await self._clone_operations(page, context)
        page["layout"] = layout
        ops.append(BatchOp.put(address, page))

        await self.storage.batch(ops)
        result = ops[-1].value_json()
        result[REF] = address

        self.dispatcher.emit("createPage", {"uri": address, "data": result, "user": _user(context)})
        return result

    async def publish(
        self,
        address: str,
        data: Optional[dict] = None,
        context: Optional[RequestContext] = None,
    ) -> dict:
        """Publish a page.

        Raises:
            ClientError: Empty values, or no valid url
            OperationTimeoutError: Budget exceeded; commit status unknown
        """
        limit_ms = self.timeouts.publish_budget_ms
        published = with_version(address, PUBLISHED)
        return await run_with_budget(
            self._publish(published, data, context),
            limit_ms,
            f"Page publish exceeded {limit_ms}ms, commit status unknown: {published}",
        )

    async def _publish(
        self, address: str, data: Optional[dict], context: Optional[RequestContext]
    ) -> dict:
        start = time.monotonic()
        limit_ms = self.timeouts.publish_budget_ms
        latest = strip_version(address)
        prefix = get_prefix(address)
        site = self.site_for(address, context)

        if data:
            assert_no_empty_values(data, address)
            data = dict(data)
        else:
            data = await self.get(latest, context)

        target = await resolve_publish_url(
            site.publish_rules if site else [], address, data, context
        )
        if context is not None and not context.frozen:
            context.publish_url = target.url
            context.is_dynamic_publish_url = target.dynamic

        ops: list[BatchOp] = []
        if not target.dynamic:
            try:
                previous = json.loads(await self.storage.get(address))
            except NotFoundError:
                previous = {}

            history = extend_url_history(previous.get("urlHistory"), target.url)
            redirect = redirect_operation(prefix, history)
            if redirect is not None:
                ops.append(redirect)

            meta = await apply_publish_modifiers(
                site.publish_modifiers if site else [],
                address,
                data,
                {"url": target.url, "urlHistory": history},
            )
            data.update(meta)

        component_ops = await asyncio.gather(
            *(
                self.components.get_publish_operations(ref, None, context)
                for ref in get_page_references(data)
            )
        )
        for batch in component_ops:
            ops.extend(batch)

        page = replace_page_reference_versions(data, PUBLISHED)

        if not target.dynamic:
            ops.append(BatchOp.put(uris_key(prefix, url_to_uri(target.url)), latest))
        ops.append(BatchOp.put(address, page))

        await self.storage.batch(ops)

        ms = elapsed_ms(start)
        if ms > limit_ms * 0.5:
            logger.warning(f"slow publish {address} {ms}ms", extra={"address": address, "ms": ms})
        else:
            logger.info(f"published {latest} {ms}ms", extra={"address": address, "ms": ms})

        await self._notify(site, "published", page, address)
        self.dispatcher.emit("publishPage", {"uri": address, "data": page, "user": _user(context)})
        return page

    async def unpublish(self, address: str, context: Optional[RequestContext] = None) -> dict:
        """Remove a page's public copy and its url pointer.

        Returns:
            The published page data that was removed

        Raises:
            NotFoundError: If the page is not published
        """
        published = with_version(address, PUBLISHED)
        prefix = get_prefix(address)
        site = self.site_for(address, context)
        page = json.loads(await self.storage.get(published))

        ops = [BatchOp.delete(published)]
        url = page.get("url")
        if url and not page.get("_dynamic"):
            ops.append(BatchOp.delete(uris_key(prefix, url_to_uri(url))))

        await self.storage.batch(ops)
        logger.info(f"unpublished {strip_version(address)}", extra={"address": published})

        await self._notify(site, "unpublished", {"url": url, "uri": published}, published)
        self.dispatcher.emit("unpublishPage", {"uri": published, "data": page, "user": _user(context)})
        return page
