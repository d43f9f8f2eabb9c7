"""
Record type services: the only write path for components and layouts.

A RecordTypeService composes the reference resolver (reads) and the
cascading splitter (writes) with the hooks registered for each record's
name. Hooks are looked up per address, so a layout that inlines a component
routes the component's piece through the component's own save hook.

Invariants:
    - Every write goes through split -> route -> one batch
    - publish without data snapshots live instance data only; shared
      (non-instance) components keep reading through to latest
    - delete returns the prior value

How to change safely:
    - Subclasses only set record_type and event names; keep behavior here
    - Emit hook events after the batch commits, never before
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from ..compose.addressing import (
    COMPONENTS,
    INSTANCES_SEGMENT,
    PUBLISHED,
    REF,
    is_instance_reference,
    strip_version,
    with_version,
)
from ..compose.resolver import Predicate, ReferenceResolver
from ..compose.splitter import CascadingPut, get_put_operations, put_default_behavior
from ..config import TimeoutConfig
from ..notify.dispatcher import HookDispatcher
from ..storage.base import BatchOp, ListOptions, StorageEngine
from .context import RequestContext
from .hooks import HookRegistry, TypeHooks
from .models import invoke, run_get, run_save

logger = logging.getLogger(__name__)


def new_uid() -> str:
    return uuid.uuid4().hex


def _user(context: Optional[RequestContext]) -> Any:
    return context.user if context is not None else None


class RecordTypeService:
    """Read, write, publish and delete records of one type.

    Attributes:
        record_type: Address type segment this service owns
        create_event: Hook event emitted after create(), if any
        publish_event: Hook event emitted after publish(), if any
    """

    record_type = COMPONENTS
    create_event: Optional[str] = None
    publish_event: Optional[str] = None

    def __init__(
        self,
        storage: StorageEngine,
        hooks: HookRegistry,
        dispatcher: Optional[HookDispatcher] = None,
        timeouts: Optional[TimeoutConfig] = None,
        detect_cycles: bool = True,
    ) -> None:
        self.storage = storage
        self.hooks = hooks
        self.dispatcher = dispatcher or HookDispatcher()
        self.timeouts = timeouts or TimeoutConfig()
        self.resolver = ReferenceResolver(self.get, detect_cycles=detect_cycles)
        self.cascading_put = CascadingPut(self.route_put, storage, self.dispatcher)

    def hooks_for(self, address: str) -> Optional[TypeHooks]:
        return self.hooks.get(address)

    async def get(self, address: str, context: Optional[RequestContext] = None) -> dict:
        """Read one record, running its render hook unless hooks are off."""
        return await run_get(self.storage, self.hooks_for(address), address, context, self.timeouts)

    async def resolve(
        self,
        document: Any,
        context: Optional[RequestContext] = None,
        predicate: Optional[Predicate] = None,
    ) -> Any:
        """Compose document in place by expanding its references."""
        if predicate is None:
            return await self.resolver.resolve(document, context)
        return await self.resolver.resolve(document, context, predicate)

    async def route_put(
        self, address: str, data: dict, context: Optional[RequestContext] = None
    ) -> list[BatchOp]:
        """Write path for one flat record: save hook or default routing."""
        hooks = self.hooks_for(address)
        call_hooks = context is None or context.call_hooks

        if hooks is not None and hooks.save is not None and call_hooks:
            return await run_save(hooks.save, address, data, context, self.timeouts)
        return put_default_behavior(address, data)

    async def get_put_operations(
        self, address: str, document: dict, context: Optional[RequestContext] = None
    ) -> list[BatchOp]:
        """Operations for a cascading put, without committing them.

        document is consumed: it is reduced to pointers in place.
        """
        return await get_put_operations(self.route_put, address, document, context)

    async def put(
        self, address: str, document: dict, context: Optional[RequestContext] = None
    ) -> dict:
        """Cascading put; returns the stored root value."""
        return await self.cascading_put(address, document, context)

    async def get_publish_operations(
        self,
        address: str,
        data: Optional[dict] = None,
        context: Optional[RequestContext] = None,
    ) -> list[BatchOp]:
        """Operations that publish address.

        With data, data is split under @published. Without, the latest
        record is read, its instance references are expanded, and that
        snapshot is split under @published.
        """
        published = with_version(address, PUBLISHED)

        if not data:
            data = await self.get(strip_version(address), context)
            await self.resolve(data, context, is_instance_reference)

        return await self.get_put_operations(published, data, context)

    async def publish(
        self,
        address: str,
        data: Optional[dict] = None,
        context: Optional[RequestContext] = None,
    ) -> dict:
        """Publish one record (and its instance subgraph) atomically."""
        published = with_version(address, PUBLISHED)
        ops = await self.get_publish_operations(address, data, context)
        result = await self.cascading_put.commit(published, ops)

        logger.info(
            f"published {strip_version(address)}",
            extra={"address": published, "ops": len(ops)},
        )
        if self.publish_event:
            self.dispatcher.emit(
                self.publish_event, {"uri": published, "data": result, "user": _user(context)}
            )
        return result

    async def create(
        self,
        base_address: str,
        data: dict,
        context: Optional[RequestContext] = None,
    ) -> dict:
        """Store data at a new instance address under base_address.

        Returns:
            The stored root value with "_ref" set to the new address
        """
        base = strip_version(base_address).rstrip("/")
        if not base.endswith(INSTANCES_SEGMENT.rstrip("/")):
            base = f"{base}{INSTANCES_SEGMENT.rstrip('/')}"
        address = f"{base}/{new_uid()}"

        result = await self.put(address, data, context)
        result[REF] = address

        if self.create_event:
            self.dispatcher.emit(
                self.create_event, {"uri": address, "data": result, "user": _user(context)}
            )
        return result

    async def delete(self, address: str, context: Optional[RequestContext] = None) -> dict:
        """Delete a record and return what it held.

        Raises:
            NotFoundError: If nothing is stored at address
        """
        old = await self.get(address, context)
        hooks = self.hooks_for(address)

        if hooks is not None and hooks.delete is not None:
            await invoke(hooks.delete, address, context)
        else:
            await self.storage.delete(address)

        self.dispatcher.emit("delete", {"uri": address, "data": old, "user": _user(context)})
        return old

    async def list_instances(
        self, address: str, context: Optional[RequestContext] = None
    ) -> list[str]:
        """Instance addresses of the component/layout named by address.

        Versioned copies (x@published, x@tag) are not listed separately.
        """
        hooks = self.hooks_for(address)
        if hooks is not None and hooks.list is not None:
            return list(await invoke(hooks.list, address, context))

        base = strip_version(address).split(INSTANCES_SEGMENT, 1)[0]
        options = ListOptions(prefix=f"{base}{INSTANCES_SEGMENT}", values=False)
        return [key async for key in self.storage.list(options) if "@" not in key]
