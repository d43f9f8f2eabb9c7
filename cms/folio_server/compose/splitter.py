"""
Cascading persistence splitter: write-side decomposition.

Turns one nested document into flat, independently addressable records.
Any sub-object that carries "_ref" plus inline fields is written to its own
address and reduced to a pure pointer in its parent.

Ownership:
    split_cascading_data() takes ownership of the document for the call and
    mutates it in place. The returned SplitResult.root is that same object,
    now pointer-only at every level. Callers that need the original must
    copy.deepcopy() it before calling.

Invariants:
    - Children are emitted before their parents; the root is always last
    - A child's inline data appears in exactly one operation
    - Under a propagating root address every reachable _ref carries the
      root's version before splitting
    - cascading_put() commits exactly one storage batch or nothing

How to change safely:
    - Never add I/O between splitting and the batch; the batch is the only
      point where other readers can observe the write
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..errors import DefectError
from ..storage.base import PUT, BatchOp, StorageEngine
from .addressing import (
    REF,
    get_version,
    is_propagating,
    is_referenced_and_real,
    list_deep_objects,
    propagate_version,
    strip_version,
    with_version,
)

logger = logging.getLogger(__name__)

PutResult = Union[BatchOp, list, None]
PutFn = Callable[[str, dict, Any], Union[PutResult, Awaitable[PutResult]]]


@dataclass
class SplitResult:
    """Output of split_cascading_data().

    Attributes:
        operations: (address, value) pairs, children first, root last
        root: The input document, reduced to pointers
    """

    operations: list[tuple[str, dict]] = field(default_factory=list)
    root: Any = None


def split_cascading_data(root_address: str, document: dict) -> SplitResult:
    """Split a nested document into flat records.

    >>> split_cascading_data("a", {"a": "b", "c": {"_ref": "d", "e": "f"}}).operations
    [('d', {'e': 'f'}), ('a', {'a': 'b', 'c': {'_ref': 'd'}})]
    """
    if is_propagating(root_address):
        propagate_version(get_version(root_address), document)

    operations: list[tuple[str, dict]] = []
    for node in reversed(list_deep_objects(document, is_referenced_and_real)):
        ref = node[REF]
        operations.append((ref, {key: value for key, value in node.items() if key != REF}))
        node.clear()
        node[REF] = ref

    operations.append((root_address, document))
    return SplitResult(operations=operations, root=document)


def put_default_behavior(address: str, data: Any) -> list[BatchOp]:
    """Route a write by version suffix.

    No suffix writes the stripped (latest) address; "published" and any
    other tag write <stripped>@<version>.
    """
    return [BatchOp.put(with_version(strip_version(address), get_version(address)), data)]


def _flatten(results: list) -> list[BatchOp]:
    flat: list[BatchOp] = []
    for item in results:
        if isinstance(item, (list, tuple)):
            flat.extend(_flatten(list(item)))
        elif item:
            flat.append(item)
    return flat


async def _call_put(put_fn: PutFn, address: str, value: dict, context: Any) -> PutResult:
    result = put_fn(address, value, context)
    if inspect.isawaitable(result):
        result = await result
    return result


async def get_put_operations(
    put_fn: PutFn, address: str, document: dict, context: Any = None
) -> list[BatchOp]:
    """Split document and route every piece through put_fn.

    Args:
        put_fn: The owning type's write path (save hook or default routing)
        address: Root address
        document: Nested document; mutated in place
        context: Request context

    Returns:
        Flattened batch operations, falsy results dropped
    """
    split = split_cascading_data(address, document)

    if context is not None and len(split.operations) > 1:
        # Hooks for separate records must not see each other's context edits
        context = context.read_only() if hasattr(context, "read_only") else copy.deepcopy(context)

    results = await asyncio.gather(
        *(_call_put(put_fn, key, value, context) for key, value in split.operations)
    )
    return _flatten(list(results))


class CascadingPut:
    """Split, route and commit a nested document as one atomic batch.

    Example:
        >>> put = CascadingPut(components.route_put, storage, dispatcher)
        >>> await put("site.com/_components/a", {"b": {"_ref": "...", "c": 1}})
    """

    def __init__(
        self,
        put_fn: PutFn,
        storage: StorageEngine,
        dispatcher: Optional[Any] = None,
    ) -> None:
        self.put_fn = put_fn
        self.storage = storage
        self.dispatcher = dispatcher

    async def __call__(self, address: str, document: dict, context: Any = None) -> Any:
        """Commit document and return the decoded root value.

        Raises:
            DefectError: If the write path produced no operations
        """
        ops = await get_put_operations(self.put_fn, address, document, context)
        return await self.commit(address, ops)

    async def commit(self, address: str, ops: list[BatchOp]) -> Any:
        """Apply prepared operations as one batch and emit "save".

        Raises:
            DefectError: If ops is empty or does not end with the root record
        """
        if not ops:
            raise DefectError(
                f"Component module PUT failed to create batch operations: {address}",
                details={"address": address},
            )
        root = _root_value(address, ops[-1])

        await self.storage.batch(ops)
        logger.debug(
            "Cascading put committed",
            extra={"address": address, "ops": len(ops)},
        )

        if self.dispatcher is not None:
            self.dispatcher.emit("save", [op.to_dict() for op in ops])

        return root


def _root_value(address: str, op: BatchOp) -> dict:
    """Decode the root record from the last operation of a put batch.

    Raises:
        DefectError: If the last operation is not a put of a JSON object
    """
    value = None
    if op.kind == PUT and op.value is not None:
        try:
            value = json.loads(op.value)
        except ValueError:
            value = None
    if not isinstance(value, dict):
        raise DefectError(
            f"Last batch operation must put the root record as an object: {address}",
            details={"address": address, "key": op.key, "type": op.kind},
        )
    return value


def cascading_put(
    put_fn: PutFn, storage: StorageEngine, dispatcher: Optional[Any] = None
) -> CascadingPut:
    return CascadingPut(put_fn, storage, dispatcher)
