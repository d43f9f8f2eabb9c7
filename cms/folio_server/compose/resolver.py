"""
Reference resolver: read-side composition.

Expands every reference placeholder in a document by fetching the record it
points at (through the owning record type service, so render hooks run),
resolving that record in turn, and merging its fields onto the placeholder.
The "_ref" marker stays on each placeholder as provenance.

Invariants:
    - Siblings at one depth are fetched concurrently; when one fails the
      rest are cancelled before the error propagates
    - A fetched record's own references are expanded only after it arrives
    - Errors from a nested branch keep their category and name the failing
      address (" within <address>")
    - With cycle detection on, an address repeated on one branch raises
      ReferenceCycleError; the same record reached by two branches is fine

How to change safely:
    - fetch must return a fresh dict per call; merged records are mutated
    - Keep merging after recursion so partial composition never leaks
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import FolioError, ReferenceCycleError, ResolutionError
from .addressing import REF, has_reference, list_deep_objects, strip_version

logger = logging.getLogger(__name__)

Fetch = Callable[[str, Any], Awaitable[dict]]
Predicate = Callable[[Any], bool]


class ReferenceResolver:
    """Recursively composes documents from stored records.

    Example:
        >>> resolver = ReferenceResolver(components.get)
        >>> await resolver.resolve({"a": {"_ref": "site.com/_components/b"}})
        {'a': {'_ref': 'site.com/_components/b', 'g': 'h'}}
    """

    def __init__(self, fetch: Fetch, detect_cycles: bool = True) -> None:
        """Initialize the resolver.

        Args:
            fetch: Coroutine (address, context) -> record, normally the
                record type service get
            detect_cycles: Fail fast on reference cycles
        """
        self._fetch = fetch
        self.detect_cycles = detect_cycles

    async def resolve(
        self,
        document: Any,
        context: Any = None,
        predicate: Predicate = has_reference,
        _ancestors: tuple[str, ...] = (),
    ) -> Any:
        """Expand references in document, in place.

        Args:
            document: Document to compose
            context: Request context passed through to fetch
            predicate: Which sub-objects count as references

        Returns:
            The same document, composed
        """
        placeholders = list_deep_objects(document, predicate)
        if placeholders:
            tasks = [
                asyncio.ensure_future(self._expand(placeholder, context, predicate, _ancestors))
                for placeholder in placeholders
            ]
            try:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            finally:
                # Pending siblings are cancelled once any branch fails
                for task in tasks:
                    if not task.done():
                        task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for task in tasks:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        return document

    async def _expand(
        self,
        placeholder: dict,
        context: Any,
        predicate: Predicate,
        ancestors: tuple[str, ...],
    ) -> None:
        address = placeholder[REF]

        if self.detect_cycles:
            # Versions are compared too: x@published and x are distinct records
            if address in ancestors:
                cycle = [*ancestors[ancestors.index(address):], address]
                raise ReferenceCycleError(cycle)
            branch = (*ancestors, address)
        else:
            branch = ancestors

        try:
            record = await self._fetch(address, context)
            await self.resolve(record, context, predicate, branch)
        except ReferenceCycleError:
            raise
        except FolioError as exc:
            raise exc.within(address) from exc
        except Exception as exc:
            raise ResolutionError(
                f"{exc} within {address}",
                details={"trail": [address], "type": type(exc).__name__},
            ) from exc

        placeholder.update({key: value for key, value in record.items() if key != REF})
        logger.debug(
            "Reference resolved",
            extra={"address": strip_version(address), "depth": len(ancestors)},
        )


async def resolve_references(
    document: Any,
    fetch: Fetch,
    context: Any = None,
    predicate: Predicate = has_reference,
    detect_cycles: bool = True,
) -> Any:
    """Convenience wrapper around ReferenceResolver.resolve()."""
    return await ReferenceResolver(fetch, detect_cycles).resolve(document, context, predicate)
