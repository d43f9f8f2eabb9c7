"""
In-memory storage engine.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Provides the same atomicity and ordering guarantees as SqliteStorage
    - Safe for concurrent access from multiple coroutines

How to change safely:
    - Keep interface compatible with the StorageEngine protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import bisect
from typing import Any, AsyncIterator, Dict, List, Optional
import logging

from ..errors import NotFoundError
from .base import DELETE, PUT, BatchOp, ListOptions

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """In-memory implementation of StorageEngine.

    Keys are kept in a sorted list next to the value dict so that prefix
    listings come out in key order without sorting on every call.

    Thread safety:
        Uses an asyncio lock around mutations and listing snapshots.

    Example:
        >>> storage = InMemoryStorage()
        >>> await storage.put("site.com/_components/a", '{"a": 1}')
        >>> [e async for e in storage.list(ListOptions(prefix="site.com/"))]
        [{'key': 'site.com/_components/a', 'value': '{"a": 1}'}]
    """

    def __init__(self, record_batches: bool = False) -> None:
        """Initialize storage.

        Args:
            record_batches: Keep every committed batch in batch_log (testing)
        """
        self._data: Dict[str, str] = {}
        self._keys: List[str] = []
        self._lock = asyncio.Lock()
        self._record_batches = record_batches
        self.batch_log: List[List[BatchOp]] = []

    async def get(self, key: str) -> str:
        """Fetch value at key.

        Raises:
            NotFoundError: If key is missing
        """
        try:
            return self._data[key]
        except KeyError:
            raise NotFoundError(key) from None

    async def put(self, key: str, value: str) -> None:
        """Store value at key."""
        async with self._lock:
            self._set(key, value)

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        async with self._lock:
            self._remove(key)

    async def pop(self, key: str) -> str:
        """Remove key and return its value atomically.

        Raises:
            NotFoundError: If key is missing
        """
        async with self._lock:
            if key not in self._data:
                raise NotFoundError(key)
            value = self._data[key]
            self._remove(key)
        return value

    async def batch(self, ops: List[BatchOp]) -> None:
        """Apply operations atomically.

        Operations are validated before anything is applied, so a bad
        operation leaves storage untouched.
        """
        for op in ops:
            if op.kind not in (PUT, DELETE):
                raise ValueError(f"Unknown batch operation type: {op.kind}")
            if op.kind == PUT and op.value is None:
                raise ValueError(f"Put operation without value: {op.key}")

        async with self._lock:
            for op in ops:
                if op.kind == PUT:
                    self._set(op.key, op.value)
                else:
                    self._remove(op.key)
            if self._record_batches:
                self.batch_log.append(list(ops))

        logger.debug("Batch applied to in-memory storage", extra={"ops": len(ops)})

    async def list(self, options: Optional[ListOptions] = None) -> AsyncIterator[Any]:
        """Stream entries in key order."""
        options = options or ListOptions()

        async with self._lock:
            start = bisect.bisect_left(self._keys, options.prefix)
            snapshot = []
            for key in self._keys[start:]:
                if not key.startswith(options.prefix):
                    break
                snapshot.append((key, self._data[key]))

        end = None if options.limit < 0 else options.skip + options.limit
        for key, value in snapshot[options.skip:end]:
            yield options.project(key, value)

    async def clear(self) -> None:
        """Remove all data."""
        async with self._lock:
            self._data.clear()
            self._keys.clear()
            self.batch_log.clear()

    def _set(self, key: str, value: str) -> None:
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = value

    def _remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            index = bisect.bisect_left(self._keys, key)
            del self._keys[index]

    # Testing helpers

    def snapshot(self) -> Dict[str, str]:
        """Copy of all stored data (testing helper)."""
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
