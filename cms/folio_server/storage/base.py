"""
Base protocol and types for the Folio storage engine.

This module defines the StorageEngine protocol that all backends must
implement, along with the batch operation and listing option types.

Invariants:
    - Values are JSON text (or plain address text for _uris); never bytes
    - batch() is atomic: all operations become visible together or not at all
    - list() yields entries sorted lexicographically by key
    - get() raises NotFoundError on a miss, never returns None

How to change safely:
    - Protocol changes require updating all implementations
    - validate_storage() must list every method the core calls
    - Keep ListOptions field names stable, callers pass them by keyword
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Protocol,
    runtime_checkable,
)
import json
import logging

from ..errors import StorageConfigurationError

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)

PUT = "put"
DELETE = "del"

# Methods the core calls on whatever engine is plugged in
REQUIRED_METHODS = ("get", "put", "delete", "batch", "list", "clear")


@dataclass(frozen=True)
class BatchOp:
    """One mutation inside an atomic batch.

    Attributes:
        kind: "put" or "del"
        key: Address the operation targets
        value: Encoded value for puts, None for deletes

    Example:
        >>> BatchOp.put("site.com/_components/a", {"title": "x"})
        BatchOp(kind='put', key='site.com/_components/a', value='{"title": "x"}')
    """

    kind: str
    key: str
    value: str | None = None

    @classmethod
    def put(cls, key: str, value: Any) -> BatchOp:
        """Create a put operation, JSON-encoding non-string values."""
        if not isinstance(value, str):
            value = json.dumps(value)
        return cls(kind=PUT, key=key, value=value)

    @classmethod
    def delete(cls, key: str) -> BatchOp:
        """Create a delete operation."""
        return cls(kind=DELETE, key=key)

    def value_json(self) -> Any:
        """Decode the value as JSON."""
        return json.loads(self.value) if self.value is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization and hook payloads."""
        return {"type": self.kind, "key": self.key, "value": self.value}


@dataclass(frozen=True)
class ListOptions:
    """Projection and pagination for a prefix listing.

    Attributes:
        prefix: Only keys starting with this prefix
        keys: Include keys in each entry
        values: Include values in each entry
        is_array: Materialize as a list rather than a key->value mapping
        skip: Number of matching entries to skip
        limit: Maximum number of entries, negative for no limit

    WARNING: end prefixes with a consistent character such as "/".
    "site.com/_components/text" also matches "site.com/_components/text-box".
    """

    prefix: str = ""
    keys: bool = True
    values: bool = True
    is_array: bool = True
    skip: int = 0
    limit: int = -1

    def project(self, key: str, value: str) -> Any:
        """Shape one entry according to keys/values."""
        if self.keys and self.values:
            return {"key": key, "value": value}
        if self.keys:
            return key
        return value


@runtime_checkable
class StorageEngine(Protocol):
    """Protocol for storage backends.

    Durability contract:
        - put()/delete()/batch() return only after the write is visible
          to subsequent get() calls from any coroutine

    Atomicity contract:
        - batch() applies every operation or none of them

    Example:
        >>> storage = InMemoryStorage()
        >>> await storage.put("site.com/_components/a", '{"a": 1}')
        >>> await storage.get("site.com/_components/a")
        '{"a": 1}'
    """

    @abstractmethod
    async def get(self, key: str) -> str:
        """Fetch the value stored at key.

        Raises:
            NotFoundError: If nothing is stored at key
        """
        ...

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        """Store value at key, replacing any prior value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def batch(self, ops: list[BatchOp]) -> None:
        """Apply operations atomically, in order."""
        ...

    @abstractmethod
    def list(self, options: ListOptions | None = None) -> AsyncIterator[Any]:
        """Stream entries in key order, shaped by options."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove everything (test and bootstrap use only)."""
        ...


def validate_storage(engine: Any) -> StorageEngine:
    """Check that an engine exposes the full storage surface.

    Args:
        engine: Candidate storage engine

    Returns:
        The same engine, typed as StorageEngine

    Raises:
        StorageConfigurationError: If any required method is missing
    """
    missing = [name for name in REQUIRED_METHODS if not callable(getattr(engine, name, None))]
    if missing:
        raise StorageConfigurationError(
            f"Storage engine {type(engine).__name__} is missing required methods: {missing}",
            details={"missing": missing},
        )
    return engine


async def read_all(engine: StorageEngine, options: ListOptions | None = None) -> Any:
    """Materialize a listing.

    Returns a list when options.is_array is set or when only keys or only
    values are requested; otherwise a key->value mapping.
    """
    options = options or ListOptions()
    as_array = options.is_array or not (options.keys and options.values)

    if as_array:
        return [entry async for entry in engine.list(options)]

    result: dict[str, str] = {}
    async for entry in engine.list(options):
        result[entry["key"]] = entry["value"]
    return result


def create_storage_engine(config: "StorageConfig") -> StorageEngine:
    """Factory function to create a storage engine from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate StorageEngine implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackend
    from .memory import InMemoryStorage
    from .sqlite import SqliteStorage

    if config.backend == StorageBackend.MEMORY:
        return InMemoryStorage()
    elif config.backend == StorageBackend.SQLITE:
        return SqliteStorage(
            data_dir=config.data_dir,
            filename=config.filename,
            busy_timeout_ms=config.busy_timeout_ms,
            wal_mode=config.wal_mode,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
