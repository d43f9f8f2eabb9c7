"""
Storage engines for Folio.

This module provides the storage contract and its reference backends:
- InMemoryStorage: For tests and local development
- SqliteStorage: Single-file durable storage

Usage:
    from cms.folio_server.storage import create_storage_engine, ListOptions

    storage = create_storage_engine(config.storage)
    await storage.put("site.com/_components/a", '{"a": 1}')
"""

from .base import (
    DELETE,
    PUT,
    BatchOp,
    ListOptions,
    StorageEngine,
    create_storage_engine,
    read_all,
    validate_storage,
)
from .memory import InMemoryStorage
from .sqlite import SqliteStorage

__all__ = [
    "DELETE",
    "PUT",
    "BatchOp",
    "ListOptions",
    "StorageEngine",
    "create_storage_engine",
    "read_all",
    "validate_storage",
    "InMemoryStorage",
    "SqliteStorage",
]
