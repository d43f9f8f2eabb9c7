"""
SQLite storage engine for Folio.

A single SQLite file holds every record as a (key, value) row. Keys are
addresses; values are JSON text. Prefix listings use the primary key index,
which SQLite keeps in binary (lexicographic) order.

Invariants:
    - One table, one row per address
    - batch() runs inside a single IMMEDIATE transaction
    - Listings are ordered by key

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all multi-statement writes
    - Keep connections per-operation; never share one across coroutines

Table schema:
    records:
        - key TEXT PRIMARY KEY
        - value TEXT NOT NULL
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import NotFoundError
from .base import DELETE, PUT, BatchOp, ListOptions

logger = logging.getLogger(__name__)


class SqliteStorage:
    """SQLite-backed implementation of StorageEngine.

    Thread safety:
        Each operation opens its own connection. Writes are serialized by an
        asyncio lock in-process and by SQLite locking across processes.

    Example:
        >>> storage = SqliteStorage("/var/lib/folio")
        >>> await storage.put("site.com/_pages/home", '{"layout": "..."}')
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        filename: str = "folio.db",
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the database file
            filename: Database file name
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL journal mode
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / filename
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self._lock = asyncio.Lock()
        self._initialized = False

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the schema on first use."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            if not self._initialized:
                self._create_schema(conn)
                self._initialized = True

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, int(time.time() * 1000)),
        )

    async def get(self, key: str) -> str:
        """Fetch value at key.

        Raises:
            NotFoundError: If key is missing
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM records WHERE key = ?", (key,)).fetchone()

        if row is None:
            raise NotFoundError(key)
        return row[0]

    async def put(self, key: str, value: str) -> None:
        """Store value at key."""
        await self.batch([BatchOp(kind=PUT, key=key, value=value)])

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        await self.batch([BatchOp(kind=DELETE, key=key)])

    async def pop(self, key: str) -> str:
        """Remove key and return its value in one IMMEDIATE transaction.

        Of any number of callers, across processes, at most one gets a
        given value back.

        Raises:
            NotFoundError: If key is missing
        """
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT value FROM records WHERE key = ?", (key,)
                    ).fetchone()
                    if row is not None:
                        conn.execute("DELETE FROM records WHERE key = ?", (key,))
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        if row is None:
            raise NotFoundError(key)
        return row[0]

    async def batch(self, ops: list[BatchOp]) -> None:
        """Apply operations in one transaction.

        Raises:
            ValueError: On an unknown operation type (nothing is written)
        """
        now = int(time.time() * 1000)

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for op in ops:
                        if op.kind == PUT:
                            if op.value is None:
                                raise ValueError(f"Put operation without value: {op.key}")
                            conn.execute(
                                """
                                INSERT INTO records (key, value, updated_at) VALUES (?, ?, ?)
                                ON CONFLICT(key) DO UPDATE SET
                                    value = excluded.value,
                                    updated_at = excluded.updated_at
                                """,
                                (op.key, op.value, now),
                            )
                        elif op.kind == DELETE:
                            conn.execute("DELETE FROM records WHERE key = ?", (op.key,))
                        else:
                            raise ValueError(f"Unknown batch operation type: {op.kind}")
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug(
            "Batch applied to SQLite storage",
            extra={"ops": len(ops), "db_path": str(self.db_path)},
        )

    async def list(self, options: ListOptions | None = None) -> AsyncIterator[Any]:
        """Stream entries in key order."""
        options = options or ListOptions()
        # substr() comparison sidesteps LIKE escaping of "_" and "%" in addresses
        query = (
            "SELECT key, value FROM records "
            "WHERE substr(key, 1, ?) = ? ORDER BY key LIMIT ? OFFSET ?"
        )
        params = (len(options.prefix), options.prefix, options.limit, options.skip)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        for key, value in rows:
            yield options.project(key, value)

    async def clear(self) -> None:
        """Remove all records."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM records")
