"""
Database connection management: one long-lived connection per store.

Design
------
SQLite performs best with a **single long-lived connection** rather than
opening/closing a connection per operation: pragmas are applied once and the
page cache stays warm.

Concurrency model
-----------------
Every operation, read or write, goes through one ``asyncio.Lock``; no
operation observes another one's partial write.

Usage
-----
    manager = ConnectionManager()
    await manager.open(path)

    async with manager.read() as conn:
        cursor = await conn.execute("SELECT ...")

    async with manager.transaction() as conn:
        await conn.execute("INSERT ...")
        await conn.execute("UPDATE ...")
        # commits on clean exit, rolls back on exception

    await manager.close()
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from chatguard.util.logger import get_logger

logger = get_logger("database_connection")

# ── Pragmas applied once when the connection is opened ──────────────────────
_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",    # safe with WAL; faster than FULL
    "PRAGMA cache_size = -8000",      # ~8 MB page cache
    "PRAGMA temp_store = MEMORY",
]


class ConnectionManager:
    """
    Wrapper around a single aiosqlite connection guarded by one lock.

    * Reads: ``async with read()``
    * Writes: ``async with transaction()``; commit or roll back as a unit

    Both paths hold the same lock, so reads and writes are fully serialised.
    """

    def __init__(self) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._path: Path | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self, path: Path) -> None:
        """
        Open the database and apply pragmas.

        Raises ``sqlite3.DatabaseError`` when the file exists but is not a
        usable database; the connection is closed again before raising.

        Args:
            path: Path to the SQLite database file.
        """
        if self._conn is not None:
            logger.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row  # rows are dict-like
        try:
            for pragma in _PRAGMAS:
                await conn.execute(pragma)
            await conn.commit()
        except Exception:
            await conn.close()
            raise

        self._conn = conn
        logger.info("[DB CONNECTION] Opened connection to %s", path)

    async def close(self) -> None:
        """Flush WAL and close the connection."""
        if self._conn is None:
            return

        async with self._lock:
            try:
                await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                await self._conn.commit()
            except Exception:
                logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
            finally:
                await self._conn.close()
                self._conn = None
                logger.info("[DB CONNECTION] Connection closed")

    # ------------------------------------------------------------------
    # Connection access
    # ------------------------------------------------------------------

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError(
                "ConnectionManager: connection is not open. "
                "Call await open(path) first."
            )
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised write transaction.

        * Holds the store lock for the whole block.
        * Commits automatically on clean exit.
        * Rolls back automatically if an exception is raised.

        Raises:
            RuntimeError: If the connection is not open.
        """
        async with self._lock:
            conn = self.connection
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised read access.

        Symmetrical with :meth:`transaction` but never commits.
        """
        async with self._lock:
            yield self.connection
