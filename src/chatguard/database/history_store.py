"""
Durable chat history: append with duplicate suppression, filtered search,
and bulk re-tagging of profanity flags.

Every operation goes through one :class:`ConnectionManager`, whose single lock
serialises reads and writes. The re-tag evaluates messages outside that lock
and only takes it to read its snapshot and to write the batch, so chat keeps
being recorded while a large history is re-scanned. Whole re-tag runs are
serialised by a second lock, so a run started later always writes last.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
import json
from pathlib import Path
import sqlite3
import time
from typing import Any, List, Optional, Sequence, Tuple, Union

import aiosqlite

from chatguard.database.db_connection import ConnectionManager
from chatguard.database.db_schema import SchemaManager
from chatguard.datatypes.history_datatypes import (
    EntryKind,
    HistoryEntry,
    SearchFilters,
    SearchResult,
    from_unix_seconds,
    to_unix_seconds,
)
from chatguard.util.logger import get_logger

logger = get_logger("history_store")

# Identical message text from the same speaker within this many seconds is a duplicate delivery.
DUPLICATE_WINDOW_SECONDS = 2

_INSERT_SQL = """
    INSERT INTO chat_history (
        timestamp, type, name, message, chat_type, is_whisper, whisper_recipient,
        has_profanity, matched_words, user_name, action, room_name, room_owner
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_DUPLICATE_SQL = """
    SELECT 1 FROM chat_history
    WHERE type = 'message' AND name = ? AND message = ?
      AND timestamp BETWEEN ? AND ?
    LIMIT 1
"""


def _casefold(value: Optional[str]) -> Optional[str]:
    # SQLite's LOWER() and LIKE only fold ASCII; accented names need Python's rules.
    return value.casefold() if value is not None else None


def _encode_words(words: Sequence[str]) -> Optional[str]:
    return json.dumps(list(words), ensure_ascii=False) if words else None


def _decode_words(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        words = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("[HISTORY STORE] Ignoring unreadable matched_words value %r", raw)
        return []
    return [str(w) for w in words] if isinstance(words, list) else []


def _entry_params(entry: HistoryEntry) -> Tuple[Any, ...]:
    return (
        to_unix_seconds(entry.timestamp),
        entry.kind.value,
        entry.name,
        entry.message,
        entry.chat_type,
        int(entry.is_whisper),
        entry.whisper_recipient,
        int(entry.has_profanity),
        _encode_words(entry.matched_words),
        entry.user_name,
        entry.action,
        entry.room_name,
        entry.room_owner,
    )


def _row_to_entry(row: aiosqlite.Row) -> HistoryEntry:
    keys = row.keys()
    try:
        kind = EntryKind(row["type"])
    except ValueError:
        kind = EntryKind.MESSAGE
    return HistoryEntry(
        timestamp=from_unix_seconds(row["timestamp"]),
        kind=kind,
        name=row["name"],
        message=row["message"],
        chat_type=row["chat_type"],
        is_whisper=bool(row["is_whisper"]),
        whisper_recipient=row["whisper_recipient"] if "whisper_recipient" in keys else None,
        has_profanity=bool(row["has_profanity"]),
        matched_words=_decode_words(row["matched_words"]),
        user_name=row["user_name"],
        action=row["action"],
        room_name=row["room_name"],
        room_owner=row["room_owner"],
    )


def _build_where(filters: SearchFilters) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []

    if filters.user_name and filters.user_name.strip():
        needle = filters.user_name.strip().casefold()
        clauses.append("(instr(casefold(name), ?) > 0 OR instr(casefold(user_name), ?) > 0)")
        params.extend([needle, needle])

    if filters.keyword and filters.keyword.strip():
        needle = filters.keyword.strip().casefold()
        clauses.append("(instr(casefold(message), ?) > 0 OR instr(casefold(action), ?) > 0)")
        params.extend([needle, needle])

    if filters.profanity_only:
        clauses.append("has_profanity = 1")

    if filters.whispers_only:
        clauses.append("is_whisper = 1")

    if filters.from_date is not None:
        clauses.append("timestamp >= ?")
        params.append(to_unix_seconds(filters.from_date))

    if filters.to_date is not None:
        clauses.append("timestamp <= ?")
        params.append(to_unix_seconds(filters.to_date))

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class HistoryStore:
    """
    Persistent, queryable log of chat, action and room entries.

    Methods:
        open / close: Lifecycle; a corrupt file is set aside and replaced.
        add_entry: Insert unless it duplicates a recent message.
        search / search_all: Filtered, newest-first queries.
        update_profanity_flags: Re-evaluate stored messages against an index.
        clear / get_entry_count: Housekeeping.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self._path = Path(db_path)
        self._db = ConnectionManager()
        self._count = 0
        self._retag_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._db.is_open

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open (creating if needed) and count the stored rows.

        A file that SQLite cannot read is renamed to ``<name>.corrupt-<ts>``
        and an empty history is started in its place.
        """
        if self._db.is_open:
            return

        try:
            await self._open_and_initialize()
        except sqlite3.DatabaseError as exc:
            logger.warning("[HISTORY STORE] History database %s is unreadable (%s); starting empty", self._path, exc)
            await self._db.close()
            self._quarantine_corrupt_file()
            await self._open_and_initialize()

        self._count = await self._count_rows()
        logger.info("[HISTORY STORE] Opened %s (%d entries)", self._path, self._count)

    async def _open_and_initialize(self) -> None:
        await self._db.open(self._path)
        try:
            conn = self._db.connection
            await conn.create_function("casefold", 1, _casefold, deterministic=True)
            await SchemaManager.initialize_schema(conn)
        except Exception:
            await self._db.close()
            raise

    def _quarantine_corrupt_file(self) -> None:
        suffix = f".corrupt-{int(time.time())}"
        for path in (self._path, Path(f"{self._path}-wal"), Path(f"{self._path}-shm")):
            if not path.exists():
                continue
            target = path.with_name(path.name + suffix)
            try:
                path.rename(target)
                logger.warning("[HISTORY STORE] Moved %s to %s", path.name, target.name)
            except OSError:
                logger.exception("[HISTORY STORE] Could not move corrupt file %s aside", path)
                raise

    async def close(self) -> None:
        await self._db.close()

    async def _count_rows(self) -> int:
        async with self._db.read() as conn:
            async with conn.execute("SELECT COUNT(*) FROM chat_history") as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_entry(self, entry: HistoryEntry) -> bool:
        """Store ``entry``. Returns False when it was dropped as a duplicate message."""
        async with self._db.transaction() as conn:
            if entry.kind is EntryKind.MESSAGE:
                ts = to_unix_seconds(entry.timestamp)
                async with conn.execute(
                    _DUPLICATE_SQL,
                    (entry.name, entry.message, ts - DUPLICATE_WINDOW_SECONDS, ts + DUPLICATE_WINDOW_SECONDS),
                ) as cursor:
                    if await cursor.fetchone() is not None:
                        logger.debug("[HISTORY STORE] Dropped duplicate message from %s", entry.name)
                        return False
            await conn.execute(_INSERT_SQL, _entry_params(entry))
        self._count += 1
        return True

    async def clear(self) -> None:
        """Delete every stored entry."""
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM chat_history")
        self._count = 0
        logger.info("[HISTORY STORE] History cleared")

    async def update_profanity_flags(self, index) -> int:
        """Re-evaluate every stored message against ``index``.

        Only rows whose computed flag differs from the stored one are written
        (flag and matched words), all in one transaction. On failure nothing
        is written and the exception propagates. Runs never overlap: a run
        waits for the previous one to finish before reading its snapshot.

        Args:
            index: Anything with an ``analyze(text)`` method returning a
                :class:`ProfanityAnalysis` (normally the ProfanityIndex).

        Returns:
            Number of rows updated.
        """
        async with self._retag_lock:
            return await self._retag(index)

    async def _retag(self, index) -> int:
        start = time.perf_counter()
        async with self._db.read() as conn:
            async with conn.execute(
                "SELECT id, message, has_profanity FROM chat_history WHERE type = 'message'"
            ) as cursor:
                rows = [(row["id"], row["message"], bool(row["has_profanity"])) for row in await cursor.fetchall()]

        def evaluate() -> List[Tuple[int, Optional[str], int]]:
            changes = []
            for row_id, message, stored in rows:
                analysis = index.analyze(message)
                if analysis.has_profanity != stored:
                    changes.append((int(analysis.has_profanity), _encode_words(analysis.matched_words), row_id))
            return changes

        changes = await asyncio.to_thread(evaluate)
        if not changes:
            logger.debug("[HISTORY STORE] Re-tag scanned %d messages, nothing changed", len(rows))
            return 0

        try:
            async with self._db.transaction() as conn:
                await conn.executemany(
                    "UPDATE chat_history SET has_profanity = ?, matched_words = ? WHERE id = ?",
                    changes,
                )
        except Exception:
            logger.exception("[HISTORY STORE] Re-tag batch failed; stored flags left untouched")
            raise

        elapsed = time.perf_counter() - start
        logger.info(
            "[HISTORY STORE] Re-tagged %d of %d messages in %.3fs",
            len(changes), len(rows), elapsed,
        )
        return len(changes)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry_count(self) -> int:
        """Number of stored rows (counted at open, maintained on every write)."""
        return self._count

    async def search(
        self,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SearchResult:
        """Newest-first filtered search.

        ``total_count`` is the size of the whole filtered set, computed in the
        same query as the limited fetch. ``limit`` of None returns every
        matching row; 0 returns none but still reports ``total_count``.
        """
        filters = filters or SearchFilters()
        where, params = _build_where(filters)
        sql_limit = -1 if limit is None else max(limit, 0)

        sql = f"""
            SELECT *, COUNT(*) OVER () AS total_count
            FROM chat_history
            {where}
            ORDER BY timestamp DESC, id DESC
            LIMIT ? OFFSET ?
        """

        async with self._db.read() as conn:
            async with conn.execute(sql, (*params, sql_limit, max(offset, 0))) as cursor:
                rows = await cursor.fetchall()

            if rows:
                total = int(rows[0]["total_count"])
            elif offset > 0 or sql_limit == 0:
                # No row carried the window count back.
                async with conn.execute(f"SELECT COUNT(*) FROM chat_history {where}", params) as cursor:
                    total = int((await cursor.fetchone())[0])
            else:
                total = 0

        return SearchResult(entries=[_row_to_entry(row) for row in rows], total_count=total)

    async def search_all(self, filters: Optional[SearchFilters] = None) -> List[HistoryEntry]:
        """Every matching entry, newest first. The list is a private copy."""
        result = await self.search(filters, limit=None)
        return result.entries

    async def snapshot(self, since: Optional[datetime] = None) -> List[HistoryEntry]:
        """Copy of the stored history in chronological order, for export."""
        entries = await self.search_all(SearchFilters(from_date=since))
        entries.reverse()
        return entries
