"""
Database schema initialization and migration management.

Handles creation of the chat history table, its indexes, optional-column
migrations and schema version tracking.
"""

import sqlite3

import aiosqlite
from chatguard.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 2

# Columns added after the first release. Old rows read them back as NULL.
_OPTIONAL_COLUMNS = [
    ("chat_history", "whisper_recipient", "TEXT"),
]


class SchemaManager:
    """Creates and migrates the history schema."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create or update all tables and indexes.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._migrate_columns(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        # Timestamps are whole Unix seconds (UTC).
        await db.execute("""
            CREATE TABLE IF NOT EXISTS chat_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                type TEXT NOT NULL,
                name TEXT,
                message TEXT,
                chat_type TEXT,
                is_whisper INTEGER NOT NULL DEFAULT 0,
                has_profanity INTEGER NOT NULL DEFAULT 0,
                matched_words TEXT,
                user_name TEXT,
                action TEXT,
                room_name TEXT,
                room_owner TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _migrate_columns(db: aiosqlite.Connection) -> None:
        """Add optional columns; an already-existing column is not an error."""
        for table, column, column_type in _OPTIONAL_COLUMNS:
            try:
                await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
                logger.info("[SCHEMA] Added %s column to %s", column, table)
            except sqlite3.OperationalError:
                logger.debug("[SCHEMA] Column %s.%s already exists", table, column)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create indexes for the search filters and the duplicate check."""
        await db.execute("CREATE INDEX IF NOT EXISTS idx_timestamp ON chat_history(timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_name ON chat_history(name)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_user_name ON chat_history(user_name)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_has_profanity ON chat_history(has_profanity)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_name_timestamp ON chat_history(name, timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_user_name_timestamp ON chat_history(user_name, timestamp)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        """Update schema version tracking."""
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
