"""
Database infrastructure with SQLite and async support.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


# Each entry is one migration; append only.
_MIGRATIONS: List[List[str]] = [
    [
        """
        CREATE TABLE IF NOT EXISTS knowledge_base (
            id TEXT PRIMARY KEY,
            category TEXT NOT NULL,
            topic TEXT NOT NULL UNIQUE,
            question TEXT NOT NULL,
            answer TEXT NOT NULL,
            short_answer TEXT NOT NULL DEFAULT '',
            source TEXT NOT NULL,
            source_url TEXT,
            content_hash TEXT,
            confidence_score REAL DEFAULT 0.8,
            keywords TEXT NOT NULL DEFAULT '[]',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_knowledge_hash ON knowledge_base(content_hash)",
        "CREATE INDEX IF NOT EXISTS idx_knowledge_active ON knowledge_base(is_active, confidence_score)",
        """
        CREATE TABLE IF NOT EXISTS learning_queue (
            id TEXT PRIMARY KEY,
            source TEXT NOT NULL,
            content_type TEXT NOT NULL,
            raw_content TEXT NOT NULL,
            content_hash TEXT,
            priority INTEGER NOT NULL DEFAULT 5,
            processed INTEGER NOT NULL DEFAULT 0,
            processed_at TEXT,
            learning_outcome TEXT NOT NULL DEFAULT '{}',
            leased_at TEXT,
            leased_by TEXT,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_queue_backlog ON learning_queue(processed, priority, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_queue_hash ON learning_queue(content_hash)",
        """
        CREATE TABLE IF NOT EXISTS data_sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            source_type TEXT NOT NULL,
            url TEXT,
            fetch_frequency TEXT NOT NULL DEFAULT '01:00:00',
            last_fetch TEXT,
            next_fetch TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            error_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            config TEXT NOT NULL DEFAULT '{}'
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS self_healing_log (
            id TEXT PRIMARY KEY,
            component TEXT NOT NULL,
            issue_type TEXT NOT NULL,
            issue_description TEXT NOT NULL DEFAULT '',
            severity TEXT NOT NULL,
            auto_healed INTEGER NOT NULL DEFAULT 0,
            healing_action TEXT,
            healing_result TEXT,
            requires_human INTEGER NOT NULL DEFAULT 0,
            notified INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            resolved_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_issues_open ON self_healing_log(resolved_at, auto_healed)",
        """
        CREATE TABLE IF NOT EXISTS activity_log (
            id TEXT PRIMARY KEY,
            action_type TEXT NOT NULL,
            component TEXT NOT NULL,
            metadata TEXT NOT NULL DEFAULT '{}',
            success INTEGER NOT NULL DEFAULT 1,
            error_message TEXT,
            duration_ms INTEGER,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_activity_type ON activity_log(action_type, created_at)",
        """
        CREATE TABLE IF NOT EXISTS external_data (
            source TEXT NOT NULL,
            data_type TEXT NOT NULL,
            item_key TEXT NOT NULL,
            content TEXT NOT NULL,
            fetched_at TEXT NOT NULL,
            PRIMARY KEY (source, data_type, item_key)
        )
        """,
    ],
]


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: str = "db/learning.db"):
        # Handle SQLite URL format if provided
        if db_path.startswith("sqlite"):
            # Handle sqlite+aiosqlite:///path format
            if "///" in db_path:
                actual_path = db_path.split("///")[-1]
            else:
                actual_path = db_path.split("//")[-1]
            self.db_path = Path(actual_path)
        else:
            self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit: every statement is its own atomic unit unless inside transaction()
        self._connection = await aiosqlite.connect(self.db_path, timeout=30, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        # SQLite lower() only folds ASCII; search compares Unicode case-folded text.
        await self._connection.create_function("casefold", 1, _casefold, deterministic=True)
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions."""
        if not self._connection:
            await self.connect()

        await self._connection.execute("BEGIN")
        try:
            yield self._connection
        except BaseException:
            await self._connection.execute("ROLLBACK")
            raise
        else:
            await self._connection.execute("COMMIT")

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(sql, tuple(_adapt(p) for p in params))

    async def write(self, sql: str, params: Tuple[Any, ...] = ()) -> int:
        """Execute a data-modifying statement and return the affected row count."""
        cursor = await self.execute(sql, params)
        return cursor.rowcount

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    async def fetch_value(self, sql: str, params: Tuple[Any, ...] = ()) -> Any:
        """Fetch the first column of the first row, or None."""
        row = await self.fetch_one(sql, params)
        return row[0] if row is not None else None

    async def insert(self, table: str, data: Dict[str, Any]) -> None:
        """Insert one row; dict/list values are stored as JSON."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        await self.execute(sql, tuple(data.values()))

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        pk_columns: List[str],
        keep_columns: Optional[List[str]] = None,
    ) -> None:
        """Upsert data into a table.

        Columns in ``keep_columns`` are written on insert but left untouched
        when the row already exists (identifiers, creation timestamps).
        """
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))
        values = list(data.values())

        # Build the conflict resolution clause
        skip = set(pk_columns) | set(keep_columns or [])
        update_columns = [col for col in columns if col not in skip]
        if update_columns:
            update_clause = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO UPDATE SET {update_clause}"
        else:
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO NOTHING"

        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            {conflict_clause}
        """
        await self.execute(sql, tuple(values))

    async def _run_migrations(self) -> None:
        """Run database migrations."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor = await self._connection.execute("SELECT COALESCE(MAX(version), 0) FROM migrations")
        row = await cursor.fetchone()
        current = row[0]

        for version, statements in enumerate(_MIGRATIONS, start=1):
            if version <= current:
                continue
            async with self.transaction() as conn:
                for statement in statements:
                    await conn.execute(statement)
                await conn.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
            logger.info(f"Applied migration {version} to {self.db_path}")


def _adapt(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return int(value)
    return value


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value
