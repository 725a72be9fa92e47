"""
Local database management for expensesync.

Owns the single SQLite connection behind the local record store and the sync
queue, creates the schema on first use, and hands out transactions. The
client is single-threaded (one asyncio loop), so one connection is shared by
every table.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Optional

from expensesync.config import get_settings
from expensesync.utils.logging import get_logger

log = get_logger(__name__)

MEMORY_PATH = ":memory:"

RECORD_TABLES = ("receipts", "time_entries")


def _record_table_ddl(table: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            sync_status TEXT NOT NULL,
            is_deleted INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            document TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_{table}_owner_status
            ON {table} (owner_id, sync_status);
    """


SYNC_QUEUE_DDL = """
    CREATE TABLE IF NOT EXISTS sync_queue (
        id TEXT PRIMARY KEY,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        operation TEXT NOT NULL,
        payload TEXT NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_attempt_at TEXT,
        error TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_sync_queue_entity
        ON sync_queue (entity_type, entity_id);
    CREATE INDEX IF NOT EXISTS idx_sync_queue_created
        ON sync_queue (created_at);
"""


class LocalDatabase:
    """
    SQLite connection owner with lazy schema creation.

    Usage
    -----
        db = LocalDatabase(":memory:")
        with db.transaction() as conn:
            conn.execute("DELETE FROM receipts")
        db.close()
    """

    def __init__(self, path: Optional[str] = None, tables: Iterable[str] = RECORD_TABLES) -> None:
        self.path = path or get_settings().db_path
        self._tables = tuple(tables)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = self._open()
        return self._conn

    def _open(self) -> sqlite3.Connection:
        target = self.path
        if target != MEMORY_PATH:
            target = str(Path(target).expanduser())
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(target)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript("".join(_record_table_ddl(t) for t in self._tables) + SYNC_QUEUE_DDL)
        conn.commit()
        log.debug("Local database ready", extra={"path": self.path, "tables": list(self._tables)})
        return conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run the enclosed statements as one transaction: committed on success,
        rolled back if the block raises.
        """
        conn = self.connection
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "LocalDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["LocalDatabase", "MEMORY_PATH", "RECORD_TABLES"]
