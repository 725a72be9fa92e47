"""
Materialized sync queue for expensesync.

An ordered log of the mutations made while records were dirty. The batch
itself is rebuilt from the dirty records in the local store; the queue keeps
the per-entity retry bookkeeping and tells whether anything is waiting.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from expensesync.domain.models import EntityType, SyncOperation, SyncQueueItem, utcnow
from expensesync.infrastructure.database import LocalDatabase
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


def _row_to_item(row: sqlite3.Row) -> SyncQueueItem:
    last_attempt = row["last_attempt_at"]
    return SyncQueueItem(
        id=row["id"],
        entity_type=EntityType(row["entity_type"]),
        entity_id=row["entity_id"],
        operation=SyncOperation(row["operation"]),
        payload=json.loads(row["payload"]),
        retry_count=row["retry_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_attempt_at=datetime.fromisoformat(last_attempt) if last_attempt else None,
        error=row["error"],
    )


class SyncQueue:
    """Pending mutation log stored in the `sync_queue` table."""

    def __init__(self, db: LocalDatabase) -> None:
        self._db = db

    async def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        operation: SyncOperation,
        payload: Optional[Dict[str, Any]] = None,
    ) -> SyncQueueItem:
        item = SyncQueueItem(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            payload=payload or {},
        )
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_queue
                    (id, entity_type, entity_id, operation, payload, retry_count, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    item.id,
                    item.entity_type.value,
                    item.entity_id,
                    item.operation.value,
                    json.dumps(item.payload, default=str),
                    item.created_at.isoformat(),
                ),
            )
        log.debug(
            "Mutation queued",
            extra={
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "operation": operation.value,
            },
        )
        return item

    async def list(self) -> List[SyncQueueItem]:
        rows = self._db.connection.execute("SELECT * FROM sync_queue ORDER BY created_at, rowid")
        return [_row_to_item(row) for row in rows]

    async def for_entity(self, entity_type: EntityType, entity_id: str) -> List[SyncQueueItem]:
        rows = self._db.connection.execute(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY created_at, rowid",
            (entity_type.value, entity_id),
        )
        return [_row_to_item(row) for row in rows]

    async def size(self) -> int:
        row = self._db.connection.execute("SELECT COUNT(*) FROM sync_queue").fetchone()
        return int(row[0])

    async def is_empty(self) -> bool:
        return await self.size() == 0

    async def acknowledge(self, entity_type: EntityType, entity_id: str) -> int:
        """Discard every queued mutation for an entity the server acknowledged."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
                (entity_type.value, entity_id),
            )
        return cursor.rowcount

    async def record_failure(
        self,
        entity_type: EntityType,
        entity_id: str,
        error: str,
        operation: SyncOperation = SyncOperation.UPDATE,
    ) -> int:
        """
        Bump the retry count of an entity's queued mutations and return it.

        A dirty record with no queued mutation (for instance after the queue
        was cleared) gets one, so its attempts are still counted.
        """
        now = utcnow().isoformat()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_queue
                SET retry_count = retry_count + 1, last_attempt_at = ?, error = ?
                WHERE entity_type = ? AND entity_id = ?
                """,
                (now, error, entity_type.value, entity_id),
            )
            if cursor.rowcount == 0:
                conn.execute(
                    """
                    INSERT INTO sync_queue
                        (id, entity_type, entity_id, operation, payload, retry_count,
                         created_at, last_attempt_at, error)
                    VALUES (?, ?, ?, ?, '{}', 1, ?, ?, ?)
                    """,
                    (
                        str(uuid.uuid4()),
                        entity_type.value,
                        entity_id,
                        operation.value,
                        now,
                        now,
                        error,
                    ),
                )
            row = conn.execute(
                "SELECT MAX(retry_count) FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
                (entity_type.value, entity_id),
            ).fetchone()
        return int(row[0] or 0)

    async def reset_retries(self, entity_type: EntityType, entity_id: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_queue SET retry_count = 0, error = NULL "
                "WHERE entity_type = ? AND entity_id = ?",
                (entity_type.value, entity_id),
            )

    async def remap(self, entity_type: EntityType, local_id: str, server_id: str) -> None:
        """Point queued mutations for a remapped record at its server id."""
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_queue SET entity_id = ? WHERE entity_type = ? AND entity_id = ?",
                (server_id, entity_type.value, local_id),
            )

    async def clear(self) -> int:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue")
        return cursor.rowcount


__all__ = ["SyncQueue"]
