"""
Local record store for expensesync.

One `LocalRecordStore` per entity kind, each backed by its own SQLite table.
Records are kept as their JSON document next to the columns used for lookups
(`owner_id`, `sync_status`, `is_deleted`). The store never talks to the
network; the orchestrator and the entity services only read and write records
through it.
"""

from __future__ import annotations

import sqlite3
from typing import Dict, Generic, Iterable, List, Optional, Type

from expensesync.domain.entities import EntityDescriptor
from expensesync.domain.models import RecordT, SyncStatus
from expensesync.infrastructure.database import LocalDatabase
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


class LocalRecordStore(Generic[RecordT]):
    """
    Durable per-record storage for one entity kind.

    Methods are coroutines so callers treat local storage as an I/O boundary;
    the SQLite work itself runs on the event loop thread.
    """

    def __init__(self, db: LocalDatabase, descriptor: EntityDescriptor) -> None:
        self._db = db
        self.descriptor = descriptor
        self.table = descriptor.table
        self._model: Type[RecordT] = descriptor.model  # type: ignore[assignment]

    # -- helpers ---------------------------------------------------------

    def _load(self, row: sqlite3.Row) -> RecordT:
        return self._model.model_validate_json(row["document"])

    def _load_all(self, rows: Iterable[sqlite3.Row]) -> List[RecordT]:
        return [self._load(row) for row in rows]

    def _get(self, record_id: str) -> Optional[RecordT]:
        row = self._db.connection.execute(
            f"SELECT document FROM {self.table} WHERE id = ?", (record_id,)
        ).fetchone()
        return self._load(row) if row is not None else None

    def _upsert(self, conn: sqlite3.Connection, record: RecordT) -> None:
        conn.execute(
            f"""
            INSERT OR REPLACE INTO {self.table}
                (id, owner_id, sync_status, is_deleted, updated_at, document)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.owner_id,
                record.sync_status.value,
                int(record.is_deleted),
                record.updated_at.isoformat(),
                record.model_dump_json(by_alias=True),
            ),
        )

    # -- reads -----------------------------------------------------------

    async def get(self, record_id: str) -> Optional[RecordT]:
        return self._get(record_id)

    async def get_all(self, owner_id: str, include_deleted: bool = False) -> List[RecordT]:
        sql = f"SELECT document FROM {self.table} WHERE owner_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        sql += " ORDER BY updated_at DESC"
        return self._load_all(self._db.connection.execute(sql, (owner_id,)))

    async def list_by_status(self, owner_id: str, status: SyncStatus) -> List[RecordT]:
        rows = self._db.connection.execute(
            f"SELECT document FROM {self.table} WHERE owner_id = ? AND sync_status = ? "
            "ORDER BY updated_at",
            (owner_id, status.value),
        )
        return self._load_all(rows)

    async def list_pending_sync(self, owner_id: str) -> List[RecordT]:
        """Dirty records for `owner_id`, deleted ones included."""
        return await self.list_by_status(owner_id, SyncStatus.PENDING_SYNC)

    async def count_pending(self, owner_id: str) -> int:
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM {self.table} WHERE owner_id = ? AND sync_status = ?",
            (owner_id, SyncStatus.PENDING_SYNC.value),
        ).fetchone()
        return int(row[0])

    async def status_counts(self, owner_id: str) -> Dict[str, int]:
        """Record counts per sync status, plus how many are soft-deleted."""
        counts = {status.value: 0 for status in SyncStatus}
        counts["deleted"] = 0
        rows = self._db.connection.execute(
            f"SELECT sync_status, is_deleted, COUNT(*) AS n FROM {self.table} "
            "WHERE owner_id = ? GROUP BY sync_status, is_deleted",
            (owner_id,),
        )
        for row in rows:
            counts[row["sync_status"]] += row["n"]
            if row["is_deleted"]:
                counts["deleted"] += row["n"]
        return counts

    # -- writes ----------------------------------------------------------

    async def put(self, record: RecordT) -> None:
        with self._db.transaction() as conn:
            self._upsert(conn, record)

    async def put_many(self, records: Iterable[RecordT]) -> None:
        with self._db.transaction() as conn:
            for record in records:
                self._upsert(conn, record)

    async def soft_delete(self, record_id: str) -> Optional[RecordT]:
        """
        Flag a record deleted and dirty. The row stays until the remote
        authority acknowledges the deletion.
        """
        record = self._get(record_id)
        if record is None:
            return None
        deleted = record.touched(is_deleted=True)
        with self._db.transaction() as conn:
            self._upsert(conn, deleted)
        return deleted  # type: ignore[return-value]

    async def set_status(self, record_id: str, status: SyncStatus) -> Optional[RecordT]:
        record = self._get(record_id)
        if record is None:
            return None
        updated = record.with_status(status)
        with self._db.transaction() as conn:
            self._upsert(conn, updated)
        return updated  # type: ignore[return-value]

    async def replace_id(
        self,
        local_id: str,
        server_id: str,
        sync_status: SyncStatus = SyncStatus.SYNCED,
    ) -> Optional[RecordT]:
        """
        Move a record from its local id to its server id in one transaction.

        Returns the remapped record, or None when nothing is stored under
        `local_id` (already remapped), which makes a repeated call a no-op.
        """
        if local_id == server_id:
            return await self.set_status(local_id, sync_status)

        # No await between the read and the write below.
        record = self._get(local_id)
        if record is None:
            log.debug(
                "Remap skipped; local id not present",
                extra={"table": self.table, "local_id": local_id, "server_id": server_id},
            )
            return None
        remapped = record.model_copy(update={"id": server_id, "sync_status": sync_status})
        with self._db.transaction() as conn:
            conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (local_id,))
            self._upsert(conn, remapped)
        log.debug(
            "Record remapped",
            extra={"table": self.table, "local_id": local_id, "server_id": server_id},
        )
        return remapped

    async def purge(self, record_id: str) -> bool:
        """Physically remove a record. Used once a deletion is acknowledged."""
        with self._db.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    async def clear(self, owner_id: Optional[str] = None) -> int:
        with self._db.transaction() as conn:
            if owner_id is None:
                cursor = conn.execute(f"DELETE FROM {self.table}")
            else:
                cursor = conn.execute(f"DELETE FROM {self.table} WHERE owner_id = ?", (owner_id,))
        return cursor.rowcount


__all__ = ["LocalRecordStore"]
