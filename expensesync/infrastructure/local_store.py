"""
Bundle of the local tables the sync core works with.
"""

from __future__ import annotations

from typing import Optional

from expensesync.domain.entities import ENTITY_DESCRIPTORS
from expensesync.domain.models import EntityType, Receipt, TimeEntry
from expensesync.infrastructure.database import LocalDatabase
from expensesync.infrastructure.record_store import LocalRecordStore
from expensesync.infrastructure.sync_queue import SyncQueue


class LocalStore:
    """
    One database, one record store per entity kind, and the sync queue.

    Example
    -------
        store = LocalStore.open(":memory:")
        await store.receipts.put(receipt)
        store.close()
    """

    def __init__(self, db: LocalDatabase) -> None:
        self.db = db
        self.receipts: LocalRecordStore[Receipt] = LocalRecordStore(
            db, ENTITY_DESCRIPTORS[EntityType.RECEIPT]
        )
        self.time_entries: LocalRecordStore[TimeEntry] = LocalRecordStore(
            db, ENTITY_DESCRIPTORS[EntityType.TIME_ENTRY]
        )
        self.sync_queue = SyncQueue(db)

    @classmethod
    def open(cls, path: Optional[str] = None) -> "LocalStore":
        return cls(LocalDatabase(path))

    def records(self, entity_type: EntityType) -> LocalRecordStore:
        if entity_type is EntityType.RECEIPT:
            return self.receipts
        return self.time_entries

    async def count_pending(self, owner_id: str) -> int:
        return await self.receipts.count_pending(owner_id) + await self.time_entries.count_pending(
            owner_id
        )

    async def clear_all(self) -> None:
        """Drop every local record and queued mutation."""
        await self.receipts.clear()
        await self.time_entries.clear()
        await self.sync_queue.clear()

    def close(self) -> None:
        self.db.close()


__all__ = ["LocalStore"]
