"""
Infrastructure package for expensesync.

Centralizes local persistence concerns (the SQLite database, per-entity record
stores, the sync queue). Keep this layer focused on I/O and resource
management, decoupled from sync policy.
"""

from expensesync.infrastructure.database import LocalDatabase
from expensesync.infrastructure.local_store import LocalStore
from expensesync.infrastructure.record_store import LocalRecordStore
from expensesync.infrastructure.sync_queue import SyncQueue

__all__ = [
    "LocalDatabase",
    "LocalStore",
    "LocalRecordStore",
    "SyncQueue",
]
