"""
Domain package for expensesync.

Exports the record models, sync contracts and the entity registry used by the
store, the gateway and the orchestrator. Keep this package focused on data
definitions and validation concerns.
"""

from expensesync.domain.entities import (
    ENTITY_DESCRIPTORS,
    EntityDescriptor,
    descriptor_for,
    infer_operation,
    is_local_id,
    new_local_id,
)
from expensesync.domain.models import (
    BatchSyncItem,
    BatchSyncRequest,
    BatchSyncResponse,
    EntityType,
    OcrStatus,
    Receipt,
    ReceiptCreate,
    ReceiptUpdate,
    SyncOperation,
    SyncQueueItem,
    SyncRecord,
    SyncResult,
    SyncStatus,
    TimeEntry,
    TimeEntryCreate,
    TimeEntryUpdate,
    UploadUrlResponse,
    apply_receipt_update,
    apply_time_entry_update,
)

__all__ = [
    "ENTITY_DESCRIPTORS",
    "EntityDescriptor",
    "descriptor_for",
    "infer_operation",
    "is_local_id",
    "new_local_id",
    "BatchSyncItem",
    "BatchSyncRequest",
    "BatchSyncResponse",
    "EntityType",
    "OcrStatus",
    "Receipt",
    "ReceiptCreate",
    "ReceiptUpdate",
    "SyncOperation",
    "SyncQueueItem",
    "SyncRecord",
    "SyncResult",
    "SyncStatus",
    "TimeEntry",
    "TimeEntryCreate",
    "TimeEntryUpdate",
    "UploadUrlResponse",
    "apply_receipt_update",
    "apply_time_entry_update",
]
