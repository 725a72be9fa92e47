"""
Domain models for expensesync.

Defines the two synchronized entity kinds (receipts and time entries), the
inputs used to create and edit them, and the batch sync contracts exchanged
with the remote authority. Field names are snake_case in Python and camelCase
on the wire.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, Field
from pydantic.alias_generators import to_camel

EXPENSE_CATEGORIES = (
    "Meals & Entertainment",
    "Transportation",
    "Lodging",
    "Office Supplies",
    "Software & Subscriptions",
    "Professional Services",
    "Travel",
    "Utilities",
    "Equipment",
    "Other",
)

_WIRE_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "extra": "ignore",
}


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING_SYNC = "pending_sync"
    SYNC_ERROR = "sync_error"


class OcrStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EntityType(str, Enum):
    RECEIPT = "receipt"
    TIME_ENTRY = "time-entry"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncRecord(BaseModel):
    """
    Fields shared by every record the client keeps in sync with the server.
    """

    id: str = Field(..., description="Local id (prefixed) or server-assigned id.")
    owner_id: str = Field(
        ...,
        validation_alias=AliasChoices("ownerId", "userId", "owner_id"),
        serialization_alias="ownerId",
        description="Authenticated user scope; every query is partitioned by it.",
    )
    sync_status: SyncStatus = Field(SyncStatus.PENDING_SYNC)
    is_deleted: bool = Field(False, description="Soft-delete flag.")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {**_WIRE_CONFIG, "frozen": True}

    @property
    def is_dirty(self) -> bool:
        return self.sync_status is not SyncStatus.SYNCED

    def with_status(self, status: SyncStatus) -> "SyncRecord":
        return self.model_copy(update={"sync_status": status})

    def touched(self, **changes: Any) -> "SyncRecord":
        """Copy with `changes` applied, marked dirty and with a fresh `updated_at`."""
        return self.model_copy(
            update={**changes, "sync_status": SyncStatus.PENDING_SYNC, "updated_at": utcnow()}
        )


RecordT = TypeVar("RecordT", bound=SyncRecord)


class Receipt(SyncRecord):
    blob_url: Optional[str] = None
    local_image_data: Optional[str] = Field(
        None, description="Base64 image kept locally until it is uploaded."
    )
    merchant_name: Optional[str] = None
    transaction_date: Optional[datetime] = None
    total_amount: Optional[float] = Field(None, ge=0)
    currency: str = "USD"
    category: Optional[str] = None
    description: Optional[str] = None
    ocr_status: OcrStatus = OcrStatus.PENDING


class TimeEntry(SyncRecord):
    date: datetime
    hours: float = Field(..., ge=0, le=24)
    description: str = ""
    project: Optional[str] = None


class ReceiptCreate(BaseModel):
    blob_url: Optional[str] = None
    merchant_name: Optional[str] = None
    transaction_date: Optional[datetime] = None
    total_amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None

    model_config = _WIRE_CONFIG


class ReceiptUpdate(BaseModel):
    merchant_name: Optional[str] = None
    transaction_date: Optional[datetime] = None
    total_amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None

    model_config = _WIRE_CONFIG


class TimeEntryCreate(BaseModel):
    date: datetime
    hours: float = Field(..., ge=0, le=24)
    description: str = ""
    project: Optional[str] = None

    model_config = _WIRE_CONFIG


class TimeEntryUpdate(BaseModel):
    date: Optional[datetime] = None
    hours: Optional[float] = Field(None, ge=0, le=24)
    description: Optional[str] = None
    project: Optional[str] = None

    model_config = _WIRE_CONFIG


RECEIPT_UPDATABLE_FIELDS = (
    "merchant_name",
    "transaction_date",
    "total_amount",
    "currency",
    "category",
    "description",
)
TIME_ENTRY_UPDATABLE_FIELDS = ("date", "hours", "description", "project")


def _merge(
    existing: RecordT,
    update: BaseModel,
    fields: Iterable[str],
    non_nullable: FrozenSet[str] = frozenset(),
) -> RecordT:
    changes: Dict[str, Any] = {}
    for name in fields:
        if name not in update.model_fields_set:
            continue
        value = getattr(update, name)
        if value is None and name in non_nullable:
            continue
        changes[name] = value
    return existing.touched(**changes)  # type: ignore[return-value]


def apply_receipt_update(existing: Receipt, update: ReceiptUpdate) -> Receipt:
    """
    Apply the fields explicitly set on `update`. An explicit None clears an
    optional field; `currency` cannot be cleared.
    """
    return _merge(existing, update, RECEIPT_UPDATABLE_FIELDS, frozenset({"currency"}))


def apply_time_entry_update(existing: TimeEntry, update: TimeEntryUpdate) -> TimeEntry:
    """Apply the fields explicitly set on `update`; None keeps required fields."""
    return _merge(
        existing,
        update,
        TIME_ENTRY_UPDATABLE_FIELDS,
        frozenset({"date", "hours", "description"}),
    )


class BatchSyncItem(BaseModel):
    operation: SyncOperation
    entity_id: str
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = _WIRE_CONFIG


class BatchSyncRequest(BaseModel):
    receipts: List[BatchSyncItem] = Field(default_factory=list)
    time_entries: List[BatchSyncItem] = Field(default_factory=list)

    model_config = _WIRE_CONFIG

    def __len__(self) -> int:
        return len(self.receipts) + len(self.time_entries)


class SyncResult(BaseModel):
    entity_type: EntityType
    entity_id: str
    local_id: Optional[str] = None
    operation: SyncOperation
    success: bool = False
    server_data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None

    model_config = _WIRE_CONFIG

    @property
    def submitted_id(self) -> str:
        """The id the client used when it submitted the operation."""
        return self.local_id or self.entity_id


class BatchSyncResponse(BaseModel):
    success: bool = True
    results: List[SyncResult] = Field(default_factory=list)
    errors: List[SyncResult] = Field(default_factory=list)

    model_config = _WIRE_CONFIG


class UploadUrlResponse(BaseModel):
    upload_url: str
    blob_url: str
    expires_at: datetime

    model_config = _WIRE_CONFIG


class SyncQueueItem(BaseModel):
    """
    One pending mutation. Consumed once a sync acknowledges the entity,
    retried (with `retry_count` bumped) while it keeps failing.
    """

    id: str
    entity_type: EntityType
    entity_id: str
    operation: SyncOperation
    payload: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_attempt_at: Optional[datetime] = None
    error: Optional[str] = None

    model_config = {"frozen": True}


__all__ = [
    "EXPENSE_CATEGORIES",
    "SyncStatus",
    "OcrStatus",
    "EntityType",
    "SyncOperation",
    "SyncRecord",
    "RecordT",
    "Receipt",
    "TimeEntry",
    "ReceiptCreate",
    "ReceiptUpdate",
    "TimeEntryCreate",
    "TimeEntryUpdate",
    "RECEIPT_UPDATABLE_FIELDS",
    "TIME_ENTRY_UPDATABLE_FIELDS",
    "apply_receipt_update",
    "apply_time_entry_update",
    "BatchSyncItem",
    "BatchSyncRequest",
    "SyncResult",
    "BatchSyncResponse",
    "UploadUrlResponse",
    "SyncQueueItem",
    "utcnow",
]
