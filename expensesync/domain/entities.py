"""
Entity registry for expensesync.

Each synchronized entity kind is described once here: its record model, the
local table that stores it, its key inside a batch sync request, its REST
route, and how a record is turned into the payload the server expects. The
orchestrator and the gateway look entity kinds up here instead of branching on
them.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from pydantic import ValidationError

from expensesync.domain.models import (
    EntityType,
    Receipt,
    SyncOperation,
    SyncRecord,
    SyncStatus,
    TimeEntry,
)
from expensesync.errors import RecordValidationError


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def receipt_payload(record: Receipt) -> Dict[str, Any]:
    """Fields the server accepts for a receipt create/update."""
    return {
        "blobUrl": record.blob_url,
        "merchantName": record.merchant_name,
        "transactionDate": _iso(record.transaction_date),
        "totalAmount": record.total_amount,
        "currency": record.currency,
        "category": record.category,
        "description": record.description,
    }


def time_entry_payload(record: TimeEntry) -> Dict[str, Any]:
    """Fields the server accepts for a time entry create/update."""
    return {
        "date": _iso(record.date),
        "hours": record.hours,
        "description": record.description,
        "project": record.project,
    }


@dataclass(frozen=True)
class EntityDescriptor:
    entity_type: EntityType
    model: Type[SyncRecord]
    table: str
    batch_key: str
    route: str
    build_payload: Callable[[Any], Dict[str, Any]]

    def from_wire(
        self,
        payload: Dict[str, Any],
        owner_id: Optional[str] = None,
        sync_status: SyncStatus = SyncStatus.SYNCED,
    ) -> SyncRecord:
        """
        Validate a server snapshot into a record. The server scopes records by
        the caller's identity, so `owner_id` fills in a missing owner field.
        """
        data = dict(payload)
        if owner_id is not None and not any(k in data for k in ("ownerId", "userId", "owner_id")):
            data["ownerId"] = owner_id
        data["syncStatus"] = sync_status.value
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            raise RecordValidationError(
                f"Invalid {self.entity_type.value} payload from server: {exc}"
            ) from exc


ENTITY_DESCRIPTORS: Dict[EntityType, EntityDescriptor] = {
    EntityType.RECEIPT: EntityDescriptor(
        entity_type=EntityType.RECEIPT,
        model=Receipt,
        table="receipts",
        batch_key="receipts",
        route="receipts",
        build_payload=receipt_payload,
    ),
    EntityType.TIME_ENTRY: EntityDescriptor(
        entity_type=EntityType.TIME_ENTRY,
        model=TimeEntry,
        table="time_entries",
        batch_key="time_entries",
        route="time-entries",
        build_payload=time_entry_payload,
    ),
}


def descriptor_for(entity_type: EntityType | str) -> EntityDescriptor:
    try:
        return ENTITY_DESCRIPTORS[EntityType(entity_type)]
    except (KeyError, ValueError):
        raise ValueError(
            f"Unknown entity type '{entity_type}'. "
            f"Available: {', '.join(t.value for t in ENTITY_DESCRIPTORS)}"
        ) from None


def new_local_id(prefix: str = "local-") -> str:
    return f"{prefix}{uuid.uuid4()}"


def is_local_id(record_id: str, prefix: str = "local-") -> bool:
    return record_id.startswith(prefix)


def infer_operation(record: SyncRecord, prefix: str = "local-") -> SyncOperation:
    """
    Work out which operation replays a dirty record: deleted records are
    deletes, records already holding a server id are updates, the rest are
    creates.
    """
    if record.is_deleted:
        return SyncOperation.DELETE
    if not is_local_id(record.id, prefix):
        return SyncOperation.UPDATE
    return SyncOperation.CREATE


__all__ = [
    "EntityDescriptor",
    "ENTITY_DESCRIPTORS",
    "descriptor_for",
    "new_local_id",
    "is_local_id",
    "infer_operation",
    "receipt_payload",
    "time_entry_payload",
]
