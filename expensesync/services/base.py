"""
Local-first entity services.

Every mutation lands in the local store and the sync queue first, so the caller
gets its record back whether or not the remote authority is reachable. When
the client is online the service then tries an immediate single-record push;
if that fails the record simply stays `pending_sync` for the next batch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Union

from pydantic import BaseModel

from expensesync.config import Settings, get_settings
from expensesync.connectivity import ConnectivityState
from expensesync.domain.entities import (
    EntityDescriptor,
    descriptor_for,
    is_local_id,
    new_local_id,
)
from expensesync.domain.models import EntityType, RecordT, SyncOperation, SyncStatus
from expensesync.errors import ExpenseSyncError, GatewayError, RecordValidationError
from expensesync.gateway.base import RemoteGateway
from expensesync.infrastructure.local_store import LocalStore
from expensesync.infrastructure.record_store import LocalRecordStore
from expensesync.orchestrator import IdentityProvider, SyncOrchestrator
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


class EntityService(ABC, Generic[RecordT]):
    """
    Shared create/update/delete/load flow for one entity kind.

    Parameters
    ----------
    store : LocalStore
        Local tables; the service's only source of truth.
    gateway : RemoteGateway
        Used for the immediate single-record push.
    connectivity : ConnectivityState
        Read to decide whether to attempt the immediate push.
    orchestrator : SyncOrchestrator
        Triggered on load and consulted for in-flight reservations.
    identity : str | callable, optional
        Owner id or provider; defaults to the orchestrator's identity.
    """

    entity_type: EntityType

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        connectivity: ConnectivityState,
        orchestrator: SyncOrchestrator,
        identity: Union[str, IdentityProvider, None] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.gateway = gateway
        self.connectivity = connectivity
        self.orchestrator = orchestrator
        if identity is None:
            self._identity: IdentityProvider = orchestrator.owner_id
        elif callable(identity):
            self._identity = identity
        else:
            self._identity = lambda: identity

        self.descriptor: EntityDescriptor = descriptor_for(self.entity_type)
        self.records: LocalRecordStore[RecordT] = store.records(self.entity_type)
        self.items: List[RecordT] = []
        self.is_loading = False
        self.error: Optional[str] = None

    # -- hooks -----------------------------------------------------------

    @abstractmethod
    def _build(self, record_id: str, owner_id: str, data: BaseModel) -> RecordT:
        """Turn a create input into a new pending record."""

    @abstractmethod
    def _merge(self, existing: RecordT, update: BaseModel) -> RecordT:
        """Apply an update input to a stored record."""

    def _sorted(self, records: List[RecordT]) -> List[RecordT]:
        return records

    # -- helpers ---------------------------------------------------------

    def _require_owner(self) -> str:
        owner_id = self._identity()
        if not owner_id:
            raise ExpenseSyncError("No signed-in owner; cannot modify records")
        return owner_id

    def _is_local(self, record_id: str) -> bool:
        return is_local_id(record_id, self.settings.local_id_prefix)

    async def _refresh_pending(self) -> None:
        await self.orchestrator.refresh_pending_count()

    # -- reads -----------------------------------------------------------

    async def load(self, owner_id: Optional[str] = None) -> List[RecordT]:
        """
        Return the owner's records from the local store. When online, a sync
        runs first so the list reflects the server; a failed sync leaves
        `error` set and the local list is still returned.
        """
        owner_id = owner_id or self._identity()
        if not owner_id:
            self.items = []
            return self.items
        self.is_loading = True
        self.error = None
        try:
            self.items = self._sorted(await self.records.get_all(owner_id))
            if self.connectivity.is_online:
                if not await self.orchestrator.sync_all() and self.orchestrator.error_message:
                    self.error = self.orchestrator.error_message
                self.items = self._sorted(await self.records.get_all(owner_id))
        finally:
            self.is_loading = False
        return self.items

    async def get_by_id(self, record_id: str) -> Optional[RecordT]:
        record = await self.records.get(record_id)
        if record is None or record.is_deleted:
            return None
        return record

    # -- writes ----------------------------------------------------------

    async def _create_record(self, data: BaseModel) -> RecordT:
        owner_id = self._require_owner()
        record = self._build(new_local_id(self.settings.local_id_prefix), owner_id, data)
        await self.records.put(record)
        await self.store.sync_queue.enqueue(
            self.entity_type, record.id, SyncOperation.CREATE, self.descriptor.build_payload(record)
        )
        log.info(
            "Record created locally",
            extra={"entity_type": self.entity_type.value, "entity_id": record.id},
        )
        await self._refresh_pending()
        return record

    async def create(self, data: BaseModel) -> RecordT:
        """Create a record locally and, when online, push it right away."""
        record = await self._create_record(data)
        if self.connectivity.is_online:
            record = await self._push_create(record)
        return record

    async def update(self, record_id: str, update: BaseModel) -> Optional[RecordT]:
        existing = await self.records.get(record_id)
        if existing is None or existing.is_deleted:
            return None
        record = self._merge(existing, update)
        await self.records.put(record)
        await self.store.sync_queue.enqueue(
            self.entity_type, record.id, SyncOperation.UPDATE, self.descriptor.build_payload(record)
        )
        await self._refresh_pending()
        if self.connectivity.is_online and not self._is_local(record.id):
            record = await self._push_update(record)
        return record

    async def delete(self, record_id: str) -> bool:
        existing = await self.records.get(record_id)
        if existing is None or existing.is_deleted:
            return False
        await self.records.soft_delete(record_id)
        await self.store.sync_queue.enqueue(self.entity_type, record_id, SyncOperation.DELETE)
        await self._refresh_pending()
        if self.connectivity.is_online and not self._is_local(record_id):
            await self._push_delete(record_id)
        return True

    # -- immediate push --------------------------------------------------

    async def _push_create(self, record: RecordT) -> RecordT:
        with self.orchestrator.reserve(record.id) as reserved:
            if not reserved:
                return record
            try:
                created = await self.gateway.create(
                    self.entity_type, record.id, self.descriptor.build_payload(record)
                )
            except GatewayError as exc:
                log.warning(
                    "Immediate create failed; left for batch sync",
                    extra={"entity_id": record.id, "error": str(exc)},
                )
                return record
            server_id = str(created.get("id") or record.id)
            return await self._settle(record, server_id, created)

    async def _push_update(self, record: RecordT) -> RecordT:
        with self.orchestrator.reserve(record.id) as reserved:
            if not reserved:
                return record
            try:
                updated = await self.gateway.update(
                    self.entity_type, record.id, self.descriptor.build_payload(record)
                )
            except GatewayError as exc:
                log.warning(
                    "Immediate update failed; left for batch sync",
                    extra={"entity_id": record.id, "error": str(exc)},
                )
                return record
            return await self._settle(record, record.id, updated)

    async def _push_delete(self, record_id: str) -> None:
        with self.orchestrator.reserve(record_id) as reserved:
            if not reserved:
                return
            try:
                await self.gateway.delete(self.entity_type, record_id)
            except GatewayError as exc:
                log.warning(
                    "Immediate delete failed; left for batch sync",
                    extra={"entity_id": record_id, "error": str(exc)},
                )
                return
            await self.records.purge(record_id)
            await self.store.sync_queue.acknowledge(self.entity_type, record_id)
            await self._refresh_pending()

    async def _settle(
        self, pushed: RecordT, server_id: str, snapshot: Optional[Dict[str, Any]] = None
    ) -> RecordT:
        """
        Record a successful single-record push. If the record changed while the
        request was out, the server id still replaces the local one but the
        record stays pending. Otherwise the server's copy is kept, so fields
        the server sets (such as the OCR status) are current right away.
        """
        current = await self.records.get(pushed.id)
        if current is None:
            return pushed
        edited = current.updated_at != pushed.updated_at
        status = SyncStatus.PENDING_SYNC if edited else SyncStatus.SYNCED
        if server_id != pushed.id:
            settled = await self.records.replace_id(pushed.id, server_id, status)
            await self.store.sync_queue.remap(self.entity_type, pushed.id, server_id)
        else:
            settled = await self.records.set_status(pushed.id, status)
        if not edited:
            server_copy = self._server_copy(snapshot, server_id, current)
            if server_copy is not None:
                await self.records.put(server_copy)
                settled = server_copy
            await self.store.sync_queue.acknowledge(self.entity_type, server_id)
        await self._refresh_pending()
        return settled or current

    def _server_copy(
        self, snapshot: Optional[Dict[str, Any]], server_id: str, local: RecordT
    ) -> Optional[RecordT]:
        """Server response laid over the local fields; None when there is nothing to adopt."""
        if not snapshot or str(snapshot.get("id") or "") != server_id:
            return None
        wire = {
            **self.descriptor.build_payload(local),
            "createdAt": local.created_at.isoformat(),
            "updatedAt": local.updated_at.isoformat(),
            **snapshot,
        }
        try:
            return self.descriptor.from_wire(wire, local.owner_id)  # type: ignore[return-value]
        except RecordValidationError as exc:
            log.warning(
                "Server response unusable; local copy kept",
                extra={"entity_id": server_id, "error": str(exc)},
            )
            return None


__all__ = ["EntityService"]
