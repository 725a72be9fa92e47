"""
Sync orchestrator: reconciles locally dirty records with the remote authority.

States and transitions:

    idle    --(trigger)-->            syncing
    syncing --(pushed and pulled)-->  idle
    syncing --(call failed)-->        error     (cleared by the next successful cycle)

Triggers are a connectivity edge from offline to online (one sync per edge),
an explicit `sync_all()` call, and the periodic tick, which only refreshes
`pending_count`. Only one cycle runs at a time; a trigger arriving while a
cycle runs is dropped.

A cycle pushes every dirty record in one batch, applies the per-operation
results (id remaps, acknowledged deletes, failures that stay dirty), then
pulls the authoritative record set and merges it: server snapshots overwrite
local records that are clean or missing and are dropped for records that
still carry unsynced local edits.

Usage:
    orchestrator = SyncOrchestrator(store, gateway, connectivity, identity="user-1")
    orchestrator.start()
    await orchestrator.sync_all()
    await orchestrator.stop()
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    TypedDict,
    Union,
)

from expensesync.config import Settings, get_settings
from expensesync.connectivity import ConnectivityState
from expensesync.domain.entities import (
    ENTITY_DESCRIPTORS,
    infer_operation,
    is_local_id,
)
from expensesync.domain.models import (
    BatchSyncItem,
    BatchSyncRequest,
    EntityType,
    Receipt,
    SyncOperation,
    SyncRecord,
    SyncResult,
    SyncStatus,
    utcnow,
)
from expensesync.errors import ExpenseSyncError, RecordValidationError
from expensesync.gateway.base import RemoteGateway
from expensesync.gateway.uploads import decode_image, receipt_file_name, upload_receipt_image
from expensesync.infrastructure.local_store import LocalStore
from expensesync.utils.logging import get_logger
from expensesync.utils.profiler import profile_block, track_time

log = get_logger(__name__)

IdentityProvider = Callable[[], Optional[str]]
_Key = Tuple[EntityType, str]


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncSummary(TypedDict, total=False):
    """
    Outcome of one sync cycle.

    Counters are per record; `errors` holds one line per failed operation.
    """

    started_at: str
    pushed: int
    remapped: int
    purged: int
    failed: int
    capped: int
    skipped: int
    pulled: int
    errors: List[str]
    duration_seconds: float


def _new_summary() -> SyncSummary:
    return SyncSummary(
        started_at=utcnow().isoformat(),
        pushed=0,
        remapped=0,
        purged=0,
        failed=0,
        capped=0,
        skipped=0,
        pulled=0,
        errors=[],
        duration_seconds=0.0,
    )


def _as_identity(identity: Union[str, IdentityProvider, None]) -> IdentityProvider:
    if callable(identity):
        return identity
    return lambda: identity


class SyncOrchestrator:
    """
    The sync state machine.

    Parameters
    ----------
    store : LocalStore
        Local record stores and sync queue; the only place record state lives.
    gateway : RemoteGateway
        Conduit to the remote authority.
    connectivity : ConnectivityState
        Reachability signal, read here and written by the connectivity monitor.
    identity : str | callable | None
        Owner id, or a callable returning the signed-in owner id (None when
        signed out).
    settings : Settings, optional
        Sync interval, retry cap and local id prefix. Defaults to get_settings().
    """

    def __init__(
        self,
        store: LocalStore,
        gateway: RemoteGateway,
        connectivity: ConnectivityState,
        identity: Union[str, IdentityProvider, None] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.gateway = gateway
        self.connectivity = connectivity
        self._identity = _as_identity(identity if identity is not None else settings.owner_id)
        self.sync_interval_seconds = settings.sync_interval_seconds
        self.max_sync_attempts = settings.max_sync_attempts
        self.local_id_prefix = settings.local_id_prefix

        self.state = SyncState.IDLE
        self.last_sync_time: Optional[datetime] = None
        self.pending_count = 0
        self.error_message: Optional[str] = None
        self.last_summary: Optional[SyncSummary] = None

        self._in_progress = False
        self._reserved: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._tick_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # -- observation -----------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._in_progress

    def owner_id(self) -> Optional[str]:
        return self._identity()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "online": self.connectivity.is_online,
            "pending_count": self.pending_count,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "error_message": self.error_message,
        }

    async def refresh_pending_count(self, owner_id: Optional[str] = None) -> int:
        owner_id = owner_id or self.owner_id()
        if not owner_id:
            return self.pending_count
        self.pending_count = await self.store.count_pending(owner_id)
        return self.pending_count

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """
        Subscribe to connectivity edges and start the periodic tick. Must be
        called from a running event loop.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        if self._tick_task is None:
            self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        log.info("Sync orchestrator started", extra={"interval_seconds": self.sync_interval_seconds})

    async def stop(self) -> None:
        """Stop the tick and wait for triggered cycles to finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._tick_task is not None:
            self._tick_task.cancel()
            await asyncio.gather(self._tick_task, return_exceptions=True)
            self._tick_task = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        log.info("Sync orchestrator stopped")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval_seconds)
            try:
                await self.refresh_pending_count()
            except (ExpenseSyncError, sqlite3.Error):
                log.exception("Pending count refresh failed; tick continues")

    def _on_connectivity_change(self, previous: bool, current: bool) -> None:
        if current and not previous:
            log.info("Connectivity regained; scheduling sync")
            self.schedule_sync()

    def schedule_sync(self) -> Optional[asyncio.Task]:
        """Run `sync_all()` in the background. Returns the task, if one started."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("No running event loop; sync not scheduled")
            return None
        task = loop.create_task(self.sync_all())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -- reservations ----------------------------------------------------

    @contextmanager
    def reserve(self, record_id: str) -> Iterator[bool]:
        """
        Claim a record for a single-record push outside the batch.

        Yields False when a cycle is running or the record is already claimed;
        the caller must then leave the record to the batch. While claimed, the
        batch skips the record.
        """
        if self._in_progress or record_id in self._reserved:
            yield False
            return
        self._reserved.add(record_id)
        try:
            yield True
        finally:
            self._reserved.discard(record_id)

    # -- the cycle -------------------------------------------------------

    async def sync_all(self) -> bool:
        """
        Run one sync cycle. Returns True when it completed, False when it was
        skipped (already running, offline, signed out) or failed.
        """
        if self._in_progress:
            log.debug("Sync already in progress; trigger dropped")
            return False
        if not self.connectivity.is_online:
            log.debug("Offline; sync skipped")
            return False
        owner_id = self.owner_id()
        if not owner_id:
            log.debug("No signed-in owner; sync skipped")
            return False

        self._in_progress = True
        self.state = SyncState.SYNCING
        self.error_message = None
        summary = _new_summary()
        log.info("[SYNC START]", extra={"owner_id": owner_id})
        try:
            with profile_block("sync cycle") as stats:
                await self._push(owner_id, summary)
                summary["pulled"] = await self._pull(owner_id)
            summary["duration_seconds"] = round(stats.duration_seconds, 3)
            self.last_sync_time = utcnow()
            self.state = SyncState.IDLE
            await self.refresh_pending_count(owner_id)
            log.info(
                "[SYNC COMPLETE]",
                extra={k: v for k, v in summary.items() if k != "errors"},
            )
            return True
        except Exception as exc:  # noqa: BLE001 - a failed cycle is recorded, records stay dirty
            log.exception("[SYNC FAILED]", extra={"owner_id": owner_id})
            self.state = SyncState.ERROR
            self.error_message = str(exc) or type(exc).__name__
            return False
        finally:
            self.last_summary = summary
            self._in_progress = False

    async def retry_failed(self, owner_id: Optional[str] = None) -> int:
        """Give records parked in `sync_error` a fresh set of attempts."""
        owner_id = owner_id or self.owner_id()
        if not owner_id:
            return 0
        revived = 0
        for entity_type in ENTITY_DESCRIPTORS:
            records = self.store.records(entity_type)
            for record in await records.list_by_status(owner_id, SyncStatus.SYNC_ERROR):
                await records.set_status(record.id, SyncStatus.PENDING_SYNC)
                await self.store.sync_queue.reset_retries(entity_type, record.id)
                revived += 1
        await self.refresh_pending_count(owner_id)
        log.info("Failed records requeued", extra={"count": revived})
        return revived

    # -- push ------------------------------------------------------------

    @track_time(label="push")
    async def _push(self, owner_id: str, summary: SyncSummary) -> None:
        submitted: Dict[_Key, SyncRecord] = {}
        items: Dict[EntityType, List[BatchSyncItem]] = {t: [] for t in ENTITY_DESCRIPTORS}

        for entity_type in ENTITY_DESCRIPTORS:
            for record in await self.store.records(entity_type).list_pending_sync(owner_id):
                ready = await self._prepare(entity_type, record, summary)
                if ready is None:
                    continue
                submitted[(entity_type, ready.id)] = ready
                items[entity_type].append(self._batch_item(entity_type, ready))

        if not submitted:
            log.debug("Nothing pending; pull only")
            return

        request = BatchSyncRequest(
            **{ENTITY_DESCRIPTORS[t].batch_key: ops for t, ops in items.items()}
        )
        log.info("Submitting batch", extra={"operations": len(request)})
        response = await self.gateway.batch_sync(request)

        handled: Set[_Key] = set()
        for result in list(response.results) + list(response.errors):
            key = (result.entity_type, result.submitted_id)
            record = submitted.get(key)
            if record is None or key in handled:
                if record is None:
                    log.warning(
                        "Result for an operation that was not submitted",
                        extra={"entity_type": result.entity_type.value, "entity_id": result.entity_id},
                    )
                continue
            handled.add(key)
            if result.success:
                await self._apply_success(result, record, summary)
            else:
                await self._apply_failure(
                    result.entity_type, record, result.error or "rejected by server", summary
                )

        for (entity_type, _), record in submitted.items():
            if (entity_type, record.id) not in handled:
                await self._apply_failure(entity_type, record, "no result reported", summary)

    async def _prepare(
        self, entity_type: EntityType, record: SyncRecord, summary: SyncSummary
    ) -> Optional[SyncRecord]:
        """Decide whether a dirty record goes into this batch, and in what form."""
        if record.id in self._reserved:
            summary["skipped"] += 1
            return None
        if record.is_deleted and is_local_id(record.id, self.local_id_prefix):
            # Never reached the server; nothing to delete remotely.
            await self.store.records(entity_type).purge(record.id)
            await self.store.sync_queue.acknowledge(entity_type, record.id)
            summary["purged"] += 1
            return None
        if isinstance(record, Receipt) and record.local_image_data and not record.blob_url:
            staged = await self._stage_image(record)
            if staged is None:
                summary["skipped"] += 1
            return staged
        return record

    async def _stage_image(self, record: Receipt) -> Optional[Receipt]:
        """
        Upload a receipt image captured offline. Returns None when the upload
        failed; the receipt then waits for the next cycle with its image.
        """
        try:
            blob_url = await upload_receipt_image(
                self.gateway,
                decode_image(record.local_image_data or ""),
                receipt_file_name(record.id),
            )
        except ExpenseSyncError as exc:
            log.warning(
                "Receipt image upload failed; receipt held back",
                extra={"entity_id": record.id, "error": str(exc)},
            )
            return None
        staged = record.model_copy(update={"blob_url": blob_url, "local_image_data": None})
        await self.store.receipts.put(staged)
        return staged

    def _batch_item(self, entity_type: EntityType, record: SyncRecord) -> BatchSyncItem:
        operation = infer_operation(record, self.local_id_prefix)
        data = {}
        if operation is not SyncOperation.DELETE:
            data = ENTITY_DESCRIPTORS[entity_type].build_payload(record)
        return BatchSyncItem(operation=operation, entity_id=record.id, data=data)

    async def _apply_success(
        self, result: SyncResult, submitted: SyncRecord, summary: SyncSummary
    ) -> None:
        entity_type = result.entity_type
        records = self.store.records(entity_type)
        queue = self.store.sync_queue
        summary["pushed"] += 1

        if result.operation is SyncOperation.DELETE or submitted.is_deleted:
            await records.purge(submitted.id)
            await queue.acknowledge(entity_type, submitted.id)
            summary["purged"] += 1
            return

        current = await records.get(submitted.id)
        if current is None:
            await queue.acknowledge(entity_type, submitted.id)
            return

        # Edited locally while the batch was in flight: keep the newer edit dirty.
        edited = current.updated_at != submitted.updated_at
        status = SyncStatus.PENDING_SYNC if edited else SyncStatus.SYNCED
        server_id = result.entity_id
        if server_id != submitted.id:
            await records.replace_id(submitted.id, server_id, status)
            await queue.remap(entity_type, submitted.id, server_id)
            summary["remapped"] += 1
        else:
            await records.set_status(submitted.id, status)

        if edited:
            log.info(
                "Record changed during sync; stays pending",
                extra={"entity_type": entity_type.value, "entity_id": server_id},
            )
        else:
            await queue.acknowledge(entity_type, server_id)

    async def _apply_failure(
        self,
        entity_type: EntityType,
        record: SyncRecord,
        error: str,
        summary: SyncSummary,
    ) -> None:
        summary["failed"] += 1
        summary["errors"].append(f"{entity_type.value} {record.id}: {error}")
        attempts = await self.store.sync_queue.record_failure(
            entity_type, record.id, error, infer_operation(record, self.local_id_prefix)
        )
        log.warning(
            "Sync operation failed; record stays pending",
            extra={
                "entity_type": entity_type.value,
                "entity_id": record.id,
                "error": error,
                "attempts": attempts,
            },
        )
        if self.max_sync_attempts > 0 and attempts >= self.max_sync_attempts:
            await self.store.records(entity_type).set_status(record.id, SyncStatus.SYNC_ERROR)
            summary["capped"] += 1
            log.warning(
                "Retry cap reached; record moved to sync_error",
                extra={"entity_type": entity_type.value, "entity_id": record.id},
            )

    # -- pull ------------------------------------------------------------

    @track_time(label="pull")
    async def _pull(self, owner_id: str) -> int:
        entity_types = list(ENTITY_DESCRIPTORS)
        snapshots = await asyncio.gather(
            *(self.gateway.get_all(entity_type, owner_id) for entity_type in entity_types)
        )
        merged = 0
        for entity_type, batch in zip(entity_types, snapshots):
            merged += await self._merge(entity_type, batch, owner_id)
        return merged

    async def _merge(
        self, entity_type: EntityType, snapshots: List[Dict[str, Any]], owner_id: str
    ) -> int:
        """
        Server wins for anything clean or unknown locally; dirty local records
        keep their unacknowledged edits.
        """
        descriptor = ENTITY_DESCRIPTORS[entity_type]
        records = self.store.records(entity_type)
        # A single-record create may already be stored remotely but not yet
        # remapped locally; its server copy waits for the next pull.
        creating = any(is_local_id(r, self.local_id_prefix) for r in self._reserved)
        incoming: List[SyncRecord] = []
        dropped = deferred = 0
        for snapshot in snapshots:
            try:
                record = descriptor.from_wire(snapshot, owner_id)
            except RecordValidationError as exc:
                log.warning("Skipping invalid server record", extra={"error": str(exc)})
                continue
            if record.owner_id != owner_id:
                continue
            local = await records.get(record.id)
            if local is None and creating:
                deferred += 1
            elif local is None or local.sync_status is SyncStatus.SYNCED:
                incoming.append(record)
            else:
                dropped += 1
        await records.put_many(incoming)
        log.debug(
            "Merged server records",
            extra={
                "entity_type": entity_type.value,
                "merged": len(incoming),
                "dropped": dropped,
                "deferred": deferred,
            },
        )
        return len(incoming)


__all__ = ["SyncOrchestrator", "SyncState", "SyncSummary", "IdentityProvider"]
