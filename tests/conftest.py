"""
Pytest configuration for expensesync.

Provides fixtures for:
- Settings with test-specific overrides
- An in-memory SQLite local store
- An in-memory fake of the remote authority
- The connectivity signal, orchestrator and entity services wired together
"""

from __future__ import annotations

import itertools
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Generator, List, Optional, Set

import pytest

from expensesync.config import Settings
from expensesync.connectivity import ConnectivityState
from expensesync.domain.entities import ENTITY_DESCRIPTORS, descriptor_for
from expensesync.domain.models import (
    BatchSyncRequest,
    BatchSyncResponse,
    EntityType,
    SyncOperation,
    SyncResult,
    UploadUrlResponse,
    utcnow,
)
from expensesync.errors import GatewayError, GatewayTransportError, RecordNotFoundError
from expensesync.gateway.base import AbstractRemoteGateway
from expensesync.infrastructure.database import MEMORY_PATH
from expensesync.infrastructure.local_store import LocalStore
from expensesync.orchestrator import SyncOrchestrator
from expensesync.services import ReceiptService, TimeEntryService

OWNER_ID = "user-1"
BLOB_HOST = "https://blob.test"


class FakeRemoteGateway(AbstractRemoteGateway):
    """
    In-memory remote authority.

    Server state lives in `server[entity_type][id]` as wire snapshots. Ids in
    `reject_ids` fail inside a batch; `transport_down` makes every call raise a
    transport error; `on_batch` runs while a batch is "in flight".
    """

    def __init__(self, owner_id: str = OWNER_ID) -> None:
        self.owner_id = owner_id
        self.server: Dict[EntityType, Dict[str, Dict[str, Any]]] = {t: {} for t in ENTITY_DESCRIPTORS}
        self.reject_ids: Set[str] = set()
        self.omit_ids: Set[str] = set()
        self.transport_down = False
        self.upload_fails = False
        self.single_calls_fail = False
        self.on_batch: Optional[Callable[[], Awaitable[None]]] = None
        self.batch_requests: List[BatchSyncRequest] = []
        self.calls: List[tuple] = []
        self.uploads: Dict[str, bytes] = {}
        self._ids = itertools.count(1)

    # -- helpers ---------------------------------------------------------

    def _check_transport(self) -> None:
        if self.transport_down:
            raise GatewayTransportError("connection refused")

    def _new_id(self) -> str:
        return f"srv-{next(self._ids)}"

    def _store(self, entity_type: EntityType, server_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow().isoformat()
        previous = self.server[entity_type].get(server_id, {})
        snapshot = {
            **previous,
            **data,
            "id": server_id,
            "ownerId": self.owner_id,
            "createdAt": previous.get("createdAt", now),
            "updatedAt": now,
        }
        self.server[entity_type][server_id] = snapshot
        return dict(snapshot)

    def seed(self, entity_type: EntityType, data: Dict[str, Any], server_id: Optional[str] = None) -> str:
        server_id = server_id or self._new_id()
        self._store(entity_type, server_id, data)
        return server_id

    # -- batch -----------------------------------------------------------

    async def batch_sync(self, request: BatchSyncRequest) -> BatchSyncResponse:
        self._check_transport()
        self.batch_requests.append(request)
        if self.on_batch is not None:
            await self.on_batch()

        response = BatchSyncResponse()
        for entity_type, descriptor in ENTITY_DESCRIPTORS.items():
            for item in getattr(request, descriptor.batch_key):
                if item.entity_id in self.omit_ids:
                    continue
                if item.entity_id in self.reject_ids:
                    response.success = False
                    response.errors.append(
                        SyncResult(
                            entity_type=entity_type,
                            entity_id=item.entity_id,
                            operation=item.operation,
                            error="rejected",
                            code="REJECTED",
                        )
                    )
                    continue
                response.results.append(self._apply(entity_type, item.operation, item.entity_id, item.data))
        return response

    def _apply(
        self,
        entity_type: EntityType,
        operation: SyncOperation,
        entity_id: str,
        data: Dict[str, Any],
    ) -> SyncResult:
        if operation is SyncOperation.CREATE:
            snapshot = self._store(entity_type, self._new_id(), data)
            return SyncResult(
                entity_type=entity_type,
                entity_id=snapshot["id"],
                local_id=entity_id,
                operation=operation,
                success=True,
                server_data=snapshot,
            )
        if entity_id not in self.server[entity_type]:
            return SyncResult(
                entity_type=entity_type,
                entity_id=entity_id,
                operation=operation,
                error="not found",
                code="NOT_FOUND",
            )
        if operation is SyncOperation.DELETE:
            del self.server[entity_type][entity_id]
            return SyncResult(
                entity_type=entity_type, entity_id=entity_id, operation=operation, success=True
            )
        snapshot = self._store(entity_type, entity_id, data)
        return SyncResult(
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            success=True,
            server_data=snapshot,
        )

    # -- per record ------------------------------------------------------

    async def get_all(self, entity_type: EntityType, owner_id: str) -> List[Dict[str, Any]]:
        self._check_transport()
        self.calls.append(("get_all", entity_type, owner_id))
        return [dict(s) for s in self.server[entity_type].values() if s["ownerId"] == owner_id]

    async def create(self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._check_transport()
        self.calls.append(("create", entity_type, entity_id))
        if self.single_calls_fail:
            raise GatewayError("create rejected", status_code=400)
        return self._store(entity_type, self._new_id(), data)

    async def update(self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._check_transport()
        self.calls.append(("update", entity_type, entity_id))
        if self.single_calls_fail:
            raise GatewayError("update rejected", status_code=400)
        if entity_id not in self.server[entity_type]:
            raise RecordNotFoundError(f"/{descriptor_for(entity_type).route}/{entity_id}", status_code=404)
        return self._store(entity_type, entity_id, data)

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        self._check_transport()
        self.calls.append(("delete", entity_type, entity_id))
        if self.single_calls_fail:
            raise GatewayError("delete rejected", status_code=400)
        if self.server[entity_type].pop(entity_id, None) is None:
            raise RecordNotFoundError(f"/{descriptor_for(entity_type).route}/{entity_id}", status_code=404)

    # -- blobs and probe -------------------------------------------------

    async def get_upload_url(self, file_name: str) -> UploadUrlResponse:
        self._check_transport()
        self.calls.append(("get_upload_url", file_name))
        return UploadUrlResponse(
            upload_url=f"{BLOB_HOST}/upload/{file_name}?sig=abc",
            blob_url=f"{BLOB_HOST}/receipts/{file_name}",
            expires_at=utcnow() + timedelta(minutes=15),
        )

    async def upload_blob(self, upload_url: str, content: bytes, content_type: str = "image/jpeg") -> None:
        self._check_transport()
        self.calls.append(("upload_blob", upload_url))
        if self.upload_fails:
            raise GatewayError("blob store unavailable", status_code=503)
        self.uploads[upload_url] = content

    async def ping(self) -> bool:
        return not self.transport_down

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.
    """
    return Settings(
        db_path=MEMORY_PATH,
        owner_id=OWNER_ID,
        log_level="DEBUG",
        sync_interval_seconds=0.01,
        max_sync_attempts=0,
        local_id_prefix="local-",
        default_currency="USD",
    )


@pytest.fixture
def store() -> Generator[LocalStore, None, None]:
    local = LocalStore.open(MEMORY_PATH)
    try:
        yield local
    finally:
        local.close()


@pytest.fixture
def gateway() -> FakeRemoteGateway:
    return FakeRemoteGateway()


@pytest.fixture
def connectivity() -> ConnectivityState:
    return ConnectivityState(online=True)


@pytest.fixture
def orchestrator(
    store: LocalStore,
    gateway: FakeRemoteGateway,
    connectivity: ConnectivityState,
    test_settings: Settings,
) -> SyncOrchestrator:
    return SyncOrchestrator(store, gateway, connectivity, identity=OWNER_ID, settings=test_settings)


@pytest.fixture
def receipt_service(
    store: LocalStore,
    gateway: FakeRemoteGateway,
    connectivity: ConnectivityState,
    orchestrator: SyncOrchestrator,
    test_settings: Settings,
) -> ReceiptService:
    return ReceiptService(store, gateway, connectivity, orchestrator, settings=test_settings)


@pytest.fixture
def time_entry_service(
    store: LocalStore,
    gateway: FakeRemoteGateway,
    connectivity: ConnectivityState,
    orchestrator: SyncOrchestrator,
    test_settings: Settings,
) -> TimeEntryService:
    return TimeEntryService(store, gateway, connectivity, orchestrator, settings=test_settings)
