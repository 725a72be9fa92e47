from __future__ import annotations

import pytest

from expensesync.domain.models import EntityType, SyncOperation
from expensesync.infrastructure.local_store import LocalStore

LOCAL_ID = "local-0001"
SERVER_ID = "srv-7"
PAYLOAD = {"merchantName": "Uber", "totalAmount": 18.2}


@pytest.mark.asyncio
async def test_enqueue_keeps_creation_order(store: LocalStore) -> None:
    queue = store.sync_queue
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.CREATE, PAYLOAD)
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.UPDATE, PAYLOAD)
    await queue.enqueue(EntityType.TIME_ENTRY, "local-t", SyncOperation.CREATE)

    items = await queue.list()

    assert [i.operation for i in items] == [
        SyncOperation.CREATE,
        SyncOperation.UPDATE,
        SyncOperation.CREATE,
    ]
    assert items[0].payload == PAYLOAD
    assert items[2].payload == {}
    assert await queue.size() == 3


@pytest.mark.asyncio
async def test_acknowledge_discards_only_that_entity(store: LocalStore) -> None:
    queue = store.sync_queue
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.CREATE)
    await queue.enqueue(EntityType.RECEIPT, "local-other", SyncOperation.CREATE)

    assert await queue.acknowledge(EntityType.RECEIPT, LOCAL_ID) == 1
    assert [i.entity_id for i in await queue.list()] == ["local-other"]


@pytest.mark.asyncio
async def test_record_failure_bumps_retry_count(store: LocalStore) -> None:
    queue = store.sync_queue
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.CREATE)

    assert await queue.record_failure(EntityType.RECEIPT, LOCAL_ID, "rejected") == 1
    assert await queue.record_failure(EntityType.RECEIPT, LOCAL_ID, "rejected again") == 2

    (item,) = await queue.for_entity(EntityType.RECEIPT, LOCAL_ID)
    assert item.retry_count == 2
    assert item.error == "rejected again"
    assert item.last_attempt_at is not None


@pytest.mark.asyncio
async def test_record_failure_without_queued_item_creates_one(store: LocalStore) -> None:
    queue = store.sync_queue

    attempts = await queue.record_failure(
        EntityType.TIME_ENTRY, SERVER_ID, "not found", SyncOperation.UPDATE
    )

    assert attempts == 1
    (item,) = await queue.for_entity(EntityType.TIME_ENTRY, SERVER_ID)
    assert item.operation is SyncOperation.UPDATE


@pytest.mark.asyncio
async def test_remap_and_reset_retries(store: LocalStore) -> None:
    queue = store.sync_queue
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.CREATE)
    await queue.record_failure(EntityType.RECEIPT, LOCAL_ID, "boom")

    await queue.remap(EntityType.RECEIPT, LOCAL_ID, SERVER_ID)
    await queue.reset_retries(EntityType.RECEIPT, SERVER_ID)

    assert await queue.for_entity(EntityType.RECEIPT, LOCAL_ID) == []
    (item,) = await queue.for_entity(EntityType.RECEIPT, SERVER_ID)
    assert item.retry_count == 0
    assert item.error is None


@pytest.mark.asyncio
async def test_clear_empties_queue(store: LocalStore) -> None:
    queue = store.sync_queue
    await queue.enqueue(EntityType.RECEIPT, LOCAL_ID, SyncOperation.CREATE)

    assert not await queue.is_empty()
    assert await queue.clear() == 1
    assert await queue.is_empty()
