from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from expensesync.domain.models import (
    BatchSyncItem,
    BatchSyncRequest,
    EntityType,
    SyncOperation,
)
from expensesync.errors import GatewayError, GatewayTransportError, RecordNotFoundError
from expensesync.gateway.http import HttpRemoteGateway

BASE_URL = "https://api.test/api"
TOKEN = "secret-token"
UPLOAD_URL = "https://blob.test/upload/receipt-1.jpg?sig=abc"
RETRY_ATTEMPTS = 3


def _gateway(handler: Callable[[httpx.Request], httpx.Response], seen: List[httpx.Request]) -> HttpRemoteGateway:
    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return HttpRemoteGateway(
        base_url=BASE_URL + "/",
        token=TOKEN,
        client=client,
        retry_attempts=RETRY_ATTEMPTS,
        retry_wait_seconds=0,
    )


@pytest.mark.asyncio
async def test_batch_sync_posts_camel_case_body_and_parses_response() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "success": True,
                "results": [
                    {
                        "entityType": "receipt",
                        "entityId": "srv-1",
                        "localId": "local-1",
                        "operation": "create",
                        "success": True,
                    }
                ],
                "errors": [],
            },
        )

    gateway = _gateway(handler, seen)
    request = BatchSyncRequest(
        receipts=[
            BatchSyncItem(operation=SyncOperation.CREATE, entity_id="local-1", data={"merchantName": "Uber"})
        ]
    )

    response = await gateway.batch_sync(request)

    (sent,) = seen
    assert sent.method == "POST"
    assert str(sent.url) == f"{BASE_URL}/sync"
    assert sent.headers["Authorization"] == f"Bearer {TOKEN}"
    body = json.loads(sent.content)
    assert body["receipts"][0] == {"operation": "create", "entityId": "local-1", "data": {"merchantName": "Uber"}}
    assert body["timeEntries"] == []
    assert response.results[0].entity_id == "srv-1"
    assert response.results[0].submitted_id == "local-1"


@pytest.mark.asyncio
async def test_crud_routes_per_entity_type() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=[{"id": "srv-1"}])
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"id": "srv-2"})

    gateway = _gateway(handler, seen)

    assert await gateway.get_all(EntityType.TIME_ENTRY, "user-1") == [{"id": "srv-1"}]
    assert (await gateway.create(EntityType.RECEIPT, "local-1", {"merchantName": "Uber"}))["id"] == "srv-2"
    await gateway.update(EntityType.TIME_ENTRY, "srv-2", {"hours": 2})
    await gateway.delete(EntityType.RECEIPT, "srv-2")

    assert [(r.method, r.url.path) for r in seen] == [
        ("GET", "/api/time-entries"),
        ("POST", "/api/receipts"),
        ("PUT", "/api/time-entries/srv-2"),
        ("DELETE", "/api/receipts/srv-2"),
    ]


@pytest.mark.asyncio
async def test_server_errors_are_retried_until_success() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if len(seen) < RETRY_ATTEMPTS:
            return httpx.Response(503)
        return httpx.Response(200, json=[])

    gateway = _gateway(handler, seen)

    assert await gateway.get_all(EntityType.RECEIPT, "user-1") == []
    assert len(seen) == RETRY_ATTEMPTS


@pytest.mark.asyncio
async def test_exhausted_retries_raise_transport_error() -> None:
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda request: httpx.Response(502), seen)

    with pytest.raises(GatewayTransportError) as excinfo:
        await gateway.get_all(EntityType.RECEIPT, "user-1")

    assert excinfo.value.status_code == 502
    assert len(seen) == RETRY_ATTEMPTS


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler, seen)

    with pytest.raises(GatewayTransportError, match="connection refused"):
        await gateway.batch_sync(BatchSyncRequest())
    assert len(seen) == RETRY_ATTEMPTS


@pytest.mark.asyncio
async def test_not_found_and_client_errors_are_not_retried() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return httpx.Response(404)
        return httpx.Response(400, text="bad payload")

    gateway = _gateway(handler, seen)

    with pytest.raises(RecordNotFoundError):
        await gateway.update(EntityType.RECEIPT, "srv-9", {})
    with pytest.raises(GatewayError) as excinfo:
        await gateway.create(EntityType.RECEIPT, "local-1", {})

    assert not isinstance(excinfo.value, GatewayTransportError)
    assert excinfo.value.status_code == 400
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_malformed_batch_response_is_a_gateway_error() -> None:
    gateway = _gateway(lambda request: httpx.Response(200, json={"results": "nope"}), [])

    with pytest.raises(GatewayError, match="Malformed batch sync response"):
        await gateway.batch_sync(BatchSyncRequest())


@pytest.mark.asyncio
async def test_upload_url_and_blob_put() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/receipts/upload-url":
            return httpx.Response(
                200,
                json={
                    "uploadUrl": UPLOAD_URL,
                    "blobUrl": "https://blob.test/receipts/receipt-1.jpg",
                    "expiresAt": "2024-06-01T12:00:00Z",
                },
            )
        return httpx.Response(201)

    gateway = _gateway(handler, seen)

    upload = await gateway.get_upload_url("receipt-1.jpg")
    await gateway.upload_blob(upload.upload_url, b"jpeg-bytes")

    mint, put = seen
    assert json.loads(mint.content) == {"fileName": "receipt-1.jpg"}
    assert put.method == "PUT"
    assert str(put.url) == UPLOAD_URL
    assert put.headers["x-ms-blob-type"] == "BlockBlob"
    assert put.headers["Content-Type"] == "image/jpeg"
    assert "Authorization" not in put.headers
    assert put.content == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_ping_reports_health() -> None:
    seen: List[httpx.Request] = []
    healthy = _gateway(lambda request: httpx.Response(200), seen)
    unhealthy = _gateway(lambda request: httpx.Response(503), [])

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    assert await healthy.ping() is True
    assert await unhealthy.ping() is False
    assert await _gateway(unreachable, []).ping() is False
    assert seen[0].method == "HEAD"
    assert seen[0].url.path == "/api/health"


@pytest.mark.asyncio
async def test_gateway_closes_only_its_own_client() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    async with HttpRemoteGateway(base_url=BASE_URL, client=client, retry_wait_seconds=0):
        pass

    assert not client.is_closed
    await client.aclose()
