"""
HTTP implementation of the remote gateway.

Talks to the expense API with httpx:

    POST   /sync                       batch sync
    GET    /receipts, /time-entries    full record set for the caller
    POST   /{route}                    create
    PUT    /{route}/{id}               update
    DELETE /{route}/{id}               delete
    POST   /receipts/upload-url        mint a blob upload URL
    HEAD   /health                     liveness probe

Includes retry logic for transient failures (network errors and 5xx answers)
using tenacity. The final failure is raised as `GatewayTransportError`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from expensesync.config import get_settings
from expensesync.domain.entities import descriptor_for
from expensesync.domain.models import (
    BatchSyncRequest,
    BatchSyncResponse,
    EntityType,
    UploadUrlResponse,
)
from expensesync.errors import GatewayError, GatewayTransportError, RecordNotFoundError
from expensesync.gateway.base import AbstractRemoteGateway
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


class _ServerError(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"{response.request.method} {response.request.url} -> {response.status_code}")
        self.response = response


class HttpRemoteGateway(AbstractRemoteGateway):
    """
    Remote gateway over the expense REST API.

    Parameters
    ----------
    base_url : str, optional
        API root, e.g. ``https://example.org/api``. Defaults to settings.
    token : str, optional
        Bearer token sent to the API (never to blob storage).
    client : httpx.AsyncClient, optional
        Pre-built client, mainly for tests with ``httpx.MockTransport``.
    retry_attempts : int, optional
        Attempts per request for transient failures.
    retry_wait_seconds : float
        Multiplier for the exponential wait between attempts.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: Optional[float] = None,
        probe_timeout_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_wait_seconds: float = 1.0,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._token = token if token is not None else settings.api_token
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds or settings.probe_timeout_seconds
        self.retry_attempts = max(1, retry_attempts or settings.gateway_retry_attempts)
        self.retry_wait_seconds = retry_wait_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout_seconds)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _api_headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request, retrying transient failures, and map error answers
        onto the gateway exception taxonomy.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(method, url, **kwargs)
                    if response.status_code >= 500:
                        raise _ServerError(response)
        except httpx.TransportError as exc:
            raise GatewayTransportError(f"{method} {url} failed: {exc}") from exc
        except _ServerError as exc:
            raise GatewayTransportError(str(exc), status_code=exc.response.status_code) from exc

        if response.status_code == 404:
            raise RecordNotFoundError(f"{method} {url} -> 404", status_code=404)
        if response.is_error:
            raise GatewayError(
                f"{method} {url} -> {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _api(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._send(method, self._url(path), headers=self._api_headers(), **kwargs)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"Malformed JSON from {response.request.url}") from exc

    async def batch_sync(self, request: BatchSyncRequest) -> BatchSyncResponse:
        log.debug("POST /sync", extra={"operations": len(request)})
        response = await self._api("POST", "sync", json=request.model_dump(mode="json", by_alias=True))
        try:
            return BatchSyncResponse.model_validate(self._json(response))
        except ValidationError as exc:
            raise GatewayError(f"Malformed batch sync response: {exc}") from exc

    async def get_all(self, entity_type: EntityType, owner_id: str) -> List[Dict[str, Any]]:
        # The API scopes the listing by the caller's identity.
        del owner_id
        route = descriptor_for(entity_type).route
        payload = self._json(await self._api("GET", route))
        if not isinstance(payload, list):
            raise GatewayError(f"Expected a list from GET /{route}")
        return payload

    async def create(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        route = descriptor_for(entity_type).route
        log.debug(f"POST /{route}", extra={"local_id": entity_id})
        return self._json(await self._api("POST", route, json=data))

    async def update(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        route = descriptor_for(entity_type).route
        return self._json(await self._api("PUT", f"{route}/{entity_id}", json=data))

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        route = descriptor_for(entity_type).route
        await self._api("DELETE", f"{route}/{entity_id}")

    async def get_upload_url(self, file_name: str) -> UploadUrlResponse:
        response = await self._api("POST", "receipts/upload-url", json={"fileName": file_name})
        try:
            return UploadUrlResponse.model_validate(self._json(response))
        except ValidationError as exc:
            raise GatewayError(f"Malformed upload URL response: {exc}") from exc

    async def upload_blob(
        self, upload_url: str, content: bytes, content_type: str = "image/jpeg"
    ) -> None:
        await self._send(
            "PUT",
            upload_url,
            content=content,
            headers={"x-ms-blob-type": "BlockBlob", "Content-Type": content_type},
        )

    async def ping(self) -> bool:
        try:
            response = await self._client.head(
                self._url("health"),
                headers={**self._api_headers(), "Cache-Control": "no-store"},
                timeout=self.probe_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            log.debug("Health probe failed", extra={"error": str(exc)})
            return False
        return response.is_success

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpRemoteGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["HttpRemoteGateway"]
