"""
Remote gateway contract for expensesync.

The gateway is the only way the sync core talks to the remote authority. It is
a stateless conduit: it owns nothing client-side and returns raw server
snapshots, which the core validates into records with the entity registry.
Implementations raise `GatewayTransportError` when a call gets no usable
answer and `RecordNotFoundError` when the server does not know a record.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Protocol, runtime_checkable

from expensesync.domain.models import (
    BatchSyncRequest,
    BatchSyncResponse,
    EntityType,
    UploadUrlResponse,
)


@runtime_checkable
class RemoteGateway(Protocol):
    """
    Interface all remote gateways must implement.
    """

    async def batch_sync(self, request: BatchSyncRequest) -> BatchSyncResponse:
        """
        Submit create/update/delete operations for both entity kinds at once.

        The server handles every operation independently and reports
        per-operation outcomes; a failed operation does not roll the others
        back. Raises only when the call itself fails.
        """
        ...

    async def get_all(self, entity_type: EntityType, owner_id: str) -> List[Dict[str, Any]]:
        """Fetch the owner's current records of one kind as wire snapshots."""
        ...

    async def create(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    async def update(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        ...

    async def get_upload_url(self, file_name: str) -> UploadUrlResponse:
        ...

    async def upload_blob(
        self, upload_url: str, content: bytes, content_type: str = "image/jpeg"
    ) -> None:
        ...

    async def ping(self) -> bool:
        """Lightweight liveness probe. True only when the server answered OK."""
        ...


class AbstractRemoteGateway(abc.ABC):
    """
    Optional ABC helper for class-based implementations.
    """

    @abc.abstractmethod
    async def batch_sync(self, request: BatchSyncRequest) -> BatchSyncResponse:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def get_all(
        self, entity_type: EntityType, owner_id: str
    ) -> List[Dict[str, Any]]:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def create(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def update(
        self, entity_type: EntityType, entity_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, entity_type: EntityType, entity_id: str) -> None:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def get_upload_url(self, file_name: str) -> UploadUrlResponse:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def upload_blob(
        self, upload_url: str, content: bytes, content_type: str = "image/jpeg"
    ) -> None:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    async def ping(self) -> bool:  # pragma: no cover
        raise NotImplementedError

    async def close(self) -> None:
        """Release transport resources. No-op by default."""


__all__ = ["RemoteGateway", "AbstractRemoteGateway"]
