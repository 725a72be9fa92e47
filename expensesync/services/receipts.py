"""
Receipt service: local-first receipts with an optional captured image.

An image passed to `create` is kept on the record as base64 until it reaches
blob storage. When online the upload happens before the immediate create, so
the server receives the blob URL; otherwise the orchestrator uploads it during
the next sync.
"""

from __future__ import annotations

from typing import Optional

from expensesync.domain.models import (
    EntityType,
    OcrStatus,
    Receipt,
    ReceiptCreate,
    ReceiptUpdate,
    apply_receipt_update,
)
from expensesync.errors import GatewayError
from expensesync.gateway.uploads import encode_image, receipt_file_name, upload_receipt_image
from expensesync.services.base import EntityService
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


class ReceiptService(EntityService[Receipt]):
    entity_type = EntityType.RECEIPT

    def _build(self, record_id: str, owner_id: str, data: ReceiptCreate) -> Receipt:
        return Receipt(
            id=record_id,
            owner_id=owner_id,
            blob_url=data.blob_url,
            merchant_name=data.merchant_name,
            transaction_date=data.transaction_date,
            total_amount=data.total_amount,
            currency=data.currency or self.settings.default_currency,
            category=data.category,
            description=data.description,
            ocr_status=OcrStatus.PENDING,
        )

    def _merge(self, existing: Receipt, update: ReceiptUpdate) -> Receipt:
        return apply_receipt_update(existing, update)

    async def create(  # type: ignore[override]
        self,
        data: ReceiptCreate,
        image: Optional[bytes] = None,
        file_name: Optional[str] = None,
    ) -> Receipt:
        """
        Create a receipt. `image` is the captured JPEG; it is stored locally
        and uploaded as soon as the client is online.
        """
        record = await self._create_record(data)
        if image is not None and not record.blob_url:
            staged = record.model_copy(update={"local_image_data": encode_image(image)})
            await self.records.put(staged)
            record = staged

        if not self.connectivity.is_online:
            return record

        with self.orchestrator.reserve(record.id) as reserved:
            if reserved and record.local_image_data:
                record = await self._upload_image(record, image or b"", file_name)
        if record.local_image_data:
            # The image is not uploaded yet; batch sync handles the receipt.
            return record
        return await self._push_create(record)

    async def _upload_image(
        self, record: Receipt, image: bytes, file_name: Optional[str]
    ) -> Receipt:
        try:
            blob_url = await upload_receipt_image(
                self.gateway, image, file_name or receipt_file_name(record.id)
            )
        except GatewayError as exc:
            log.warning(
                "Receipt image upload failed; kept locally",
                extra={"entity_id": record.id, "error": str(exc)},
            )
            return record
        current = await self.records.get(record.id)
        if current is None:
            return record
        uploaded = current.model_copy(update={"blob_url": blob_url, "local_image_data": None})
        await self.records.put(uploaded)
        return uploaded


__all__ = ["ReceiptService"]
