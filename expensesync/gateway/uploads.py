"""
Receipt image upload through the remote gateway.

The gateway mints a short-lived upload URL, the image bytes are PUT there, and
the resulting blob URL is what the receipt record keeps.
"""

from __future__ import annotations

import base64
import binascii
import time
from typing import Optional

from expensesync.errors import RecordValidationError
from expensesync.gateway.base import RemoteGateway
from expensesync.utils.logging import get_logger

log = get_logger(__name__)


def receipt_file_name(record_id: Optional[str] = None) -> str:
    stem = record_id or str(int(time.time() * 1000))
    return f"receipt-{stem}.jpg"


async def upload_receipt_image(
    gateway: RemoteGateway,
    image: bytes,
    file_name: Optional[str] = None,
    content_type: str = "image/jpeg",
) -> str:
    """Upload `image` and return the blob URL to store on the receipt."""
    upload = await gateway.get_upload_url(file_name or receipt_file_name())
    await gateway.upload_blob(upload.upload_url, image, content_type)
    log.debug("Receipt image uploaded", extra={"blob_url": upload.blob_url, "bytes": len(image)})
    return upload.blob_url


def decode_image(local_image_data: str) -> bytes:
    try:
        return base64.b64decode(local_image_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RecordValidationError(f"Stored receipt image is not valid base64: {exc}") from exc


def encode_image(image: bytes) -> str:
    return base64.b64encode(image).decode("ascii")


__all__ = ["upload_receipt_image", "receipt_file_name", "decode_image", "encode_image"]
