from __future__ import annotations

import pytest

from expensesync.errors import RecordValidationError
from expensesync.gateway.uploads import (
    decode_image,
    encode_image,
    receipt_file_name,
    upload_receipt_image,
)

IMAGE_BYTES = b"\xff\xd8\xff\xe0jpeg"


def test_receipt_file_name_uses_record_id() -> None:
    assert receipt_file_name("local-abc") == "receipt-local-abc.jpg"
    assert receipt_file_name().startswith("receipt-")


def test_decode_image_rejects_garbage() -> None:
    assert decode_image(encode_image(IMAGE_BYTES)) == IMAGE_BYTES
    with pytest.raises(RecordValidationError):
        decode_image("not base64!!")


@pytest.mark.asyncio
async def test_upload_receipt_image_returns_blob_url(gateway) -> None:
    blob_url = await upload_receipt_image(gateway, IMAGE_BYTES, "receipt-1.jpg")

    assert blob_url == "https://blob.test/receipts/receipt-1.jpg"
    assert gateway.call_names() == ["get_upload_url", "upload_blob"]
    assert list(gateway.uploads.values()) == [IMAGE_BYTES]
