import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.config import settings
from src.core.exceptions import (
    BadRequestError,
    InvalidTransitionError,
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    UnsupportedMediaTypeError,
)
from src.modules.companion.models import UploadStatus
from src.modules.companion.services import UploadIntakeService
from tests.fakes import PNG_BYTES, PROCESSED_BYTES, RecordingTrigger


@pytest.mark.asyncio
async def test_create_pending_upload(intake, repository, storage, trigger):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1", filename="front.png")

    assert upload.status == UploadStatus.PENDING
    assert upload.group_key == "STK1"
    assert upload.sequence_index == 0
    assert upload.processed_ref is None
    assert upload.size == len(PNG_BYTES)
    assert upload.original_filename == "front.png"
    assert upload.original_ref.startswith(f"/static/storage/{settings.STORAGE_KEY_PREFIX}/STK1/original/")
    assert await storage.download(upload.original_ref) == PNG_BYTES

    assert await repository.get(upload.id) == upload
    assert await repository.pending_ids() == [upload.id]
    assert await repository.group_ids("STK1") == [upload.id]
    assert trigger.limits == [settings.INTAKE_DRAIN_LIMIT]


@pytest.mark.asyncio
async def test_sequence_index_increases_within_group(intake):
    first = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    second = await intake.create_upload(PNG_BYTES, "image/jpeg", "STK1")
    other = await intake.create_upload(PNG_BYTES, "image/png", "STK2")

    assert (first.sequence_index, second.sequence_index) == (0, 1)
    assert other.sequence_index == 0
    assert second.original_ref.endswith(".jpg")


@pytest.mark.asyncio
async def test_group_key_is_trimmed(intake):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "  STK1  ")
    assert upload.group_key == "STK1"


@pytest.mark.asyncio
async def test_create_already_processed_upload(intake, repository, trigger):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)

    assert upload.status == UploadStatus.PROCESSED
    assert upload.processed_ref == upload.original_ref
    assert upload.processed_at == upload.created_at
    assert "/STK1/processed/" in upload.original_ref
    assert await repository.pending_ids() == []
    assert await repository.group_ids("STK1") == [upload.id]
    assert trigger.limits == []


@pytest.mark.asyncio
@pytest.mark.parametrize("data,content_type,group_key,error,reason", [
    (PNG_BYTES, "image/png", "   ", BadRequestError, "group_key_required"),
    (PNG_BYTES, "image/png", None, BadRequestError, "group_key_required"),
    (b"", "image/png", "STK1", BadRequestError, "file_required"),
    (None, None, "STK1", BadRequestError, "file_required"),
    (b"%PDF-1.7", "application/pdf", "STK1", UnsupportedMediaTypeError, "unsupported_media_type"),
    (PNG_BYTES, None, "STK1", UnsupportedMediaTypeError, "unsupported_media_type"),
])
async def test_invalid_uploads_write_nothing(
    intake, redis_client, trigger, data, content_type, group_key, error, reason
):
    with pytest.raises(error) as exc_info:
        await intake.create_upload(data, content_type, group_key)

    assert exc_info.value.reason == reason
    assert await redis_client.keys("*") == []
    assert trigger.limits == []


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected(repository, storage, redis_client):
    intake = UploadIntakeService(repository, storage, max_upload_size=16)

    with pytest.raises(PayloadTooLargeError) as exc_info:
        await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    assert exc_info.value.code == 413
    assert exc_info.value.details["limit"] == 16
    assert await redis_client.keys("*") == []


@pytest.mark.asyncio
async def test_storage_failure_creates_no_job(repository, redis_client, trigger):
    storage = AsyncMock()
    storage.upload.side_effect = OSError("disk full")
    intake = UploadIntakeService(repository, storage, trigger=trigger)

    with pytest.raises(StorageError) as exc_info:
        await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    assert exc_info.value.reason == "storage_failed"
    assert await redis_client.keys("test:upload:*") == []
    assert await repository.pending_ids() == []
    assert trigger.limits == []


@pytest.mark.asyncio
async def test_storage_timeout_is_a_storage_error(repository):
    async def slow_upload(*args, **kwargs):
        await asyncio.sleep(1)

    storage = AsyncMock()
    storage.upload.side_effect = slow_upload
    intake = UploadIntakeService(repository, storage, storage_timeout=0.01)

    with pytest.raises(StorageError) as exc_info:
        await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_failed_trigger_does_not_fail_intake(repository, storage):
    trigger = RecordingTrigger(result=False)
    intake = UploadIntakeService(repository, storage, trigger=trigger)

    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    assert upload.status == UploadStatus.PENDING
    assert trigger.limits == [settings.INTAKE_DRAIN_LIMIT]
    assert await repository.pending_ids() == [upload.id]


# =============================================================================
# Completion callbacks
# =============================================================================

@pytest.mark.asyncio
async def test_complete_upload_as_processed(intake, repository):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    done = await intake.complete_upload(
        upload.id,
        processed_ref="https://cdn.example.com/STK1/processed/x.png",
        sequence_index=7
    )

    assert done.status == UploadStatus.PROCESSED
    assert done.processed_ref == "https://cdn.example.com/STK1/processed/x.png"
    assert done.sequence_index == 7
    assert await repository.get(upload.id) == done
    assert await repository.pending_ids() == []


@pytest.mark.asyncio
async def test_complete_upload_as_failed(intake, repository):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    failed = await intake.complete_upload(upload.id, status=UploadStatus.FAILED, error="model crashed")

    assert failed.status == UploadStatus.FAILED
    assert failed.error == "model crashed"
    assert await repository.pending_ids() == []


@pytest.mark.asyncio
async def test_completing_terminal_upload_is_rejected(intake, repository):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    done = await intake.complete_upload(upload.id, processed_ref="https://cdn.example.com/x.png")

    with pytest.raises(InvalidTransitionError):
        await intake.complete_upload(upload.id, status=UploadStatus.FAILED, error="late")

    assert await repository.get(upload.id) == done


@pytest.mark.asyncio
async def test_complete_requires_processed_ref(intake):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    with pytest.raises(BadRequestError) as exc_info:
        await intake.complete_upload(upload.id)
    assert exc_info.value.reason == "processed_ref_required"


@pytest.mark.asyncio
async def test_complete_rejects_pending_status(intake):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    with pytest.raises(BadRequestError) as exc_info:
        await intake.complete_upload(upload.id, status=UploadStatus.PENDING)
    assert exc_info.value.reason == "invalid_status"


@pytest.mark.asyncio
async def test_complete_unknown_upload(intake):
    with pytest.raises(NotFoundError):
        await intake.complete_upload("missing", processed_ref="https://cdn.example.com/x.png")


@pytest.mark.asyncio
async def test_attach_processed_image(intake, repository, storage):
    upload = await intake.create_upload(PNG_BYTES, "image/jpeg", "STK1")

    done = await intake.attach_processed_image(upload.id, PROCESSED_BYTES, "image/png", sequence_index=3)

    assert done.status == UploadStatus.PROCESSED
    assert done.sequence_index == 3
    assert "/STK1/processed/" in done.processed_ref
    assert await storage.download(done.processed_ref) == PROCESSED_BYTES
    assert await repository.pending_ids() == []


@pytest.mark.asyncio
async def test_attach_to_terminal_upload_is_rejected(intake, storage):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)

    with pytest.raises(InvalidTransitionError):
        await intake.attach_processed_image(upload.id, PROCESSED_BYTES, "image/png")


@pytest.mark.asyncio
async def test_attach_validates_media_type(intake):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    with pytest.raises(UnsupportedMediaTypeError):
        await intake.attach_processed_image(upload.id, b"text", "text/plain")
