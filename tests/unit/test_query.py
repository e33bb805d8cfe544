import pytest
from redis.exceptions import RedisError

from src.core.exceptions import BadRequestError, NotFoundError
from src.modules.companion.models import UploadStatus
from tests.fakes import PNG_BYTES


@pytest.mark.asyncio
async def test_list_uploads_oldest_first(intake, query):
    first = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    second = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    await intake.create_upload(PNG_BYTES, "image/png", "STK2")

    uploads = await query.list_uploads("STK1")
    assert [u.id for u in uploads] == [first.id, second.id]


@pytest.mark.asyncio
async def test_list_uploads_filters_by_status(intake, query):
    pending = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    processed = await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)

    assert [u.id for u in await query.list_uploads("STK1", UploadStatus.PENDING)] == [pending.id]
    assert [u.id for u in await query.list_uploads("STK1", UploadStatus.PROCESSED)] == [processed.id]
    assert await query.list_uploads("STK1", UploadStatus.FAILED) == []


@pytest.mark.asyncio
async def test_list_uploads_requires_group(query):
    with pytest.raises(BadRequestError) as exc_info:
        await query.list_uploads("  ")
    assert exc_info.value.reason == "group_key_required"


@pytest.mark.asyncio
async def test_list_uploads_unknown_group_is_empty(query):
    assert await query.list_uploads("NOPE") == []


@pytest.mark.asyncio
async def test_list_uploads_skips_stale_entries(intake, query, repository, redis_client):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    await redis_client.sadd(repository.group_index_key("STK1"), "ghost")
    await redis_client.set(repository.upload_key("broken"), "{oops")
    await redis_client.sadd(repository.group_index_key("STK1"), "broken")

    assert [u.id for u in await query.list_uploads("STK1")] == [upload.id]


@pytest.mark.asyncio
async def test_get_upload(intake, query):
    upload = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    assert await query.get_upload(upload.id) == upload
    with pytest.raises(NotFoundError):
        await query.get_upload("missing")


@pytest.mark.asyncio
async def test_gallery_for_group_is_newest_first(intake, query):
    older = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    newer = await intake.create_upload(PNG_BYTES, "image/png", "STK1")
    await intake.create_upload(PNG_BYTES, "image/png", "STK1")  # stays pending
    failed = await intake.create_upload(PNG_BYTES, "image/png", "STK1")

    await intake.complete_upload(older.id, processed_ref="https://cdn.example.com/older.png")
    await intake.complete_upload(newer.id, processed_ref="https://cdn.example.com/newer.png")
    await intake.complete_upload(failed.id, status=UploadStatus.FAILED, error="boom")

    gallery = await query.gallery("STK1")
    assert [u.id for u in gallery] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_gallery_across_groups(intake, query):
    one = await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)
    two = await intake.create_upload(PNG_BYTES, "image/png", "STK2", is_processed=True)
    await intake.create_upload(PNG_BYTES, "image/png", "STK3")

    assert [u.id for u in await query.gallery()] == [two.id, one.id]


@pytest.mark.asyncio
async def test_gallery_without_scan_support_is_empty(intake, query, repository, monkeypatch):
    await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)

    async def broken_scan(*args, **kwargs):
        raise RedisError("unknown command 'SCAN'")
        yield

    monkeypatch.setattr(repository.redis, "scan_iter", broken_scan)

    assert await query.gallery() == []
    assert len(await query.gallery("STK1")) == 1


@pytest.mark.asyncio
async def test_gallery_ignores_uploads_indexed_under_another_group(intake, query, repository, redis_client):
    own = await intake.create_upload(PNG_BYTES, "image/png", "STK1", is_processed=True)
    stray = await intake.create_upload(PNG_BYTES, "image/png", "STK2", is_processed=True)
    await redis_client.sadd(repository.group_index_key("STK1"), stray.id)

    assert [u.id for u in await query.gallery("STK1")] == [own.id]
    assert {u.id for u in await query.gallery()} == {own.id, stray.id}
