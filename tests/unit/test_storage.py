from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from src.core.storage import LocalStorage, S3Storage, sanitize_key_segment


@pytest.mark.parametrize("raw,expected", [
    ("STK1", "STK1"),
    ("  stk 42/A ", "stk_42_A"),
    ("../../etc", "etc"),
    ("Ünïcode-7", "ncode-7"),
    ("", "unknown"),
    (None, "unknown"),
])
def test_sanitize_key_segment(raw, expected):
    assert sanitize_key_segment(raw) == expected


@pytest.mark.asyncio
async def test_local_storage_upload_and_download(storage):
    stored = await storage.upload(b"data", key_prefix="web-companion/STK1/original", content_type="image/png")

    assert stored.key.startswith("web-companion/STK1/original/")
    assert stored.key.endswith(".png")
    assert stored.url == f"/static/storage/{stored.key}"
    assert await storage.exists(stored.key)
    assert await storage.download(stored.url) == b"data"
    assert await storage.download(stored.key) == b"data"


@pytest.mark.asyncio
async def test_local_storage_refuses_keys_outside_root(storage):
    with pytest.raises(FileNotFoundError):
        await storage.download("../../etc/passwd")
    assert not await storage.exists("../outside.png")


@pytest.mark.asyncio
async def test_local_storage_missing_blob(storage):
    with pytest.raises(FileNotFoundError):
        await storage.download("/static/storage/web-companion/STK1/original/nope.png")


def _s3(client=None) -> S3Storage:
    return S3Storage(bucket="dealer-media", region="us-east-1", client=client or MagicMock())


@pytest.mark.asyncio
async def test_s3_upload_is_public_and_addressed_by_url():
    client = MagicMock()
    storage = _s3(client)

    stored = await storage.upload(b"data", key_prefix="web-companion/STK1/processed", content_type="image/png")

    assert stored.url == f"https://dealer-media.s3.us-east-1.amazonaws.com/{stored.key}"
    kwargs = client.upload_fileobj.call_args.kwargs
    assert kwargs["Bucket"] == "dealer-media"
    assert kwargs["Key"] == stored.key
    assert kwargs["ExtraArgs"] == {"ContentType": "image/png", "ACL": "public-read"}


def test_s3_key_for_refs():
    storage = _s3()
    assert storage.key_for("https://dealer-media.s3.us-east-1.amazonaws.com/a/b.png") == "a/b.png"
    assert storage.key_for("a/b.png") == "a/b.png"
    assert storage.key_for("https://elsewhere.example.com/a/b.png") is None


@pytest.mark.asyncio
async def test_s3_download_reads_object_body():
    client = MagicMock()
    client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"png"))}

    data = await _s3(client).download("https://dealer-media.s3.us-east-1.amazonaws.com/a/b.png")

    assert data == b"png"
    client.get_object.assert_called_once_with(Bucket="dealer-media", Key="a/b.png")


@pytest.mark.asyncio
async def test_s3_missing_object_is_file_not_found():
    client = MagicMock()
    client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")

    with pytest.raises(FileNotFoundError):
        await _s3(client).download("a/b.png")
