from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from imprint.core.exceptions import StorageError
from imprint.core.storage import LocalStorage, S3Storage


def _client_error(operation="PutObject"):
    return ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)


# =============================================================================
# LocalStorage
# =============================================================================

@pytest.mark.asyncio
async def test_local_store_roundtrip(storage: LocalStorage, png_500):
    stored = await storage.store(png_500, "logo.png", folder="uploads", content_type="image/png")

    assert stored.identifier.startswith("uploads/")
    assert stored.identifier.endswith(".png")
    assert stored.url == f"/static/storage/{stored.identifier}"
    assert (stored.width, stored.height) == (500, 500)
    assert stored.size == len(png_500)
    assert await storage.exists(stored.identifier)
    assert await storage.get_url(stored.identifier) == stored.url

    assert await storage.delete(stored.identifier) is True
    assert not await storage.exists(stored.identifier)
    assert await storage.delete(stored.identifier) is False


@pytest.mark.asyncio
async def test_local_names_are_unique(storage: LocalStorage):
    first = await storage.store(b"a", "same.jpg", resource_type="video")
    second = await storage.store(b"b", "same.jpg", resource_type="video")
    assert first.identifier != second.identifier
    assert first.width is None


@pytest.mark.asyncio
async def test_local_url_for_missing_file(storage: LocalStorage):
    with pytest.raises(StorageError):
        await storage.get_url("uploads/missing.jpg")


@pytest.mark.asyncio
async def test_local_refuses_folders_outside_root(storage: LocalStorage, tmp_path):
    with pytest.raises(StorageError, match="escapes storage root"):
        await storage.store(b"x", "a.jpg", folder="../escaped", resource_type="video")
    assert not (tmp_path / "escaped").exists()

    outside = tmp_path / "outside"
    with pytest.raises(StorageError, match="escapes storage root"):
        await storage.store(b"x", "a.jpg", folder=str(outside), resource_type="video")
    assert not outside.exists()


@pytest.mark.asyncio
async def test_local_refuses_identifiers_outside_root(storage: LocalStorage, tmp_path):
    victim = tmp_path / "victim.txt"
    victim.write_bytes(b"keep")

    with pytest.raises(StorageError):
        await storage.delete("../victim.txt")
    with pytest.raises(StorageError):
        await storage.exists("../victim.txt")
    with pytest.raises(StorageError):
        await storage.get_url("../victim.txt")
    assert victim.read_bytes() == b"keep"


@pytest.mark.asyncio
async def test_local_nested_folder_stays_under_root(storage: LocalStorage):
    stored = await storage.store(b"x", "a.jpg", folder="tenants/acme", resource_type="video")

    assert stored.identifier.startswith("tenants/acme/")
    assert (storage.base_path / stored.identifier).read_bytes() == b"x"


# =============================================================================
# S3Storage
# =============================================================================

@pytest.mark.asyncio
async def test_s3_store_puts_object_and_builds_public_url(png_500):
    client = MagicMock()
    storage = S3Storage(bucket="media", public_url="https://cdn.example.com/", client=client)

    stored = await storage.store(png_500, "logo.png", folder="avatars", content_type="image/png")

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "media"
    assert kwargs["Key"] == stored.identifier
    assert kwargs["Key"].startswith("avatars/")
    assert kwargs["ContentType"] == "image/png"
    assert kwargs["Body"] == png_500
    assert stored.url == f"https://cdn.example.com/{stored.identifier}"
    assert (stored.width, stored.height) == (500, 500)


@pytest.mark.asyncio
async def test_s3_presigns_without_public_url():
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed.example.com/x"
    storage = S3Storage(bucket="media", client=client)

    url = await storage.get_url("uploads/x.jpg", expires_in=60)

    assert url == "https://signed.example.com/x"
    client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "media", "Key": "uploads/x.jpg"},
        ExpiresIn=60
    )


@pytest.mark.asyncio
async def test_s3_client_error_becomes_storage_error():
    client = MagicMock()
    client.put_object.side_effect = _client_error()
    storage = S3Storage(bucket="media", client=client)

    with pytest.raises(StorageError) as exc_info:
        await storage.store(b"data", "a.jpg")

    assert exc_info.value.stage == "storage"
    assert exc_info.value.details["backend"] == "s3"


@pytest.mark.asyncio
async def test_s3_exists():
    client = MagicMock()
    storage = S3Storage(bucket="media", client=client)
    assert await storage.exists("uploads/a.jpg") is True

    client.head_object.side_effect = _client_error("HeadObject")
    assert await storage.exists("uploads/a.jpg") is False
