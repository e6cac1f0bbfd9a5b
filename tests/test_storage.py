from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from services.storage import (
    ImageUploader,
    get_storage_client,
    is_remote_url,
    local_path_from_locator,
)
from utils.exceptions import UploadError


class FakeR2:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.uploads = []

    def get_public_url(self, key):
        return f"https://images.example.com/{key}"

    async def upload_file_async(self, file_path, key, content_type):
        self.uploads.append((file_path, key, content_type))
        return self.succeed


def test_remote_and_local_locators():
    assert is_remote_url("https://cdn.example.com/a.jpg")
    assert not is_remote_url("file:///var/mobile/a.jpg")
    assert not is_remote_url("/var/mobile/a.jpg")
    assert local_path_from_locator("file:///var/mobile/a.jpg") == Path("/var/mobile/a.jpg")


async def test_upload_returns_public_url(tmp_path):
    image = tmp_path / "photo.PNG"
    image.write_bytes(b"\x89PNG")
    storage = FakeR2()

    url = await ImageUploader(storage).upload(str(image), draft_id="draft-7")

    (file_path, key, content_type) = storage.uploads[0]
    assert file_path == image
    assert key.startswith("uploads/draft-7/")
    assert key.endswith(".png")
    assert content_type == "image/png"
    assert url == f"https://images.example.com/{key}"


async def test_missing_file_raises(tmp_path):
    with pytest.raises(UploadError):
        await ImageUploader(FakeR2()).upload(str(tmp_path / "missing.jpg"))


async def test_failed_upload_raises(tmp_path):
    image = tmp_path / "photo.jpg"
    image.write_bytes(b"jpeg")

    with pytest.raises(UploadError):
        await ImageUploader(FakeR2(succeed=False)).upload(image.as_uri())


class FailingS3Client:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def upload_file(self, filename, bucket, key, ExtraArgs=None):
        raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")


async def test_r2_upload_error_returns_false(tmp_path, monkeypatch):
    image = tmp_path / "photo.jpg"
    image.write_bytes(b"jpeg")
    storage = get_storage_client("acct", "key", "secret", "bucket", "images.example.com")
    monkeypatch.setattr(storage, "_client", FailingS3Client)

    assert await storage.upload_file_async(image, "uploads/photo.jpg", "image/jpeg") is False
