import mimetypes
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import aioboto3
from aiobotocore.config import AioConfig
from botocore.exceptions import ClientError, NoCredentialsError
from pydantic import BaseModel

from config.logger import get_logger
from utils.exceptions import UploadError

logger = get_logger(__name__)

REMOTE_SCHEMES = ("http", "https")


def is_remote_url(locator: str) -> bool:
    return urlparse(locator).scheme.lower() in REMOTE_SCHEMES


def local_path_from_locator(locator: str) -> Path:
    parsed = urlparse(locator)
    if parsed.scheme.lower() == "file":
        return Path(url2pathname(parsed.path))
    return Path(locator).expanduser()


def get_storage_client(
    account_id: str,
    access_key_id: str,
    secret_access_key: str,
    bucket_name: str,
    public_domain: str,
) -> "CloudflareR2":
    """create storage client"""
    config = R2Storage(
        account_id=account_id,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        bucket_name=bucket_name,
        public_domain=public_domain,
    )
    return CloudflareR2(config)


class R2Storage(BaseModel):
    account_id: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    public_domain: str
    region: str = "auto"
    max_pool_connections: int = 10


class CloudflareR2:
    def __init__(self, config: R2Storage):
        self.endpoint_url = f"https://{config.account_id}.r2.cloudflarestorage.com"
        self.access_key_id = config.access_key_id
        self.secret_access_key = config.secret_access_key
        self.bucket_name = config.bucket_name
        self.public_domain = config.public_domain
        self.region = config.region

        self._session = aioboto3.Session()
        self._config = AioConfig(
            max_pool_connections=config.max_pool_connections,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )

    def _client(self):
        return self._session.client(  # type: ignore[attr-defined]
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region,
            config=self._config,
        )

    def get_public_url(self, key: str) -> str:
        return f"https://{self.public_domain}/{key}"

    async def upload_file_async(self, file_path: Path, key: str, content_type: str) -> bool:
        try:
            async with self._client() as client:
                await client.upload_file(
                    str(file_path), self.bucket_name, key, ExtraArgs={"ContentType": content_type}
                )
                logger.info("Uploaded file to R2", file_path=str(file_path), key=key)
                return True
        except (NoCredentialsError, ClientError, OSError) as e:
            logger.error("R2 async upload error", error=str(e))
            return False


class ImageUploader:
    """Turns a device-local image into a URL the remote worker can fetch."""

    def __init__(self, storage: CloudflareR2, prefix: str = "uploads"):
        self.storage = storage
        self.prefix = prefix.strip("/")

    def _build_key(self, file_path: Path, draft_id: Optional[str] = None) -> str:
        folder = f"{self.prefix}/{draft_id}" if draft_id else self.prefix
        return f"{folder}/{uuid.uuid4().hex}{file_path.suffix.lower()}"

    async def upload(self, locator: str, draft_id: Optional[str] = None) -> str:
        file_path = local_path_from_locator(locator)
        if not file_path.is_file():
            raise UploadError(f"Image not found on device: {locator}")

        content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        key = self._build_key(file_path, draft_id)

        if not await self.storage.upload_file_async(file_path, key, content_type):
            raise UploadError(f"Failed to upload image: {file_path.name}")

        url = self.storage.get_public_url(key)
        logger.info("Uploaded local image for enhancement", key=key)
        return url
