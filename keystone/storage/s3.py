"""
S3-compatible drivers (AWS S3 and Wasabi) built on boto3.

Both backends speak the same API, so they share S3Bucket for the actual
calls and differ only in client configuration and public URL format.
boto3 is synchronous; every network call runs in asyncio.to_thread.

S3 DeleteObject succeeds for keys that don't exist, so delete() is naturally
idempotent here.
"""

import asyncio
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from keystone.config import Settings
from keystone.storage.base import SIGNED_URL_EXPIRY, UploadResult, backend_failure

logger = logging.getLogger(__name__)


class S3Bucket:
    """boto3 calls against one bucket, with failures mapped to StorageBackendError."""

    def __init__(self, backend: str, client, bucket: str | None, missing: list[str]):
        self.backend = backend
        self.client = client
        self.bucket = bucket
        # Names of required settings that were left empty
        self.missing = missing
        if missing:
            logger.warning(
                "%s storage is not configured (missing %s); every operation will fail",
                backend,
                ", ".join(missing),
            )

    @property
    def configured(self) -> bool:
        return not self.missing

    def require_configured(self, operation: str, key: str) -> None:
        if self.missing:
            raise backend_failure(
                self.backend,
                operation,
                key,
                reason=f"not configured (missing {', '.join(self.missing)})",
            )

    async def put(self, data: bytes, key: str, mime_type: str) -> None:
        self.require_configured("upload", key)
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise backend_failure(self.backend, "upload", key) from e

    async def remove(self, key: str) -> None:
        self.require_configured("delete", key)
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise backend_failure(self.backend, "delete", key) from e

    def presign(self, key: str) -> str:
        self.require_configured("url", key)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(SIGNED_URL_EXPIRY.total_seconds()),
            )
        except (BotoCoreError, ClientError) as e:
            raise backend_failure(self.backend, "url", key) from e

    async def head(self, key: str) -> bool:
        if self.missing:
            return False
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except Exception:
            return False


class S3StorageDriver:
    name = "s3"

    def __init__(self, bucket: str | None, region: str = "us-east-1", client=None):
        self.region = region
        self.bucket = S3Bucket(
            self.name,
            client or boto3.client("s3", region_name=region),
            bucket,
            missing=[] if bucket else ["AWS_S3_BUCKET"],
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3StorageDriver":
        return cls(bucket=settings.AWS_S3_BUCKET, region=settings.AWS_REGION)

    def _public_url(self, filename: str) -> str:
        return f"https://{self.bucket.bucket}.s3.amazonaws.com/{filename}"

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        await self.bucket.put(data, filename, mime_type)
        logger.info("File uploaded to S3: %s", filename)
        return UploadResult(path=filename, url=self._public_url(filename))

    async def delete(self, filename: str) -> None:
        await self.bucket.remove(filename)
        logger.info("File deleted from S3: %s", filename)

    async def get_url(self, filename: str, is_public: bool = True) -> str:
        if is_public:
            self.bucket.require_configured("url", filename)
            return self._public_url(filename)
        return self.bucket.presign(filename)

    async def exists(self, filename: str) -> bool:
        return await self.bucket.head(filename)


class WasabiStorageDriver:
    name = "wasabi"

    def __init__(
        self,
        bucket: str | None,
        access_key_id: str | None,
        secret_access_key: str | None,
        region: str = "us-east-1",
        endpoint: str = "https://s3.wasabisys.com",
        client=None,
    ):
        self.endpoint = endpoint.rstrip("/")
        missing = [
            setting
            for setting, value in (
                ("WASABI_BUCKET", bucket),
                ("WASABI_ACCESS_KEY_ID", access_key_id),
                ("WASABI_SECRET_ACCESS_KEY", secret_access_key),
            )
            if not value
        ]
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=self.endpoint,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
            )
        self.bucket = S3Bucket(self.name, client, bucket, missing)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WasabiStorageDriver":
        return cls(
            bucket=settings.WASABI_BUCKET,
            access_key_id=settings.WASABI_ACCESS_KEY_ID,
            secret_access_key=settings.WASABI_SECRET_ACCESS_KEY,
            region=settings.WASABI_REGION,
            endpoint=settings.WASABI_ENDPOINT,
        )

    def _public_url(self, filename: str) -> str:
        return f"{self.endpoint}/{self.bucket.bucket}/{filename}"

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        await self.bucket.put(data, filename, mime_type)
        logger.info("File uploaded to Wasabi: %s", filename)
        return UploadResult(path=filename, url=self._public_url(filename))

    async def delete(self, filename: str) -> None:
        await self.bucket.remove(filename)
        logger.info("File deleted from Wasabi: %s", filename)

    async def get_url(self, filename: str, is_public: bool = True) -> str:
        if is_public:
            self.bucket.require_configured("url", filename)
            return self._public_url(filename)
        return self.bucket.presign(filename)

    async def exists(self, filename: str) -> bool:
        return await self.bucket.head(filename)
