"""
Azure Blob Storage driver built on azure-storage-blob.

Private files get a read-only SAS URL valid for SIGNED_URL_EXPIRY, signed
with the account key. The SDK client is synchronous; network calls run in
asyncio.to_thread.
"""

import asyncio
import logging
from datetime import datetime, timezone

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from keystone.config import Settings
from keystone.storage.base import SIGNED_URL_EXPIRY, UploadResult, backend_failure

logger = logging.getLogger(__name__)


class AzureStorageDriver:
    name = "azure"

    def __init__(
        self,
        account_name: str | None,
        account_key: str | None,
        container_name: str | None,
        service_client: BlobServiceClient | None = None,
    ):
        self.account_name = account_name
        self.account_key = account_key
        self.container_name = container_name
        self.missing = [
            setting
            for setting, value in (
                ("AZURE_STORAGE_ACCOUNT", account_name),
                ("AZURE_STORAGE_KEY", account_key),
                ("AZURE_CONTAINER_NAME", container_name),
            )
            if not value
        ]

        if self.missing:
            self.service_client = None
            logger.warning(
                "Azure storage is not configured (missing %s); every operation will fail",
                ", ".join(self.missing),
            )
        elif service_client is not None:
            self.service_client = service_client
        else:
            connection_string = (
                "DefaultEndpointsProtocol=https;"
                f"AccountName={account_name};AccountKey={account_key};"
                "EndpointSuffix=core.windows.net"
            )
            self.service_client = BlobServiceClient.from_connection_string(connection_string)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureStorageDriver":
        return cls(
            account_name=settings.AZURE_STORAGE_ACCOUNT,
            account_key=settings.AZURE_STORAGE_KEY,
            container_name=settings.AZURE_CONTAINER_NAME,
        )

    def _blob(self, operation: str, filename: str):
        if self.service_client is None:
            raise backend_failure(
                self.name,
                operation,
                filename,
                reason=f"not configured (missing {', '.join(self.missing)})",
            )
        return self.service_client.get_blob_client(
            container=self.container_name, blob=filename
        )

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        blob = self._blob("upload", filename)
        try:
            await asyncio.to_thread(
                blob.upload_blob,
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=mime_type),
            )
        except AzureError as e:
            raise backend_failure(self.name, "upload", filename) from e
        logger.info("File uploaded to Azure: %s", filename)
        return UploadResult(path=filename, url=blob.url)

    async def delete(self, filename: str) -> None:
        blob = self._blob("delete", filename)
        try:
            await asyncio.to_thread(blob.delete_blob)
        except ResourceNotFoundError:
            logger.info("Blob already absent in Azure: %s", filename)
            return
        except AzureError as e:
            raise backend_failure(self.name, "delete", filename) from e
        logger.info("File deleted from Azure: %s", filename)

    async def get_url(self, filename: str, is_public: bool = True) -> str:
        blob = self._blob("url", filename)
        if is_public:
            return blob.url
        try:
            sas = generate_blob_sas(
                account_name=self.account_name,
                container_name=self.container_name,
                blob_name=filename,
                account_key=self.account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + SIGNED_URL_EXPIRY,
            )
        except (AzureError, ValueError) as e:
            raise backend_failure(self.name, "url", filename) from e
        return f"{blob.url}?{sas}"

    async def exists(self, filename: str) -> bool:
        if self.service_client is None:
            return False
        try:
            blob = self._blob("exists", filename)
            return await asyncio.to_thread(blob.exists)
        except Exception:
            return False
