"""
Storage drivers package.

The active driver is chosen once from STORAGE_DRIVER and shared for the life
of the process (it holds no per-request state).
"""

from keystone.config import Settings
from keystone.storage.azure import AzureStorageDriver
from keystone.storage.base import SIGNED_URL_EXPIRY, StorageDriver, UploadResult  # noqa: F401
from keystone.storage.local import LocalStorageDriver
from keystone.storage.s3 import S3StorageDriver, WasabiStorageDriver


def build_storage_driver(settings: Settings) -> StorageDriver:
    """Instantiate the driver named by settings.STORAGE_DRIVER."""
    if settings.STORAGE_DRIVER == "s3":
        return S3StorageDriver.from_settings(settings)
    if settings.STORAGE_DRIVER == "wasabi":
        return WasabiStorageDriver.from_settings(settings)
    if settings.STORAGE_DRIVER == "azure":
        return AzureStorageDriver.from_settings(settings)
    return LocalStorageDriver(settings.LOCAL_STORAGE_PATH)
