"""
Storage driver contract shared by every backend.

A driver stores opaque blobs under a generated filename and resolves URLs
for them. Drivers are selected once at startup (see build_storage_driver)
and hold only immutable configuration plus an SDK client.

Contract:
  - upload(data, filename, mime_type) -> UploadResult(path, url)
  - delete(filename): already-absent blobs count as deleted
  - get_url(filename, is_public): stable URL for public files, 1-hour signed
    URL for private ones, UnsupportedOperationError where signing isn't possible
  - exists(filename): never raises; backend errors read as False

Failures surface as StorageBackendError. The backend name rides along on the
exception and in the log, never in the client-facing message.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from keystone.exceptions import StorageBackendError

logger = logging.getLogger(__name__)

SIGNED_URL_EXPIRY = timedelta(hours=1)


@dataclass(frozen=True)
class UploadResult:
    path: str
    url: str | None


class StorageDriver(Protocol):
    name: str

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult: ...

    async def delete(self, filename: str) -> None: ...

    async def get_url(self, filename: str, is_public: bool = True) -> str: ...

    async def exists(self, filename: str) -> bool: ...


def backend_failure(
    backend: str,
    operation: str,
    filename: str,
    reason: str | None = None,
) -> StorageBackendError:
    """Log a driver failure with full detail and build the redacted error."""
    if reason:
        logger.error("%s %s failed for %s: %s", backend, operation, filename, reason)
    else:
        logger.exception("%s %s failed for %s", backend, operation, filename)
    return StorageBackendError(operation, backend=backend)
