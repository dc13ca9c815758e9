"""Local filesystem driver: blobs under LOCAL_STORAGE_PATH, served from /uploads."""

import asyncio
import logging
from pathlib import Path

from keystone.exceptions import UnsupportedOperationError
from keystone.storage.base import UploadResult, backend_failure

logger = logging.getLogger(__name__)


class LocalStorageDriver:
    name = "local"

    def __init__(self, storage_path: str | Path, url_prefix: str = "/uploads"):
        self.storage_path = Path(storage_path)
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, filename: str) -> Path:
        # Only bare names: no directories, no traversal out of storage_path
        if not filename or Path(filename).name != filename or filename in (".", ".."):
            raise ValueError(f"invalid storage filename: {filename!r}")
        return self.storage_path / filename

    def _public_url(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def _write(self, filename: str, data: bytes) -> None:
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self._resolve(filename).write_bytes(data)

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        try:
            await asyncio.to_thread(self._write, filename, data)
        except (OSError, ValueError) as e:
            raise backend_failure(self.name, "upload", filename) from e
        logger.info("File uploaded: %s", filename)
        return UploadResult(path=filename, url=self._public_url(filename))

    async def delete(self, filename: str) -> None:
        try:
            await asyncio.to_thread(self._resolve(filename).unlink)
        except FileNotFoundError:
            logger.info("File already absent: %s", filename)
            return
        except (OSError, ValueError) as e:
            raise backend_failure(self.name, "delete", filename) from e
        logger.info("File deleted: %s", filename)

    async def get_url(self, filename: str, is_public: bool = True) -> str:
        if not is_public:
            raise UnsupportedOperationError(
                "Signed URLs are not available for this storage backend"
            )
        return self._public_url(filename)

    async def exists(self, filename: str) -> bool:
        try:
            return await asyncio.to_thread(self._resolve(filename).is_file)
        except (OSError, ValueError):
            return False
