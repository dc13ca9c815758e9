"""In-memory stand-ins for the notification sender and the storage driver."""

from dataclasses import dataclass, field
from typing import Any

from keystone.exceptions import StorageBackendError
from keystone.storage.base import UploadResult


class RecordingSender:
    """NotificationSender that keeps every message in memory."""

    def __init__(self, fail_welcome: bool = False, fail_password_reset: bool = False):
        self.fail_welcome = fail_welcome
        self.fail_password_reset = fail_password_reset
        self.welcome: list[tuple[str, dict[str, Any]]] = []
        self.password_reset: list[tuple[str, dict[str, Any]]] = []

    async def send_welcome(self, email: str, context: dict[str, Any]) -> None:
        if self.fail_welcome:
            raise RuntimeError("mail server down")
        self.welcome.append((email, context))

    async def send_password_reset(self, email: str, context: dict[str, Any]) -> None:
        if self.fail_password_reset:
            raise RuntimeError("mail server down")
        self.password_reset.append((email, context))


@dataclass
class RecordingDriver:
    """In-memory StorageDriver that counts calls and can be told to fail."""

    name: str = "memory"
    blobs: dict[str, bytes] = field(default_factory=dict)
    uploads: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    fail_upload: set[str] = field(default_factory=set)
    fail_delete: bool = False

    async def upload(self, data: bytes, filename: str, mime_type: str) -> UploadResult:
        self.uploads.append(filename)
        if any(filename.endswith(suffix) for suffix in self.fail_upload):
            raise StorageBackendError("upload", backend=self.name)
        self.blobs[filename] = data
        return UploadResult(path=filename, url=f"memory://{filename}")

    async def delete(self, filename: str) -> None:
        self.deletes.append(filename)
        if self.fail_delete:
            raise StorageBackendError("delete", backend=self.name)
        self.blobs.pop(filename, None)

    async def get_url(self, filename: str, is_public: bool = True) -> str:
        if is_public:
            return f"memory://{filename}"
        return f"memory://{filename}?signed=1"

    async def exists(self, filename: str) -> bool:
        return filename in self.blobs
