"""Pydantic schemas for storage endpoints."""

from datetime import datetime

from pydantic import BaseModel


class FileResponse(BaseModel):
    """Public representation of a stored file (path and deleted_at stay internal)."""
    id: int
    filename: str
    original_name: str
    mime_type: str
    size: int
    driver: str
    url: str | None
    is_public: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FileListResponse(BaseModel):
    files: list[FileResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class UploadFailure(BaseModel):
    original_name: str
    error_type: str
    detail: str

    model_config = {"from_attributes": True}


class BatchUploadResponse(BaseModel):
    uploaded: list[FileResponse]
    failed: list[UploadFailure]


class FileUrlResponse(BaseModel):
    id: int
    url: str


class CleanupResponse(BaseModel):
    deleted_count: int
    failed: list[str]
    message: str
