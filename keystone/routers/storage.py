"""
Storage router — file upload, lookup and deletion.

Endpoints:
  GET    /storage                    — List live files (paged, newest first)
  POST   /storage/upload             — Upload one file (multipart "file")
  POST   /storage/upload-multiple    — Upload several files (multipart "files")
  GET    /storage/{file_id}          — File metadata
  GET    /storage/{file_id}/url      — Fresh URL (signed for private files)
  DELETE /storage/{file_id}          — Soft delete
  POST   /storage/cleanup-orphaned   — [ADMINISTRATOR+] Purge long-deleted files

All endpoints require authentication.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from keystone.dependencies import CurrentUser, StorageServiceDep, require_min_role
from keystone.models.user import User
from keystone.rbac import UserRole
from keystone.schemas.auth import MessageResponse
from keystone.schemas.storage import (
    BatchUploadResponse,
    CleanupResponse,
    FileListResponse,
    FileResponse,
    FileUrlResponse,
    UploadFailure,
)
from keystone.services.storage_service import IncomingFile

router = APIRouter()


async def _read_upload(upload: UploadFile) -> IncomingFile:
    data = await upload.read()
    return IncomingFile(
        data=data,
        filename=upload.filename or "upload",
        mime_type=upload.content_type or "application/octet-stream",
        size=len(data),
    )


@router.get("", response_model=FileListResponse, summary="List files")
async def list_files(
    user: CurrentUser,
    storage: StorageServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    return await storage.list_files(page=page, limit=limit)


@router.post(
    "/upload",
    response_model=FileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a file",
)
async def upload_file(
    user: CurrentUser,
    storage: StorageServiceDep,
    file: UploadFile = File(...),
    is_public: bool = Form(False),
):
    """
    Upload a single file.

    Rejected with 413 above MAX_UPLOAD_SIZE_MB and 415 for MIME types outside
    ALLOWED_MIME_TYPES.
    """
    return await storage.upload_one(await _read_upload(file), is_public=is_public)


@router.post(
    "/upload-multiple",
    response_model=BatchUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload several files",
)
async def upload_files(
    user: CurrentUser,
    storage: StorageServiceDep,
    files: list[UploadFile] = File(...),
    is_public: bool = Form(False),
):
    """
    Upload several files at once.

    Best effort: files that fail are listed under `failed`; the rest are
    stored.
    """
    incoming = [await _read_upload(f) for f in files]
    result = await storage.upload_many(incoming, is_public=is_public)
    return BatchUploadResponse(
        uploaded=[FileResponse.model_validate(f) for f in result.uploaded],
        failed=[UploadFailure.model_validate(f) for f in result.failed],
    )


@router.post(
    "/cleanup-orphaned",
    response_model=CleanupResponse,
    summary="[Administrator] Purge soft-deleted files past retention",
)
async def cleanup_orphaned(
    admin: Annotated[User, Depends(require_min_role(UserRole.ADMINISTRATOR))],
    storage: StorageServiceDep,
    retention_days: int | None = Query(None, ge=1),
):
    result = await storage.sweep_orphaned(retention_days)
    return CleanupResponse(
        deleted_count=result.deleted_count,
        failed=result.failed,
        message=result.message,
    )


@router.get("/{file_id}", response_model=FileResponse, summary="Get file metadata")
async def get_file(file_id: int, user: CurrentUser, storage: StorageServiceDep):
    return await storage.get_metadata(file_id)


@router.get("/{file_id}/url", response_model=FileUrlResponse, summary="Get file URL")
async def get_file_url(file_id: int, user: CurrentUser, storage: StorageServiceDep):
    return FileUrlResponse(id=file_id, url=await storage.file_url(file_id))


@router.delete("/{file_id}", response_model=MessageResponse, summary="Delete a file")
async def delete_file(file_id: int, user: CurrentUser, storage: StorageServiceDep):
    return await storage.soft_delete(file_id)
