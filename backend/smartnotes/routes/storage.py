"""
SmartNotes Backend — Storage Routes
=====================================

What:  Media uploads attached to notes, data export/import, offline sync,
       and the download endpoint that serves stored files.
How:   Uploads are read fully into memory (bounded by MAX_FILE_SIZE) and handed
       to StorageService, which validates, stores and returns the public URL.

Buckets served by GET /api/files/{bucket}/{path}:
    audio-files/{note_id}/audio_{epoch_ms}.{ext}
    images/{note_id}/image_{epoch_ms}.{ext}
    exports/{user_id}/smartnotes-export-{timestamp}.{json|pdf}
"""

import logging
import mimetypes
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_current_user
from smartnotes.models.user import User
from smartnotes.schemas.common import ErrorResponse
from smartnotes.schemas.storage import (
    ExportResponse,
    ImportResponse,
    SyncRequest,
    SyncResponse,
    UploadResponse,
)
from smartnotes.services.file_service import file_service
from smartnotes.services.storage_service import storage_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Storage"])

UPLOAD_ERRORS = {
    400: {"description": "Invalid file type or size", "model": ErrorResponse},
    403: {"description": "No edit access to the note", "model": ErrorResponse},
}


@router.post(
    "/storage/audio",
    status_code=201,
    response_model=UploadResponse,
    responses=UPLOAD_ERRORS,
    summary="Upload a voice recording for a note",
)
async def upload_audio(
    note_id: UUID = Form(...),
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UploadResponse:
    try:
        content = await file.read()
        return await storage_service.upload_audio(
            db, user.id, note_id, file.filename or "recording.m4a", content, content_length=file.size
        )
    finally:
        await file.close()


@router.post(
    "/storage/images",
    status_code=201,
    response_model=UploadResponse,
    responses=UPLOAD_ERRORS,
    summary="Upload an image for a note",
)
async def upload_image(
    note_id: UUID = Form(...),
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UploadResponse:
    try:
        content = await file.read()
        return await storage_service.upload_image(
            db, user.id, note_id, file.filename or "image.jpg", content, content_length=file.size
        )
    finally:
        await file.close()


@router.post(
    "/storage/export",
    response_model=ExportResponse,
    responses={
        400: {"description": "Unsupported format", "model": ErrorResponse},
        500: {"description": "Export failed", "model": ErrorResponse},
    },
    summary="Export all notes as JSON or PDF",
)
async def export_data(
    format: str = Query(default="json", description="json or pdf"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ExportResponse:
    return await storage_service.export_user_data(db, user.id, format.lower())


@router.post(
    "/storage/import",
    status_code=201,
    response_model=ImportResponse,
    responses={400: {"description": "Not a SmartNotes export", "model": ErrorResponse}},
    summary="Import notes from a JSON export",
)
async def import_data(
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ImportResponse:
    try:
        content = await file.read()
    finally:
        await file.close()
    return await storage_service.import_user_data(db, user.id, content)


@router.post("/storage/sync", response_model=SyncResponse, summary="Reconcile offline edits")
async def sync(
    body: SyncRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SyncResponse:
    return await storage_service.sync_offline_data(db, user.id, body)


@router.get(
    "/files/{bucket}/{path:path}",
    response_class=FileResponse,
    responses={404: {"description": "File not found", "model": ErrorResponse}},
    summary="Download a stored file",
)
async def download_file(bucket: str, path: str) -> FileResponse:
    target = file_service.existing_file(bucket, path)
    media_type, _ = mimetypes.guess_type(target.name)
    return FileResponse(
        target,
        media_type=media_type or "application/octet-stream",
        filename=target.name,
    )
