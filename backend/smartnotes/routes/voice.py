"""
SmartNotes Backend — Voice & Text AI Routes
=============================================

What:  Transcription of uploaded recordings and the text AI operations
       (summary, keywords, action items), plus the one-shot recording pipeline.
Why:   The recording screen and the note editor call these directly.

AI failures never surface here: VoiceService returns fallback output instead.
Upload validation errors (type, size) still return 400.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_current_user
from smartnotes.models.user import User
from smartnotes.schemas.common import ErrorResponse
from smartnotes.schemas.voice import (
    ActionItemsResponse,
    KeywordsResponse,
    SummaryResponse,
    TextRequest,
    TranscriptionResponse,
    VoiceProcessResponse,
)
from smartnotes.services.file_service import AUDIO_BUCKET, file_service
from smartnotes.services.voice_service import voice_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/voice", tags=["Voice"])


@router.post(
    "/transcribe",
    response_model=TranscriptionResponse,
    responses={400: {"description": "Invalid audio file", "model": ErrorResponse}},
    summary="Transcribe a recording",
)
async def transcribe(
    file: UploadFile = File(..., description="Audio recording (m4a, mp3, wav, aac, ogg, webm)"),
    user: User = Depends(get_current_user),
) -> TranscriptionResponse:
    prefix = str(uuid.uuid4())
    try:
        content = await file.read()
        logger.info("Transcription request: %s, %d bytes", file.filename or "unknown", len(content))
        stored = await file_service.validate_and_store(
            "audio",
            file.filename or "recording.m4a",
            content,
            prefix=prefix,
            content_length=file.size,
        )
    finally:
        await file.close()
    try:
        return await voice_service.transcribe_audio(stored.absolute_path)
    finally:
        # Transcribe-only uploads are not kept
        file_service.remove_tree(AUDIO_BUCKET, prefix)


@router.post("/summary", response_model=SummaryResponse, summary="Summarize text")
async def summary(body: TextRequest, user: User = Depends(get_current_user)) -> SummaryResponse:
    return SummaryResponse(summary=await voice_service.generate_summary(body.text))


@router.post("/keywords", response_model=KeywordsResponse, summary="Extract keywords")
async def keywords(body: TextRequest, user: User = Depends(get_current_user)) -> KeywordsResponse:
    return KeywordsResponse(keywords=await voice_service.extract_keywords(body.text))


@router.post("/actions", response_model=ActionItemsResponse, summary="Extract action items")
async def action_items(body: TextRequest, user: User = Depends(get_current_user)) -> ActionItemsResponse:
    return ActionItemsResponse(actions=await voice_service.generate_action_items(body.text))


@router.post(
    "/process",
    status_code=201,
    response_model=VoiceProcessResponse,
    responses={400: {"description": "Invalid audio file", "model": ErrorResponse}},
    summary="Upload, transcribe, summarize and optionally save a recording",
)
async def process_recording(
    file: UploadFile = File(...),
    create_note: bool = Form(default=False),
    title: Optional[str] = Form(default=None, max_length=255),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> VoiceProcessResponse:
    try:
        content = await file.read()
        return await voice_service.process_recording(
            db,
            user.id,
            file.filename or "recording.m4a",
            content,
            content_length=file.size,
            create_note=create_note,
            title=title.strip() if title and title.strip() else None,
        )
    finally:
        await file.close()
