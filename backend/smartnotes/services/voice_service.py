"""
SmartNotes Backend — Voice & Text AI Service
==============================================

What:  The AI operations the app exposes (transcription, summary, keywords,
       action items) plus the full recording pipeline.
Why:   The app must stay usable when the model provider is down or unconfigured,
       so every operation has a deterministic fallback.
How:   Delegates to an LLMService (Gemini by default). LLMServiceError and
       CircuitBreakerOpenError are caught here and replaced with fallback output.

Recording Pipeline (process_recording):
    ┌──────────┐    ┌──────────────┐    ┌─────────────────────┐    ┌────────────┐
    │  Upload  │───▶│  Transcribe  │───▶│ Summary ‖ Keywords  │───▶│ Voice note │
    │ (audio)  │    │              │    │    (concurrent)     │    │ (optional) │
    └──────────┘    └──────────────┘    └─────────────────────┘    └────────────┘
"""

import asyncio
import logging
import re
import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import utcnow
from smartnotes.exceptions import CircuitBreakerOpenError, LLMServiceError, SmartNotesError
from smartnotes.schemas.note import NoteCreate, NoteResponse
from smartnotes.schemas.voice import TranscriptionResponse, VoiceProcessResponse
from smartnotes.services.file_service import file_service
from smartnotes.services.gemini_service import gemini_service
from smartnotes.services.llm_base import LLMService
from smartnotes.services.note_service import note_service

logger = logging.getLogger(__name__)

AI_FAILURES = (LLMServiceError, CircuitBreakerOpenError)

MOCK_TRANSCRIPTION = (
    "This is a mock transcription. Voice transcription would work with proper API setup."
)
MOCK_TRANSCRIPTION_CONFIDENCE = 0.8

ACTION_MARKERS = ("need to", "should", "must", "remember to", "todo")


# ── Fallbacks ─────────────────────────────────────────────────────────────

def fallback_summary(text: str) -> str:
    return f"Summary: {text[:100]}..." if len(text) > 100 else text


def fallback_keywords(text: str) -> List[str]:
    """First five space-separated words longer than four characters, lowercased."""
    words = [word for word in text.split(" ") if len(word) > 4][:5]
    return [re.sub(r"[^\w]", "", word.lower()) for word in words]


def fallback_action_items(text: str) -> List[str]:
    """Up to three sentences that read like a task."""
    actions = []
    for sentence in text.split("."):
        lowered = sentence.lower()
        if any(marker in lowered for marker in ACTION_MARKERS):
            actions.append(sentence.strip())
    return actions[:3]


class VoiceService:
    """
    AI façade used by the voice screen and by note processing.

    Only provider failures are absorbed; storage and database errors propagate.
    """

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or gemini_service

    async def transcribe_audio(self, audio_path: str) -> TranscriptionResponse:
        try:
            text, confidence = await self.llm.transcribe_audio(audio_path)
        except AI_FAILURES as e:
            logger.warning("Transcription unavailable, using fallback: %s", e.message)
            text, confidence = MOCK_TRANSCRIPTION, MOCK_TRANSCRIPTION_CONFIDENCE
        return TranscriptionResponse(text=text, confidence=confidence)

    async def generate_summary(self, text: str) -> str:
        try:
            return await self.llm.summarize(text)
        except AI_FAILURES as e:
            logger.warning("Summary unavailable, using fallback: %s", e.message)
            return fallback_summary(text)

    async def extract_keywords(self, text: str) -> List[str]:
        try:
            return await self.llm.extract_keywords(text)
        except AI_FAILURES as e:
            logger.warning("Keyword extraction unavailable, using fallback: %s", e.message)
            return fallback_keywords(text)

    async def generate_action_items(self, text: str) -> List[str]:
        try:
            return await self.llm.extract_action_items(text)
        except AI_FAILURES as e:
            logger.warning("Action items unavailable, using fallback: %s", e.message)
            return fallback_action_items(text)

    async def process_recording(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
        create_note: bool = False,
        title: Optional[str] = None,
    ) -> VoiceProcessResponse:
        """
        Store a recording, transcribe it, summarize it and pick keywords.

        The audio object path is keyed by the ID the voice note will get, so the
        file and the note line up even when the note is created later.

        Raises:
            ValidationError: rejected audio file
            FileStorageError / DatabaseError: storage or persistence failures
        """
        note_id = uuid.uuid4()
        stored = await file_service.validate_and_store(
            "audio", filename, content, prefix=str(note_id), content_length=content_length
        )

        try:
            transcription = await self.transcribe_audio(stored.absolute_path)
            summary, keywords = await asyncio.gather(
                self.generate_summary(transcription.text),
                self.extract_keywords(transcription.text),
            )

            note_response = None
            if create_note:
                data = NoteCreate(
                    title=title or f"Voice Note - {utcnow().strftime('%Y-%m-%d')}",
                    content=transcription.text,
                    type="voice",
                    summary=summary or None,
                    keywords=keywords,
                    audio_uri=stored.url,
                )
                note = await note_service.create_note(db, user_id, data, note_id=note_id)
                note_response = NoteResponse.model_validate(note)
        except SmartNotesError:
            await file_service.cleanup_file(stored.absolute_path)
            raise

        logger.info(
            "Recording processed: %s (%d chars transcribed, note=%s)",
            stored.path,
            len(transcription.text),
            note_response.id if note_response else None,
        )
        return VoiceProcessResponse(
            audio_url=stored.url,
            transcription=transcription,
            summary=summary,
            keywords=keywords,
            note=note_response,
        )


voice_service = VoiceService()
