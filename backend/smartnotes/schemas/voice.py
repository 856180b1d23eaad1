"""SmartNotes Backend — voice and text-AI schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field

from smartnotes.schemas.note import NoteResponse


class TextRequest(BaseModel):
    text: str = Field(min_length=1, max_length=200_000)


class TranscriptionResponse(BaseModel):
    text: str
    confidence: float = Field(ge=0.0, le=1.0)


class SummaryResponse(BaseModel):
    summary: str


class KeywordsResponse(BaseModel):
    keywords: List[str]


class ActionItemsResponse(BaseModel):
    actions: List[str]


class VoiceProcessResponse(BaseModel):
    """
    Result of POST /api/voice/process: everything the recording screen shows,
    plus the saved note when the client asked for one.
    """
    audio_url: str
    transcription: TranscriptionResponse
    summary: str
    keywords: List[str]
    note: Optional[NoteResponse] = None
