"""
SmartNotes Backend — Note Request/Response Schemas
====================================================

What:  Pydantic models defining the notes API contract.
Why:   Strict input validation, automatic serialization, and OpenAPI docs.

Schemas are separate from SQLAlchemy models: the API never exposes internal
columns such as the cached search embedding.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

NoteType = Literal["text", "voice", "image"]


def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    """Strips whitespace and a leading '#', drops blanks and duplicates, keeps order."""
    if tags is None:
        return None
    seen = []
    for tag in tags:
        cleaned = tag.strip().lstrip("#").strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class NoteCreate(BaseModel):
    """Body of POST /api/notes. Also used by voice processing and import."""
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(default="")
    type: NoteType = Field(default="text")
    folder: Optional[str] = Field(default=None, max_length=255)
    tags: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    audio_uri: Optional[str] = None
    image_uri: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title must not be blank")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v) or []


class NoteUpdate(BaseModel):
    """
    Body of PATCH /api/notes/{id}. Only fields that are explicitly sent are applied
    (`model_dump(exclude_unset=True)`), so clients can clear a field by sending null.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = None
    type: Optional[NoteType] = None
    folder: Optional[str] = Field(default=None, max_length=255)
    tags: Optional[List[str]] = None
    summary: Optional[str] = None
    keywords: Optional[List[str]] = None
    audio_uri: Optional[str] = None
    image_uri: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Title must not be blank")
        return v.strip() if v is not None else v

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_tags(v)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """Full representation of a note as the app renders it."""
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    content: str
    type: str
    folder: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    audio_uri: Optional[str] = None
    image_uri: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class NoteStats(BaseModel):
    """
    Dashboard counters.

    time_spent is an estimate in minutes (half a minute per written word).
    """
    total_notes: int = 0
    words_written: int = 0
    time_spent: int = 0
    ai_summaries: int = 0


class AIInsight(BaseModel):
    id: str
    type: Literal["trend", "suggestion"]
    title: str
    description: str
    action: str


class ShareLinkResponse(BaseModel):
    url: str = Field(description="Public read-only link to the note")
    share_id: str


class SharedNoteView(BaseModel):
    """What an anonymous visitor of a share link sees."""
    id: uuid.UUID
    title: str
    content: str
    type: str
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    updated_at: datetime
    permission: str = "view"

    model_config = {"from_attributes": True}
