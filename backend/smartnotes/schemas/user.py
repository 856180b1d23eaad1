"""SmartNotes Backend — auth, profile and settings schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


# ── Auth ──────────────────────────────────────────────────────────────────

class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=255)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(max_length=128)


class SessionResponse(BaseModel):
    """Returned by sign-in. The token goes into `Authorization: Bearer <token>`."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user_id: uuid.UUID


# ── Profile ───────────────────────────────────────────────────────────────

class UserResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    avatar_url: Optional[str] = None
    last_active: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserProfileUpdate(BaseModel):
    """Email is owned by the credential record and cannot be changed here."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    avatar_url: Optional[str] = Field(default=None, max_length=1024)


class UserStats(BaseModel):
    total_notes: int = 0
    words_written: int = 0
    time_spent: int = 0
    ai_summaries: int = 0
    voice_notes: int = 0
    collaborations: int = 0


class UserSettingsSchema(BaseModel):
    """App preferences. Defaults are what a brand-new account starts with."""
    dark_mode: bool = False
    notifications: bool = True
    auto_sync: bool = True
    voice_transcription: bool = True
    ai_suggestions: bool = True
    offline_mode: bool = False

    model_config = {"from_attributes": True}
