"""SmartNotes Backend — collaboration schemas."""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Permission = Literal["view", "edit", "admin"]
SharePermission = Literal["view", "edit"]


class OwnerInfo(BaseModel):
    id: uuid.UUID
    name: str
    email: str


class CollaboratorInfo(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    permission: Permission


class SharedNoteResponse(BaseModel):
    """A note someone else owns that the caller can open."""
    id: uuid.UUID
    title: str
    content: str
    owner: OwnerInfo
    collaborators: List[CollaboratorInfo] = Field(default_factory=list)
    permission: Permission
    updated_at: datetime


class CollaboratorSummary(BaseModel):
    """
    A person the caller works with.

    last_active is "Never" for users who have not opened the app since
    profiles started tracking activity.
    """
    id: uuid.UUID
    name: str
    email: str
    shared_notes: int
    last_active: str


class ShareRequest(BaseModel):
    email: EmailStr
    permission: SharePermission = "view"


class InviteRequest(BaseModel):
    email: EmailStr
    note_id: Optional[uuid.UUID] = None
    permission: SharePermission = "view"


class ShareResult(BaseModel):
    """`invited` is true when the email had no account and an invitation was stored."""
    invited: bool
    email: str
    permission: SharePermission


class PermissionUpdate(BaseModel):
    permission: Permission


class RealtimeEditRequest(BaseModel):
    content: str
    cursor: int = Field(ge=0)


class RealtimeEditResponse(BaseModel):
    saved: bool
    updated_at: Optional[datetime] = None


class RealtimeEvent(BaseModel):
    """
    Change notification pushed over /api/collaboration/notes/{id}/live.

    `record` is the note as JSON after the change (only its id for DELETE).
    """
    event: Literal["INSERT", "UPDATE", "DELETE"]
    table: str = "notes"
    record: dict
    cursor: Optional[int] = None
    user_id: Optional[uuid.UUID] = None
    timestamp: datetime
