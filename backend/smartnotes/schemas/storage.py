"""SmartNotes Backend — upload, export/import and offline sync schemas."""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from smartnotes.schemas.note import NoteCreate, NoteResponse

ExportFormat = Literal["json", "pdf"]


class UploadResponse(BaseModel):
    url: str = Field(description="Public URL of the stored file")
    path: str = Field(description="Object path inside its bucket")
    bucket: str
    size: int


class ExportResponse(BaseModel):
    download_url: str
    format: ExportFormat
    note_count: int


class ImportResponse(BaseModel):
    imported: int


class OfflineNoteChange(NoteCreate):
    """
    One note edited while the device was offline.

    id is None for notes created offline. `deleted=True` removes the note
    when the offline edit is newer than the server copy.
    """
    id: Optional[uuid.UUID] = None
    updated_at: datetime
    deleted: bool = False


class SyncRequest(BaseModel):
    timestamp: datetime = Field(description="Client clock when sync started")
    last_synced_at: Optional[datetime] = Field(
        default=None,
        description="When this device last synced. Null returns every note.",
    )
    changes: List[OfflineNoteChange] = Field(default_factory=list)


class SyncResponse(BaseModel):
    applied: int
    skipped: int
    server_changes: List[NoteResponse]
    synced_at: datetime
