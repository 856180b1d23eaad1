"""
SmartNotes Backend — Storage Service
======================================

What:  Media uploads, data export / import, and offline sync.
Why:   Everything that moves whole files or batches of notes in and out of the
       account lives here, separate from per-note CRUD.
How:   Uploads and export files go through FileService buckets. Exports are
       built in memory (JSON, or a reportlab PDF) and stored under exports/<user_id>/.

Offline Sync (last write wins):
    For each change the client made offline:
        server copy missing         → created (deleted changes are skipped)
        client updated_at newer     → applied (update or delete)
        server copy newer or equal  → skipped
    The response carries every note changed on the server since the client's
    last sync, minus the ones this request just wrote.
"""

import asyncio
import io
import json
import logging
import secrets
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from xml.sax.saxutils import escape

from pydantic import ValidationError as PydanticValidationError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes import __version__
from smartnotes.database import as_utc, utcnow
from smartnotes.exceptions import (
    ExportError,
    FileStorageError,
    PermissionDeniedError,
    ValidationError,
)
from smartnotes.models.note import Note
from smartnotes.models.user import User
from smartnotes.schemas.note import NoteCreate, NoteResponse
from smartnotes.schemas.storage import (
    ExportResponse,
    ImportResponse,
    OfflineNoteChange,
    SyncRequest,
    SyncResponse,
    UploadResponse,
)
from smartnotes.schemas.user import UserResponse
from smartnotes.services.file_service import EXPORT_BUCKET, StoredFile, file_service
from smartnotes.services.note_service import (
    EDIT_PERMISSIONS,
    OWNER,
    note_record,
    note_service,
)
from smartnotes.services.realtime import realtime_hub
from smartnotes.services.user_service import user_service

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "pdf")

# Note columns an offline change may overwrite
SYNCED_FIELDS = (
    "title", "content", "type", "folder", "tags", "summary", "keywords", "audio_uri", "image_uri",
)


def build_pdf(owner_name: str, notes: List[Dict[str, Any]]) -> bytes:
    """Render the notes as a simple A4 document: one heading and body per note."""
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title="SmartNotes export",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ExportTitle", parent=styles["Heading1"], fontSize=18, spaceAfter=4)
    note_style = ParagraphStyle("NoteTitle", parent=styles["Heading2"], fontSize=14, spaceAfter=4)
    meta_style = ParagraphStyle(
        "NoteMeta", parent=styles["BodyText"], fontSize=8.5, textColor=colors.HexColor("#666666")
    )
    body = ParagraphStyle(
        "Body",
        parent=styles["BodyText"],
        fontSize=10.5,
        leading=13,
        splitLongWords=True,
    )

    flow: List[Any] = [
        Paragraph(escape(f"SmartNotes export for {owner_name}"), title_style),
        Paragraph(escape(f"{len(notes)} notes, exported {utcnow():%Y-%m-%d %H:%M} UTC"), meta_style),
        Spacer(1, 10),
    ]
    for note in notes:
        flow.append(Paragraph(escape(note["title"]), note_style))
        meta = f"{note['type']} · updated {note['updated_at'][:10]}"
        if note.get("tags"):
            meta += " · " + " ".join(f"#{tag}" for tag in note["tags"])
        flow.append(Paragraph(escape(meta), meta_style))
        if note.get("summary"):
            flow.append(Paragraph(f"<i>{escape(note['summary'])}</i>", body))
        for paragraph in (note.get("content") or "").split("\n"):
            if paragraph.strip():
                flow.append(Paragraph(escape(paragraph), body))
        flow.append(Spacer(1, 8))

    doc.build(flow)
    return buf.getvalue()


class StorageService:

    # ── Uploads ───────────────────────────────────────────────────────────

    async def _upload(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        kind: str,
        note_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int],
    ) -> UploadResponse:
        # The note may not exist yet (media attached while composing). When it
        # does, the uploader needs edit access.
        note = await db.get(Note, note_id)
        if note is not None:
            permission = await note_service.get_permission(db, user_id, note)
            if permission not in EDIT_PERMISSIONS:
                raise PermissionDeniedError(
                    message="You need edit access to attach files to this note",
                    context={"note_id": str(note_id)},
                )

        stored: StoredFile = await file_service.validate_and_store(
            kind, filename, content, prefix=str(note_id), content_length=content_length
        )
        return UploadResponse(url=stored.url, path=stored.path, bucket=stored.bucket, size=stored.size)

    async def upload_audio(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> UploadResponse:
        return await self._upload(db, user_id, "audio", note_id, filename, content, content_length)

    async def upload_image(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> UploadResponse:
        return await self._upload(db, user_id, "image", note_id, filename, content, content_length)

    # ── Export / Import ───────────────────────────────────────────────────

    async def export_user_data(self, db: AsyncSession, user_id: uuid.UUID, fmt: str) -> ExportResponse:
        """
        Write a JSON or PDF export and return its download URL.

        Raises:
            ValidationError: unsupported format
            ExportError: building or storing the file failed
        """
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(
                message=f"Unsupported export format '{fmt}'. Use one of: {', '.join(EXPORT_FORMATS)}",
                field="format",
            )

        user = await db.get(User, user_id)
        notes = [note_record(n) for n in await note_service.get_all_notes(db, user_id)]
        user_settings = await user_service.get_user_settings(db, user_id)

        try:
            if fmt == "json":
                document = {
                    "version": __version__,
                    "exported_at": utcnow().isoformat(),
                    "user": UserResponse.model_validate(user).model_dump(mode="json") if user else None,
                    "settings": user_settings.model_dump(),
                    "notes": notes,
                }
                payload = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
            else:
                payload = await asyncio.to_thread(build_pdf, user.name if user else "User", notes)

            object_path = (
                f"{user_id}/smartnotes-export-{utcnow():%Y%m%dT%H%M%S}-{secrets.token_urlsafe(16)}.{fmt}"
            )
            stored = await file_service.store_object(EXPORT_BUCKET, object_path, payload)
        except FileStorageError as e:
            raise ExportError(context={"format": fmt}) from e
        except Exception as e:
            logger.error("Export generation failed (%s): %s", fmt, str(e), exc_info=True)
            raise ExportError(context={"format": fmt, "error_type": type(e).__name__}) from e

        logger.info("Export written for %s: %s (%d notes)", user_id, stored.path, len(notes))
        return ExportResponse(download_url=stored.url, format=fmt, note_count=len(notes))

    async def import_user_data(self, db: AsyncSession, user_id: uuid.UUID, content: bytes) -> ImportResponse:
        """
        Import the `notes` array of an export file as new notes.

        The whole file is validated before anything is written.
        """
        try:
            document = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ValidationError(message="Import file is not valid JSON", field="file") from e

        if not isinstance(document, dict) or not isinstance(document.get("notes"), list):
            raise ValidationError(
                message="Import file must be a JSON object with a 'notes' array",
                field="file",
            )

        drafts: List[NoteCreate] = []
        for index, item in enumerate(document["notes"]):
            try:
                drafts.append(NoteCreate.model_validate(item))
            except PydanticValidationError as e:
                raise ValidationError(
                    message=f"Note #{index + 1} in the import file is invalid",
                    field="file",
                    context={"index": index, "errors": e.error_count()},
                ) from e

        for draft in drafts:
            await note_service.create_note(db, user_id, draft)
        logger.info("Imported %d notes for %s", len(drafts), user_id)
        return ImportResponse(imported=len(drafts))

    # ── Offline sync ──────────────────────────────────────────────────────

    async def sync_offline_data(self, db: AsyncSession, user_id: uuid.UUID, request: SyncRequest) -> SyncResponse:
        applied = 0
        skipped = 0
        touched: Set[uuid.UUID] = set()

        for change in request.changes:
            note_id = await self._apply_change(db, user_id, change)
            if note_id is None:
                skipped += 1
            else:
                applied += 1
                touched.add(note_id)

        query = select(Note).where(Note.user_id == user_id).order_by(Note.updated_at.desc())
        if request.last_synced_at is not None:
            query = query.where(Note.updated_at > as_utc(request.last_synced_at))
        result = await db.execute(query)
        server_changes = [
            NoteResponse.model_validate(note)
            for note in result.scalars().all()
            if note.id not in touched
        ]

        logger.info(
            "Offline sync for %s: %d applied, %d skipped, %d server changes",
            user_id, applied, skipped, len(server_changes),
        )
        return SyncResponse(
            applied=applied,
            skipped=skipped,
            server_changes=server_changes,
            synced_at=utcnow(),
        )

    async def _apply_change(
        self, db: AsyncSession, user_id: uuid.UUID, change: OfflineNoteChange
    ) -> Optional[uuid.UUID]:
        """Returns the note ID when the change was applied, None when skipped."""
        client_time: datetime = as_utc(change.updated_at)
        note = await db.get(Note, change.id) if change.id is not None else None

        if note is None:
            if change.deleted:
                return None
            draft = NoteCreate.model_validate(change.model_dump(include=set(SYNCED_FIELDS)))
            created = await note_service.create_note(db, user_id, draft, note_id=change.id)
            created.updated_at = client_time
            await db.flush()
            return created.id

        permission = await note_service.get_permission(db, user_id, note)
        if permission not in EDIT_PERMISSIONS:
            return None
        if client_time <= as_utc(note.updated_at):
            return None

        if change.deleted:
            if permission != OWNER:
                return None
            await note_service.delete_note(db, user_id, note.id)
            return note.id

        if change.title != note.title or change.content != note.content:
            note.embedding = None
        for field in SYNCED_FIELDS:
            value = getattr(change, field)
            setattr(note, field, list(value) if isinstance(value, list) else value)
        note.updated_at = client_time
        await db.flush()
        realtime_hub.publish_on_commit(db, note.id, "UPDATE", note_record(note), user_id=user_id)
        return note.id


storage_service = StorageService()
