"""
SmartNotes Backend — Storage Service Tests
============================================

What:  Uploads, JSON/PDF export, import, and last-write-wins offline sync.
How:   Files land in the test STORAGE_ROOT through the file_service singleton.
       MIME sniffing is patched for uploads.
"""

import json
from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import select

from smartnotes.database import utcnow
from smartnotes.exceptions import PermissionDeniedError, ValidationError
from smartnotes.models.collaboration import NoteCollaborator
from smartnotes.models.note import Note
from smartnotes.schemas.storage import OfflineNoteChange, SyncRequest
from smartnotes.services.file_service import EXPORT_BUCKET, file_service
from smartnotes.services.storage_service import StorageService, build_pdf


def export_path(download_url: str) -> str:
    """Object path inside the exports bucket from a public download URL."""
    return download_url.split(f"/api/files/{EXPORT_BUCKET}/", 1)[1]


class TestUploads:

    @pytest.fixture(autouse=True)
    def service(self):
        self.service = StorageService()
        with patch.object(file_service, "detect_mime_type", return_value="image/jpeg"):
            yield

    @pytest.mark.asyncio
    async def test_upload_for_note_not_created_yet(self, db_session, make_user, sample_image_bytes):
        owner = await make_user()
        note_id = uuid4()

        result = await self.service.upload_image(db_session, owner.id, note_id, "photo.jpg", sample_image_bytes)

        assert result.bucket == "images"
        assert result.path.startswith(f"{note_id}/image_")
        assert result.size == len(sample_image_bytes)

    @pytest.mark.asyncio
    async def test_viewer_cannot_attach(self, db_session, make_user, make_note, sample_image_bytes):
        owner, viewer = await make_user(), await make_user()
        note = await make_note(owner)
        db_session.add(NoteCollaborator(note_id=note.id, user_id=viewer.id, permission="view"))
        await db_session.flush()

        with pytest.raises(PermissionDeniedError):
            await self.service.upload_image(db_session, viewer.id, note.id, "photo.jpg", sample_image_bytes)

    @pytest.mark.asyncio
    async def test_stranger_cannot_attach(self, db_session, make_user, make_note, sample_image_bytes):
        owner, stranger = await make_user(), await make_user()
        note = await make_note(owner)
        with pytest.raises(PermissionDeniedError):
            await self.service.upload_image(db_session, stranger.id, note.id, "photo.jpg", sample_image_bytes)


class TestExportImport:

    def setup_method(self):
        self.service = StorageService()

    @pytest.mark.asyncio
    async def test_json_export(self, db_session, make_user, make_note):
        owner = await make_user(name="Ada")
        await make_note(owner, title="First", content="hello", tags=["a"])
        await make_note(owner, title="Second")

        result = await self.service.export_user_data(db_session, owner.id, "json")

        assert result.format == "json"
        assert result.note_count == 2
        path = file_service.existing_file(EXPORT_BUCKET, export_path(result.download_url))
        document = json.loads(path.read_text(encoding="utf-8"))
        assert set(document) == {"version", "exported_at", "user", "settings", "notes"}
        assert document["user"]["name"] == "Ada"
        assert document["settings"]["dark_mode"] is False
        assert {n["title"] for n in document["notes"]} == {"First", "Second"}
        assert export_path(result.download_url).startswith(f"{owner.id}/smartnotes-export-")

    @pytest.mark.asyncio
    async def test_pdf_export(self, db_session, make_user, make_note):
        owner = await make_user()
        await make_note(owner, title="Plan <draft>", content="line one\nline & two", summary="short")

        result = await self.service.export_user_data(db_session, owner.id, "pdf")

        path = file_service.existing_file(EXPORT_BUCKET, export_path(result.download_url))
        assert path.suffix == ".pdf"
        assert path.read_bytes().startswith(b"%PDF")

    def test_build_pdf_without_notes(self):
        assert build_pdf("Nobody", []).startswith(b"%PDF")

    @pytest.mark.asyncio
    async def test_unknown_export_format(self, db_session, make_user):
        owner = await make_user()
        with pytest.raises(ValidationError):
            await self.service.export_user_data(db_session, owner.id, "docx")

    @pytest.mark.asyncio
    async def test_import_creates_notes(self, db_session, make_user):
        owner = await make_user()
        payload = json.dumps({
            "version": "1.0.0",
            "notes": [
                {"title": "Imported", "content": "body", "tags": ["#x"], "id": "ignored"},
                {"title": "Voice memo", "type": "voice"},
            ],
        }).encode("utf-8")

        result = await self.service.import_user_data(db_session, owner.id, payload)

        assert result.imported == 2
        notes = (await db_session.execute(select(Note).where(Note.user_id == owner.id))).scalars().all()
        assert {(n.title, n.type) for n in notes} == {("Imported", "text"), ("Voice memo", "voice")}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"notes": "nope"}', b"\xff\xfe"])
    async def test_import_rejects_bad_files(self, db_session, make_user, payload):
        owner = await make_user()
        with pytest.raises(ValidationError):
            await self.service.import_user_data(db_session, owner.id, payload)

    @pytest.mark.asyncio
    async def test_import_is_all_or_nothing(self, db_session, make_user):
        owner = await make_user()
        payload = json.dumps({"notes": [{"title": "ok"}, {"title": ""}]}).encode("utf-8")

        with pytest.raises(ValidationError) as exc_info:
            await self.service.import_user_data(db_session, owner.id, payload)

        assert exc_info.value.context["index"] == 1
        assert (await db_session.execute(select(Note))).scalars().all() == []


class TestOfflineSync:

    def setup_method(self):
        self.service = StorageService()

    @pytest.mark.asyncio
    async def test_newer_client_change_wins(self, db_session, make_user, make_note):
        owner = await make_user()
        now = utcnow()
        note = await make_note(owner, title="Server", updated_at=now - timedelta(hours=1))

        request = SyncRequest(
            timestamp=now,
            changes=[OfflineNoteChange(id=note.id, title="Client", content="offline", updated_at=now)],
        )
        result = await self.service.sync_offline_data(db_session, owner.id, request)

        assert (result.applied, result.skipped) == (1, 0)
        assert note.title == "Client"
        assert note.content == "offline"

    @pytest.mark.asyncio
    async def test_older_client_change_skipped(self, db_session, make_user, make_note):
        owner = await make_user()
        now = utcnow()
        note = await make_note(owner, title="Server", updated_at=now)

        request = SyncRequest(
            timestamp=now,
            changes=[OfflineNoteChange(id=note.id, title="Stale", updated_at=now - timedelta(minutes=5))],
        )
        result = await self.service.sync_offline_data(db_session, owner.id, request)

        assert (result.applied, result.skipped) == (0, 1)
        assert note.title == "Server"

    @pytest.mark.asyncio
    async def test_offline_created_note(self, db_session, make_user):
        owner = await make_user()
        now = utcnow()
        new_id = uuid4()

        request = SyncRequest(
            timestamp=now,
            changes=[
                OfflineNoteChange(id=new_id, title="Made offline", updated_at=now),
                OfflineNoteChange(title="No id yet", updated_at=now),
                OfflineNoteChange(id=uuid4(), title="Created then deleted", updated_at=now, deleted=True),
            ],
        )
        result = await self.service.sync_offline_data(db_session, owner.id, request)

        assert (result.applied, result.skipped) == (2, 1)
        assert await db_session.get(Note, new_id) is not None
        assert result.server_changes == []

    @pytest.mark.asyncio
    async def test_delete_is_owner_only(self, db_session, make_user, make_note):
        owner, editor = await make_user(), await make_user()
        now = utcnow()
        note = await make_note(owner, updated_at=now - timedelta(hours=1))
        db_session.add(NoteCollaborator(note_id=note.id, user_id=editor.id, permission="edit"))
        await db_session.flush()

        change = OfflineNoteChange(id=note.id, title=note.title, updated_at=now, deleted=True)
        editor_result = await self.service.sync_offline_data(
            db_session, editor.id, SyncRequest(timestamp=now, changes=[change])
        )
        assert editor_result.skipped == 1

        owner_result = await self.service.sync_offline_data(
            db_session, owner.id, SyncRequest(timestamp=now, changes=[change])
        )
        assert owner_result.applied == 1
        assert (await db_session.execute(select(Note))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_server_changes_since_last_sync(self, db_session, make_user, make_note):
        owner = await make_user()
        now = utcnow()
        await make_note(owner, title="Old", updated_at=now - timedelta(days=2))
        await make_note(owner, title="Fresh", updated_at=now - timedelta(minutes=1))
        touched = await make_note(owner, title="Touched", updated_at=now - timedelta(hours=2))

        request = SyncRequest(
            timestamp=now,
            last_synced_at=now - timedelta(days=1),
            changes=[OfflineNoteChange(id=touched.id, title="Touched v2", updated_at=now)],
        )
        result = await self.service.sync_offline_data(db_session, owner.id, request)

        assert [n.title for n in result.server_changes] == ["Fresh"]
        assert result.synced_at >= now
