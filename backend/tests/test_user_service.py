"""
SmartNotes Backend — User Service Tests
=========================================

Profiles, settings, statistics and account deletion against in-memory SQLite.
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import select

from smartnotes.exceptions import DatabaseError, NotFoundError
from smartnotes.models.collaboration import CollaborationInvite, NoteCollaborator
from smartnotes.models.note import Note
from smartnotes.models.user import AuthSession, AuthUser, User, UserSettings
from smartnotes.schemas.user import UserProfileUpdate, UserSettingsSchema
from smartnotes.services.auth_service import AuthService
from smartnotes.services.file_service import AUDIO_BUCKET, EXPORT_BUCKET, IMAGE_BUCKET, file_service
from smartnotes.services.note_service import note_service
from smartnotes.services.user_service import UserService, default_display_name


class TestDisplayName:

    def test_uses_full_name(self):
        assert default_display_name(AuthUser(email="a@b.com", full_name="  Ada L ")) == "Ada L"

    def test_falls_back_to_email_local_part(self):
        assert default_display_name(AuthUser(email="grace@navy.mil", full_name="  ")) == "grace"

    def test_last_resort(self):
        assert default_display_name(AuthUser(email="", full_name=None)) == "User"


class TestProfiles:

    def setup_method(self):
        self.service = UserService()
        self.auth = AuthService()

    @pytest.mark.asyncio
    async def test_profile_created_on_first_access(self, db_session):
        identity = await self.auth.sign_up(db_session, "ada@example.com", "password123", "Ada")

        user = await self.service.get_current_user(db_session, identity)

        assert user.id == identity.id
        assert user.name == "Ada"
        assert user.email == "ada@example.com"
        assert user.last_active is not None

    @pytest.mark.asyncio
    async def test_existing_profile_is_reused(self, db_session, make_user):
        user = await make_user(name="Existing")
        identity = await db_session.get(AuthUser, user.id)

        again = await self.service.get_current_user(db_session, identity)
        assert again is user
        assert again.name == "Existing"

    @pytest.mark.asyncio
    async def test_pending_invitations_claimed(self, db_session, make_user, make_note):
        owner = await make_user()
        note = await make_note(owner)
        db_session.add(
            CollaborationInvite(inviter_id=owner.id, email="newbie@example.com", note_id=note.id, permission="edit")
        )
        await db_session.flush()

        identity = await self.auth.sign_up(db_session, "Newbie@example.com", "password123")
        user = await self.service.get_current_user(db_session, identity)

        rows = (await db_session.execute(select(NoteCollaborator))).scalars().all()
        assert [(r.note_id, r.user_id, r.permission) for r in rows] == [(note.id, user.id, "edit")]
        invite = (await db_session.execute(select(CollaborationInvite))).scalar_one()
        assert invite.accepted_at is not None

    @pytest.mark.asyncio
    async def test_update_profile(self, db_session, make_user):
        user = await make_user(name="Old")
        updated = await self.service.update_profile(
            db_session, user.id, UserProfileUpdate(avatar_url="https://img.example.com/a.png")
        )
        assert updated.name == "Old"
        assert updated.avatar_url == "https://img.example.com/a.png"

    @pytest.mark.asyncio
    async def test_update_profile_skips_empty_name(self, db_session, make_user):
        user = await make_user(name="Keep me")
        await self.service.update_profile(db_session, user.id, {"name": ""})
        assert user.name == "Keep me"

    @pytest.mark.asyncio
    async def test_update_missing_profile(self, db_session):
        with pytest.raises(NotFoundError):
            await self.service.update_profile(db_session, uuid4(), {"name": "x"})


class TestSettingsAndStats:

    def setup_method(self):
        self.service = UserService()

    @pytest.mark.asyncio
    async def test_defaults_are_persisted(self, db_session, make_user):
        user = await make_user()

        current = await self.service.get_user_settings(db_session, user.id)

        assert current == UserSettingsSchema()
        assert await db_session.get(UserSettings, user.id) is not None

    @pytest.mark.asyncio
    async def test_update_settings_upserts(self, db_session, make_user):
        user = await make_user()
        await self.service.update_settings(db_session, user.id, UserSettingsSchema(dark_mode=True))
        await self.service.update_settings(
            db_session, user.id, UserSettingsSchema(dark_mode=True, notifications=False)
        )

        current = await self.service.get_user_settings(db_session, user.id)
        assert current.dark_mode is True
        assert current.notifications is False
        rows = (await db_session.execute(select(UserSettings))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_stats(self, db_session, make_user, make_note):
        user, friend = await make_user(), await make_user()
        await make_note(user, content="one two", type="voice", summary="s")
        await make_note(user, content="three", type="text")
        shared = await make_note(friend)
        db_session.add(NoteCollaborator(note_id=shared.id, user_id=user.id, permission="view"))
        await db_session.flush()

        stats = await self.service.get_user_stats(db_session, user.id)

        assert stats.total_notes == 2
        assert stats.words_written == 3
        assert stats.ai_summaries == 1
        assert stats.voice_notes == 1
        assert stats.collaborations == 1

    @pytest.mark.asyncio
    async def test_stats_are_zero_on_failure(self, db_session, make_user):
        user = await make_user()
        failing = AsyncMock(side_effect=DatabaseError(message="down"))
        with patch.object(note_service, "get_user_stats", failing):
            stats = await self.service.get_user_stats(db_session, user.id)
        assert stats.total_notes == 0
        assert stats.collaborations == 0


class TestAccountDeletion:

    def setup_method(self):
        self.service = UserService()
        self.auth = AuthService()

    @pytest.mark.asyncio
    async def test_delete_all_user_data(self, db_session, make_note):
        identity = await self.auth.sign_up(db_session, "leaving@example.com", "password123")
        await self.auth.sign_in(db_session, "leaving@example.com", "password123")
        user = await self.service.get_current_user(db_session, identity)
        other_identity = await self.auth.sign_up(db_session, "staying@example.com", "password123")
        other = await self.service.get_current_user(db_session, other_identity)

        mine = await make_note(user, title="mine")
        theirs = await make_note(other, title="theirs")
        db_session.add(NoteCollaborator(note_id=mine.id, user_id=other.id, permission="edit"))
        db_session.add(NoteCollaborator(note_id=theirs.id, user_id=user.id, permission="view"))
        await self.service.get_user_settings(db_session, user.id)
        await db_session.flush()
        user_id = user.id

        await self.service.delete_all_user_data(db_session, user_id)

        notes = (await db_session.execute(select(Note))).scalars().all()
        assert [n.title for n in notes] == ["theirs"]
        assert (await db_session.execute(select(NoteCollaborator))).scalars().all() == []
        assert await db_session.get(User, user_id) is None
        assert await db_session.get(AuthUser, user_id) is None
        assert await db_session.get(UserSettings, user_id) is None
        sessions = (await db_session.execute(select(AuthSession))).scalars().all()
        assert all(s.user_id != user_id for s in sessions)
        assert await db_session.get(User, other.id) is not None

    @pytest.mark.asyncio
    async def test_stored_files_removed_once_deletion_commits(self, db_session, make_user, make_note):
        user, other = await make_user(), await make_user()
        mine = await make_note(user)
        theirs = await make_note(other)
        export = await file_service.store_object(EXPORT_BUCKET, f"{user.id}/smartnotes-export-a.json", b"{}")
        image = await file_service.store_object(IMAGE_BUCKET, f"{mine.id}/image_1.jpg", b"jpg")
        audio = await file_service.store_object(AUDIO_BUCKET, f"{mine.id}/audio_1.m4a", b"m4a")
        kept = await file_service.store_object(IMAGE_BUCKET, f"{theirs.id}/image_2.jpg", b"jpg")

        await self.service.delete_all_user_data(db_session, user.id)
        assert Path(export.absolute_path).exists()

        await db_session.commit()
        assert not Path(export.absolute_path).exists()
        assert not Path(image.absolute_path).exists()
        assert not Path(audio.absolute_path).exists()
        assert Path(kept.absolute_path).exists()

    @pytest.mark.asyncio
    async def test_logout_ends_session(self, db_session):
        await self.auth.sign_up(db_session, "ada@example.com", "password123")
        token, _, _ = await self.auth.sign_in(db_session, "ada@example.com", "password123")

        await self.service.logout(db_session, token)
        assert await self.auth.get_user(db_session, token) is None
