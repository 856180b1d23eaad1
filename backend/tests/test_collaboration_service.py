"""
SmartNotes Backend — Collaboration Service Tests
==================================================

What we test:
    ✅ Sharing with existing accounts vs. storing invitations
    ✅ Self-share, owner-share and duplicate-share rejection
    ✅ Permission changes and removal (including leaving a note)
    ✅ Shared-note and collaborator listings
    ✅ Live edits: persisted + broadcast, or saved=False
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from smartnotes.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from smartnotes.models.collaboration import CollaborationInvite, NoteCollaborator
from smartnotes.services.collaboration_service import CollaborationService
from smartnotes.services.realtime import ACCESS_REVOKED, realtime_hub


async def grant(db_session, note, user, permission):
    db_session.add(NoteCollaborator(note_id=note.id, user_id=user.id, permission=permission))
    await db_session.flush()


class TestSharing:

    def setup_method(self):
        self.service = CollaborationService()

    @pytest.mark.asyncio
    async def test_share_with_existing_user(self, db_session, make_user, make_note):
        owner = await make_user()
        friend = await make_user(email="friend@example.com")
        note = await make_note(owner)

        result = await self.service.share_note(db_session, owner.id, note.id, " Friend@Example.com ", "edit")

        assert result.invited is False
        assert result.email == "friend@example.com"
        row = (await db_session.execute(select(NoteCollaborator))).scalar_one()
        assert (row.user_id, row.permission) == (friend.id, "edit")

    @pytest.mark.asyncio
    async def test_share_with_unknown_email_stores_invitation(self, db_session, make_user, make_note):
        owner = await make_user()
        note = await make_note(owner)

        result = await self.service.share_note(db_session, owner.id, note.id, "nobody@example.com")

        assert result.invited is True
        invite = (await db_session.execute(select(CollaborationInvite))).scalar_one()
        assert invite.note_id == note.id
        assert invite.permission == "view"

    @pytest.mark.asyncio
    async def test_share_with_self_rejected(self, db_session, make_user, make_note):
        owner = await make_user(email="me@example.com")
        note = await make_note(owner)
        with pytest.raises(ValidationError):
            await self.service.share_note(db_session, owner.id, note.id, "me@example.com")

    @pytest.mark.asyncio
    async def test_admin_cannot_share_with_owner(self, db_session, make_user, make_note):
        owner = await make_user(email="owner@example.com")
        admin = await make_user()
        note = await make_note(owner)
        await grant(db_session, note, admin, "admin")

        with pytest.raises(ValidationError):
            await self.service.share_note(db_session, admin.id, note.id, "owner@example.com")

    @pytest.mark.asyncio
    async def test_duplicate_share_conflicts(self, db_session, make_user, make_note):
        owner = await make_user()
        await make_user(email="friend@example.com")
        note = await make_note(owner)
        await self.service.share_note(db_session, owner.id, note.id, "friend@example.com")

        with pytest.raises(ConflictError):
            await self.service.share_note(db_session, owner.id, note.id, "friend@example.com", "edit")

    @pytest.mark.asyncio
    async def test_edit_collaborator_cannot_share(self, db_session, make_user, make_note):
        owner, editor = await make_user(), await make_user()
        await make_user(email="third@example.com")
        note = await make_note(owner)
        await grant(db_session, note, editor, "edit")

        with pytest.raises(PermissionDeniedError):
            await self.service.share_note(db_session, editor.id, note.id, "third@example.com")

    @pytest.mark.asyncio
    async def test_reinvite_updates_pending_invitation(self, db_session, make_user, make_note):
        owner = await make_user()
        note = await make_note(owner)

        await self.service.invite_collaborator(db_session, owner.id, "later@example.com", note.id, "view")
        await self.service.invite_collaborator(db_session, owner.id, "LATER@example.com", note.id, "edit")

        invites = (await db_session.execute(select(CollaborationInvite))).scalars().all()
        assert len(invites) == 1
        assert invites[0].permission == "edit"

    @pytest.mark.asyncio
    async def test_general_invitation_without_note(self, db_session, make_user):
        owner = await make_user()
        result = await self.service.invite_collaborator(db_session, owner.id, "pal@example.com")
        assert result.invited is True
        invite = (await db_session.execute(select(CollaborationInvite))).scalar_one()
        assert invite.note_id is None

    @pytest.mark.asyncio
    async def test_invite_self_rejected(self, db_session, make_user):
        owner = await make_user(email="me@example.com")
        with pytest.raises(ValidationError):
            await self.service.invite_collaborator(db_session, owner.id, "ME@example.com")


class TestPermissions:

    def setup_method(self):
        self.service = CollaborationService()

    @pytest.mark.asyncio
    async def test_update_permission(self, db_session, make_user, make_note):
        owner, friend = await make_user(), await make_user()
        note = await make_note(owner)
        await grant(db_session, note, friend, "view")

        await self.service.update_permissions(db_session, owner.id, note.id, friend.id, "admin")

        row = (await db_session.execute(select(NoteCollaborator))).scalar_one()
        assert row.permission == "admin"

    @pytest.mark.asyncio
    async def test_update_unknown_collaborator(self, db_session, make_user, make_note):
        owner = await make_user()
        note = await make_note(owner)
        with pytest.raises(NotFoundError):
            await self.service.update_permissions(db_session, owner.id, note.id, uuid4(), "edit")

    @pytest.mark.asyncio
    async def test_viewer_cannot_change_permissions(self, db_session, make_user, make_note):
        owner, viewer, other = await make_user(), await make_user(), await make_user()
        note = await make_note(owner)
        await grant(db_session, note, viewer, "view")
        await grant(db_session, note, other, "view")

        with pytest.raises(PermissionDeniedError):
            await self.service.update_permissions(db_session, viewer.id, note.id, other.id, "admin")

    @pytest.mark.asyncio
    async def test_collaborator_can_leave(self, db_session, make_user, make_note):
        owner, viewer = await make_user(), await make_user()
        note = await make_note(owner)
        await grant(db_session, note, viewer, "view")

        await self.service.remove_collaborator(db_session, viewer.id, note.id, viewer.id)
        assert (await db_session.execute(select(NoteCollaborator))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_owner_removes_collaborator(self, db_session, make_user, make_note):
        owner, friend = await make_user(), await make_user()
        note = await make_note(owner)
        await grant(db_session, note, friend, "edit")

        await self.service.remove_collaborator(db_session, owner.id, note.id, friend.id)
        assert (await db_session.execute(select(NoteCollaborator))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_removal_closes_live_streams_on_commit(self, db_session, make_user, make_note):
        owner, friend = await make_user(), await make_user()
        note = await make_note(owner)
        await grant(db_session, note, friend, "edit")
        friend_stream = realtime_hub.subscribe(note.id, friend.id)
        owner_stream = realtime_hub.subscribe(note.id, owner.id)

        try:
            await self.service.remove_collaborator(db_session, owner.id, note.id, friend.id)
            assert friend_stream.empty()

            await db_session.commit()
            assert friend_stream.get_nowait() is ACCESS_REVOKED
            assert owner_stream.empty()
        finally:
            realtime_hub.unsubscribe(note.id, friend_stream)
            realtime_hub.unsubscribe(note.id, owner_stream)


class TestListings:

    def setup_method(self):
        self.service = CollaborationService()

    @pytest.mark.asyncio
    async def test_shared_notes(self, db_session, make_user, make_note):
        owner = await make_user(name="Olivia")
        me, other = await make_user(name="Me"), await make_user(name="Zed")
        note = await make_note(owner, title="Roadmap", content="Q3")
        await make_note(owner, title="Private")
        await grant(db_session, note, me, "edit")
        await grant(db_session, note, other, "view")

        shared = await self.service.get_shared_notes(db_session, me.id)

        assert len(shared) == 1
        item = shared[0]
        assert item.title == "Roadmap"
        assert item.owner.name == "Olivia"
        assert item.permission == "edit"
        assert [c.name for c in item.collaborators] == ["Me", "Zed"]

    @pytest.mark.asyncio
    async def test_no_shared_notes(self, db_session, make_user):
        me = await make_user()
        assert await self.service.get_shared_notes(db_session, me.id) == []

    @pytest.mark.asyncio
    async def test_collaborators_in_both_directions(self, db_session, make_user, make_note):
        me = await make_user(name="Me")
        alice, bob = await make_user(name="Alice"), await make_user(name="Bob")
        mine_1 = await make_note(me)
        mine_2 = await make_note(me)
        bobs = await make_note(bob)
        await grant(db_session, mine_1, alice, "view")
        await grant(db_session, mine_2, alice, "edit")
        await grant(db_session, bobs, me, "view")

        people = await self.service.get_collaborators(db_session, me.id)

        assert [(p.name, p.shared_notes) for p in people] == [("Alice", 2), ("Bob", 1)]
        assert people[0].last_active == "Never"


class TestRealtimeEdits:

    def setup_method(self):
        self.service = CollaborationService()

    @pytest.mark.asyncio
    async def test_edit_is_saved_and_broadcast(self, db_session, make_user, make_note):
        owner, editor = await make_user(), await make_user()
        note = await make_note(owner, content="draft", embedding=[1.0])
        await grant(db_session, note, editor, "edit")
        queue = realtime_hub.subscribe(note.id, owner.id)

        try:
            result = await self.service.save_realtime_edit(db_session, editor.id, note.id, "draft v2", 8)
            assert queue.empty()
            await db_session.commit()
            event = queue.get_nowait()
        finally:
            realtime_hub.unsubscribe(note.id, queue)

        assert result.saved is True
        assert result.updated_at is not None
        assert note.content == "draft v2"
        assert note.embedding is None
        assert event["event"] == "UPDATE"
        assert event["cursor"] == 8
        assert event["user_id"] == str(editor.id)

    @pytest.mark.asyncio
    async def test_failed_write_keeps_request_transaction(self, db_session, make_user, make_note):
        owner = await make_user()
        note = await make_note(owner, content="draft")

        # content is NOT NULL, so the flush fails inside the savepoint
        result = await self.service.save_realtime_edit(db_session, owner.id, note.id, None, 0)
        assert result.saved is False

        await db_session.commit()
        await db_session.refresh(note)
        assert note.content == "draft"


    @pytest.mark.asyncio
    async def test_viewer_edit_not_saved(self, db_session, make_user, make_note):
        owner, viewer = await make_user(), await make_user()
        note = await make_note(owner, content="draft")
        await grant(db_session, note, viewer, "view")

        result = await self.service.save_realtime_edit(db_session, viewer.id, note.id, "hijack", 0)

        assert result.saved is False
        assert note.content == "draft"

    @pytest.mark.asyncio
    async def test_missing_note_not_saved(self, db_session, make_user):
        me = await make_user()
        result = await self.service.save_realtime_edit(db_session, me.id, uuid4(), "text", 0)
        assert result.saved is False
