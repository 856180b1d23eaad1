"""
SmartNotes Backend — Collaboration Service
============================================

What:  Sharing notes with other people, managing their permissions, invitations
       for people without an account, and live edits.
Why:   The collaborate screen's operations plus the realtime editing channel.
How:   `note_collaborators` rows grant access; `collaboration_invites` hold shares
       for unknown emails until that person's profile is created. Live edits are
       persisted and then fanned out through the RealtimeHub.

Permission Rules:
    share / invite / change permission   owner or admin collaborator
    remove collaborator                  owner or admin, or the collaborator themself
    live edit                            owner, edit or admin collaborator
"""

import asyncio
import logging
import uuid
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import utcnow
from smartnotes.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    PermissionDeniedError,
    SmartNotesError,
    ValidationError,
)
from smartnotes.models.collaboration import CollaborationInvite, NoteCollaborator
from smartnotes.models.note import Note
from smartnotes.models.user import User
from smartnotes.schemas.collaboration import (
    CollaboratorInfo,
    CollaboratorSummary,
    OwnerInfo,
    RealtimeEditResponse,
    SharedNoteResponse,
    ShareResult,
)
from smartnotes.services.note_service import (
    EDIT_PERMISSIONS,
    MANAGE_PERMISSIONS,
    note_record,
    note_service,
)
from smartnotes.services.realtime import realtime_hub

logger = logging.getLogger(__name__)


class CollaborationService:

    async def _require_manager(
        self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID
    ) -> Note:
        note, permission = await note_service.get_accessible_note(db, user_id, note_id)
        if permission not in MANAGE_PERMISSIONS:
            raise PermissionDeniedError(
                message="Only the owner or an admin can manage who has access to this note",
                context={"note_id": str(note_id)},
            )
        return note

    async def _find_collaborator(
        self, db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[NoteCollaborator]:
        result = await db.execute(
            select(NoteCollaborator).where(
                NoteCollaborator.note_id == note_id,
                NoteCollaborator.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    # ── Listings ──────────────────────────────────────────────────────────

    async def get_shared_notes(self, db: AsyncSession, user_id: uuid.UUID) -> List[SharedNoteResponse]:
        """Notes other people shared with the user, most recently updated first."""
        try:
            result = await db.execute(
                select(NoteCollaborator.permission, Note, User)
                .join(Note, Note.id == NoteCollaborator.note_id)
                .join(User, User.id == Note.user_id)
                .where(NoteCollaborator.user_id == user_id)
                .order_by(Note.updated_at.desc())
            )
            rows = result.all()
            if not rows:
                return []

            note_ids = [note.id for _, note, _ in rows]
            members = await db.execute(
                select(NoteCollaborator.note_id, NoteCollaborator.permission, User)
                .join(User, User.id == NoteCollaborator.user_id)
                .where(NoteCollaborator.note_id.in_(note_ids))
                .order_by(User.name)
            )
        except SQLAlchemyError as e:
            logger.error("Error loading shared notes: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not load shared notes. Please try again.") from e

        collaborators: Dict[uuid.UUID, List[CollaboratorInfo]] = {}
        for note_id, permission, member in members.all():
            collaborators.setdefault(note_id, []).append(
                CollaboratorInfo(id=member.id, name=member.name, email=member.email, permission=permission)
            )

        return [
            SharedNoteResponse(
                id=note.id,
                title=note.title,
                content=note.content,
                owner=OwnerInfo(id=owner.id, name=owner.name, email=owner.email),
                collaborators=collaborators.get(note.id, []),
                permission=permission,
                updated_at=note.updated_at,
            )
            for permission, note, owner in rows
        ]

    async def get_collaborators(self, db: AsyncSession, user_id: uuid.UUID) -> List[CollaboratorSummary]:
        """
        Everyone the user shares notes with, in either direction.

        shared_notes counts notes shared between the two users.
        """
        try:
            outgoing = await db.execute(
                select(NoteCollaborator.user_id)
                .join(Note, Note.id == NoteCollaborator.note_id)
                .where(Note.user_id == user_id, NoteCollaborator.user_id != user_id)
            )
            incoming = await db.execute(
                select(Note.user_id)
                .join(NoteCollaborator, NoteCollaborator.note_id == Note.id)
                .where(NoteCollaborator.user_id == user_id, Note.user_id != user_id)
            )
            counts = Counter(list(outgoing.scalars().all()) + list(incoming.scalars().all()))
            if not counts:
                return []
            users = await db.execute(
                select(User).where(User.id.in_(list(counts))).order_by(User.name)
            )
        except SQLAlchemyError as e:
            logger.error("Error loading collaborators: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not load collaborators. Please try again.") from e

        return [
            CollaboratorSummary(
                id=person.id,
                name=person.name,
                email=person.email,
                shared_notes=counts[person.id],
                last_active=person.last_active.isoformat() if person.last_active else "Never",
            )
            for person in users.scalars().all()
        ]

    # ── Sharing ───────────────────────────────────────────────────────────

    async def invite_collaborator(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        email: str,
        note_id: Optional[uuid.UUID] = None,
        permission: str = "view",
    ) -> ShareResult:
        """
        Store an invitation for `email`, optionally scoped to one note.

        Re-inviting the same email for the same note updates the pending
        invitation instead of adding another.
        """
        email = email.strip().lower()
        if note_id is not None:
            await self._require_manager(db, user_id, note_id)

        inviter = await db.get(User, user_id)
        if inviter is not None and inviter.email.lower() == email:
            raise ValidationError(message="You can't invite yourself", field="email")

        query = select(CollaborationInvite).where(
            func.lower(CollaborationInvite.email) == email,
            CollaborationInvite.accepted_at.is_(None),
        )
        if note_id is None:
            query = query.where(CollaborationInvite.note_id.is_(None))
        else:
            query = query.where(CollaborationInvite.note_id == note_id)
        existing = (await db.execute(query)).scalars().first()

        if existing is not None:
            existing.permission = permission
        else:
            db.add(
                CollaborationInvite(
                    inviter_id=user_id,
                    email=email,
                    note_id=note_id,
                    permission=permission,
                )
            )
        await db.flush()
        logger.info("Invitation stored for note %s (permission=%s)", note_id, permission)
        return ShareResult(invited=True, email=email, permission=permission)

    async def share_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        email: str,
        permission: str = "view",
    ) -> ShareResult:
        """
        Grant `email` access to a note; unknown emails get an invitation.

        Raises:
            ValidationError: sharing with yourself or with the note's owner
            ConflictError: that person already collaborates on the note
        """
        email = email.strip().lower()
        note = await self._require_manager(db, user_id, note_id)

        result = await db.execute(select(User).where(func.lower(User.email) == email))
        target = result.scalars().first()
        if target is None:
            return await self.invite_collaborator(db, user_id, email, note_id, permission)

        if target.id == user_id:
            raise ValidationError(message="You can't share a note with yourself", field="email")
        if target.id == note.user_id:
            raise ValidationError(message="That person already owns this note", field="email")
        if await self._find_collaborator(db, note_id, target.id) is not None:
            raise ConflictError(
                message=f"{email} already has access to this note",
                context={"note_id": str(note_id)},
            )

        db.add(NoteCollaborator(note_id=note_id, user_id=target.id, permission=permission))
        await db.flush()
        logger.info("Note %s shared with %s (permission=%s)", note_id, target.id, permission)
        return ShareResult(invited=False, email=email, permission=permission)

    async def update_permissions(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        collaborator_id: uuid.UUID,
        permission: str,
    ) -> None:
        await self._require_manager(db, user_id, note_id)
        row = await self._find_collaborator(db, note_id, collaborator_id)
        if row is None:
            raise NotFoundError(resource="collaborator", resource_id=str(collaborator_id))
        row.permission = permission
        await db.flush()
        logger.info("Permission for %s on note %s set to %s", collaborator_id, note_id, permission)

    async def remove_collaborator(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        collaborator_id: uuid.UUID,
    ) -> None:
        if collaborator_id != user_id:
            await self._require_manager(db, user_id, note_id)
        row = await self._find_collaborator(db, note_id, collaborator_id)
        if row is None:
            raise NotFoundError(resource="collaborator", resource_id=str(collaborator_id))
        await db.delete(row)
        await db.flush()
        realtime_hub.revoke_on_commit(db, note_id, collaborator_id)
        logger.info("Collaborator %s removed from note %s", collaborator_id, note_id)

    async def claim_invitations(self, db: AsyncSession, user: User) -> int:
        """
        Turn pending invitations for `user.email` into collaborator rows.

        Returns:
            Number of invitations marked accepted.
        """
        result = await db.execute(
            select(CollaborationInvite).where(
                func.lower(CollaborationInvite.email) == user.email.lower(),
                CollaborationInvite.accepted_at.is_(None),
            )
        )
        invites = list(result.scalars().all())
        now = utcnow()
        for invite in invites:
            if invite.note_id is not None:
                note = await db.get(Note, invite.note_id)
                if (
                    note is not None
                    and note.user_id != user.id
                    and await self._find_collaborator(db, note.id, user.id) is None
                ):
                    db.add(
                        NoteCollaborator(note_id=note.id, user_id=user.id, permission=invite.permission)
                    )
                    await db.flush()
            invite.accepted_at = now
        if invites:
            await db.flush()
        return len(invites)

    # ── Realtime ──────────────────────────────────────────────────────────

    def subscribe(self, note_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> asyncio.Queue:
        return realtime_hub.subscribe(note_id, user_id)

    def unsubscribe(self, note_id: uuid.UUID, queue: asyncio.Queue) -> None:
        realtime_hub.unsubscribe(note_id, queue)

    async def save_realtime_edit(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        content: str,
        cursor: int,
    ) -> RealtimeEditResponse:
        """
        Persist a live edit and broadcast it with the editor's cursor.

        Failures are logged and reported as saved=False; the editor keeps the
        text locally and sends it again with the next keystroke batch.
        """
        try:
            note, permission = await note_service.get_accessible_note(db, user_id, note_id)
            if permission not in EDIT_PERMISSIONS:
                raise PermissionDeniedError(message="You need edit access to change this note")
            # A failed write rolls back only this savepoint
            async with db.begin_nested():
                if note.content != content:
                    note.content = content
                    note.embedding = None
                note.updated_at = utcnow()
                await db.flush()
        except (SmartNotesError, SQLAlchemyError) as e:
            logger.error("Error saving realtime edit for note %s: %s", note_id, str(e))
            return RealtimeEditResponse(saved=False)

        realtime_hub.publish_on_commit(
            db, note.id, "UPDATE", note_record(note), cursor=cursor, user_id=user_id
        )
        return RealtimeEditResponse(saved=True, updated_at=note.updated_at)


collaboration_service = CollaborationService()
