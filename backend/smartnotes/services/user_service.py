"""
SmartNotes Backend — User Service
===================================

What:  Profiles, profile statistics, app settings, account deletion and logout.
Why:   The profile screen's operations, kept independent of the credential layer.
How:   Profiles are created lazily the first time an identity asks for one; at
       that moment pending collaboration invitations for the email are claimed.
"""

import functools
import logging
import uuid
from typing import Iterable, Optional, Union

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import after_commit, utcnow
from smartnotes.exceptions import DatabaseError, NotFoundError
from smartnotes.models.collaboration import CollaborationInvite, NoteCollaborator
from smartnotes.models.note import Note, SharedNote
from smartnotes.models.search import RecentSearch
from smartnotes.models.user import AuthUser, User, UserSettings
from smartnotes.schemas.user import UserProfileUpdate, UserSettingsSchema, UserStats
from smartnotes.services.auth_service import auth_service
from smartnotes.services.collaboration_service import collaboration_service
from smartnotes.services.file_service import AUDIO_BUCKET, EXPORT_BUCKET, IMAGE_BUCKET, file_service
from smartnotes.services.note_service import note_service

logger = logging.getLogger(__name__)


def default_display_name(identity: AuthUser) -> str:
    """Signup full name, else the email's local part, else 'User'."""
    if identity.full_name and identity.full_name.strip():
        return identity.full_name.strip()
    local_part = (identity.email or "").split("@")[0]
    return local_part or "User"


def remove_stored_files(user_id: uuid.UUID, note_ids: Iterable[uuid.UUID]) -> None:
    """Exports of the user plus audio and images of every note they owned."""
    file_service.remove_tree(EXPORT_BUCKET, str(user_id))
    for note_id in note_ids:
        file_service.remove_tree(AUDIO_BUCKET, str(note_id))
        file_service.remove_tree(IMAGE_BUCKET, str(note_id))


class UserService:

    async def get_current_user(self, db: AsyncSession, identity: AuthUser) -> User:
        """Profile of the signed-in identity, created on first access. Touches last_active."""
        user = await db.get(User, identity.id)
        if user is None:
            user = await self.create_user_profile(db, identity)
        user.last_active = utcnow()
        await db.flush()
        return user

    async def create_user_profile(self, db: AsyncSession, identity: AuthUser) -> User:
        now = utcnow()
        user = User(
            id=identity.id,
            email=identity.email,
            name=default_display_name(identity),
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        await db.flush()
        claimed = await collaboration_service.claim_invitations(db, user)
        logger.info("Profile created for %s (%d invitations claimed)", user.id, claimed)
        return user

    async def update_profile(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        updates: Union[UserProfileUpdate, dict],
    ) -> User:
        fields = (
            updates.model_dump(exclude_unset=True)
            if isinstance(updates, UserProfileUpdate)
            else dict(updates)
        )
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))

        for key in ("name", "avatar_url"):
            if key in fields:
                if key == "name" and not fields[key]:
                    continue
                setattr(user, key, fields[key])
        user.updated_at = utcnow()
        await db.flush()
        logger.info("Profile updated for %s", user_id)
        return user

    async def get_user_stats(self, db: AsyncSession, user_id: uuid.UUID) -> UserStats:
        """Profile counters. Any failure yields all zeros so the profile screen still renders."""
        try:
            note_stats = await note_service.get_user_stats(db, user_id)
            voice_notes = await note_service.count_notes(db, user_id, note_type="voice")
            result = await db.execute(
                select(func.count(NoteCollaborator.id)).where(NoteCollaborator.user_id == user_id)
            )
            collaborations = result.scalar() or 0
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error("Error getting user stats: %s", str(e))
            return UserStats()

        return UserStats(
            **note_stats.model_dump(),
            voice_notes=voice_notes,
            collaborations=collaborations,
        )

    async def get_user_settings(self, db: AsyncSession, user_id: uuid.UUID) -> UserSettingsSchema:
        """Stored settings; defaults are persisted on first read."""
        row = await db.get(UserSettings, user_id)
        if row is None:
            return await self.update_settings(db, user_id, UserSettingsSchema())
        return UserSettingsSchema.model_validate(row)

    async def update_settings(
        self, db: AsyncSession, user_id: uuid.UUID, new_settings: UserSettingsSchema
    ) -> UserSettingsSchema:
        """Upsert every preference."""
        row = await db.get(UserSettings, user_id)
        if row is None:
            row = UserSettings(user_id=user_id)
            db.add(row)
        for key, value in new_settings.model_dump().items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        await db.flush()
        return UserSettingsSchema.model_validate(row)

    async def delete_all_user_data(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """
        Remove the account and everything that references it.

        Order: collaborator rows, search history, settings, share links,
        invitations, notes, profile, then sessions and credentials. Exports
        and note media are removed from storage once the deletion commits.
        """
        own_notes = select(Note.id).where(Note.user_id == user_id)
        user: Optional[User] = await db.get(User, user_id)
        email = user.email if user else None

        try:
            note_ids = list((await db.execute(own_notes)).scalars().all())
            await db.execute(
                delete(NoteCollaborator).where(
                    or_(
                        NoteCollaborator.user_id == user_id,
                        NoteCollaborator.note_id.in_(own_notes),
                    )
                )
            )
            await db.execute(delete(RecentSearch).where(RecentSearch.user_id == user_id))
            await db.execute(delete(UserSettings).where(UserSettings.user_id == user_id))
            await db.execute(delete(SharedNote).where(SharedNote.note_id.in_(own_notes)))

            invite_filter = [
                CollaborationInvite.inviter_id == user_id,
                CollaborationInvite.note_id.in_(own_notes),
            ]
            if email:
                invite_filter.append(func.lower(CollaborationInvite.email) == email.lower())
            await db.execute(delete(CollaborationInvite).where(or_(*invite_filter)))

            await db.execute(delete(Note).where(Note.user_id == user_id))
            await db.execute(delete(User).where(User.id == user_id))
            await auth_service.delete_identity(db, user_id)
            db.expunge_all()
            after_commit(db, functools.partial(remove_stored_files, user_id, note_ids))
        except SQLAlchemyError as e:
            logger.error("Error deleting data for %s: %s", user_id, str(e), exc_info=True)
            raise DatabaseError(message="Could not delete your data. Please try again.") from e

        logger.info("All data deleted for user %s", user_id)

    async def logout(self, db: AsyncSession, token: str) -> None:
        await auth_service.sign_out(db, token)


user_service = UserService()
