"""
SmartNotes Backend — Note Service
===================================

What:  Note CRUD, note-level search, dashboard statistics, insights and share links.
Why:   Every screen that lists or edits notes goes through here, so the ownership
       rules live in one place.
How:   Stateless; each call receives the request's AsyncSession and the caller's
       user ID. Realtime subscribers are notified after updates and deletes.

Access Rules:
    owner               read, update, delete, share
    collaborator admin  read, update, share
    collaborator edit   read, update
    collaborator view   read
    anyone else         the note does not exist (NotFoundError / None)

Error Handling:
    SQLAlchemy failures are logged and wrapped in DatabaseError; our own
    exceptions propagate untouched.
"""

import logging
import secrets
import uuid
from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.config import settings
from smartnotes.database import as_utc, utcnow
from smartnotes.exceptions import (
    DatabaseError,
    NotFoundError,
    PermissionDeniedError,
    SmartNotesError,
    ValidationError,
)
from smartnotes.models.collaboration import NoteCollaborator
from smartnotes.models.note import Note, SharedNote
from smartnotes.schemas.note import (
    AIInsight,
    NoteCreate,
    NoteResponse,
    NoteStats,
    NoteUpdate,
    ShareLinkResponse,
    SharedNoteView,
)
from smartnotes.services.realtime import realtime_hub

logger = logging.getLogger(__name__)

OWNER = "owner"
EDIT_PERMISSIONS = {OWNER, "edit", "admin"}
MANAGE_PERMISSIONS = {OWNER, "admin"}

# Minutes credited per written word on the dashboard
MINUTES_PER_WORD = 0.5

DEFAULT_TAG_SUGGESTION = "productivity"


def like_pattern(query: str) -> str:
    """Substring ILIKE pattern with LIKE wildcards in the user's text escaped."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def count_words(content: Optional[str]) -> int:
    """Pieces of the content split on single spaces; newlines and tabs do not separate words."""
    return len(content.split(" ")) if content else 0


def note_record(note: Note) -> Dict[str, Any]:
    """JSON-ready note, as pushed to realtime subscribers and written to exports."""
    return NoteResponse.model_validate(note).model_dump(mode="json")


def writing_streak(days: Iterable[date], today: date) -> int:
    """Number of consecutive days, ending today, that have at least one note."""
    written = set(days)
    streak = 0
    day = today
    while day in written:
        streak += 1
        day -= timedelta(days=1)
    return streak


def matches_text(note: Note, query: str) -> bool:
    """Case-insensitive substring match on title, content or any tag."""
    needle = query.lower()
    return (
        needle in (note.title or "").lower()
        or needle in (note.content or "").lower()
        or any(needle in tag.lower() for tag in (note.tags or []))
    )


class NoteService:
    """
    Business logic for notes.

    Methods return ORM objects; routes convert them with NoteResponse.
    """

    # ── Access helpers ────────────────────────────────────────────────────

    async def get_permission(
        self, db: AsyncSession, user_id: uuid.UUID, note: Note
    ) -> Optional[str]:
        """'owner', the collaborator permission, or None when the user has no access."""
        if note.user_id == user_id:
            return OWNER
        result = await db.execute(
            select(NoteCollaborator.permission).where(
                NoteCollaborator.note_id == note.id,
                NoteCollaborator.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_accessible_note(
        self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID
    ) -> Tuple[Note, str]:
        """
        Load a note together with the caller's permission on it.

        Raises:
            NotFoundError: missing, or not visible to the caller
        """
        note = await db.get(Note, note_id)
        if note is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        permission = await self.get_permission(db, user_id, note)
        if permission is None:
            raise NotFoundError(resource="note", resource_id=str(note_id))
        return note, permission

    # ── CRUD ──────────────────────────────────────────────────────────────

    async def create_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        data: NoteCreate,
        note_id: Optional[uuid.UUID] = None,
    ) -> Note:
        """`note_id` lets callers that already stored files under an ID reuse it."""
        try:
            now = utcnow()
            note = Note(
                id=note_id or uuid.uuid4(),
                user_id=user_id,
                created_at=now,
                updated_at=now,
                **data.model_dump(),
            )
            db.add(note)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error creating note: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not save the note. Please try again.") from e

        logger.info("Note created: %s (type=%s)", note.id, note.type)
        return note

    async def get_all_notes(self, db: AsyncSession, user_id: uuid.UUID) -> List[Note]:
        """The user's own notes, most recently updated first."""
        return await self.get_recent_notes(db, user_id, limit=None)

    async def get_recent_notes(
        self, db: AsyncSession, user_id: uuid.UUID, limit: Optional[int] = 10
    ) -> List[Note]:
        query = (
            select(Note)
            .where(Note.user_id == user_id)
            .order_by(Note.updated_at.desc(), Note.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            result = await db.execute(query)
        except SQLAlchemyError as e:
            logger.error("Database error listing notes: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not retrieve notes. Please try again.") from e
        return list(result.scalars().all())

    async def get_note_by_id(
        self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID
    ) -> Optional[Note]:
        """The note, or None when it is missing or not visible to the caller."""
        try:
            note, _ = await self.get_accessible_note(db, user_id, note_id)
        except NotFoundError:
            return None
        except SQLAlchemyError as e:
            logger.error("Database error fetching note %s: %s", note_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e
        return note

    async def update_note(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        updates: Union[NoteUpdate, Dict[str, Any]],
    ) -> Note:
        """
        Apply a partial update. `updated_at` is always refreshed.

        Raises:
            NotFoundError: missing or invisible note
            PermissionDeniedError: caller only has view access
            ValidationError: title explicitly set to null
        """
        fields = (
            updates.model_dump(exclude_unset=True)
            if isinstance(updates, NoteUpdate)
            else dict(updates)
        )

        try:
            note, permission = await self.get_accessible_note(db, user_id, note_id)
            if permission not in EDIT_PERMISSIONS:
                raise PermissionDeniedError(
                    message="You need edit access to change this note",
                    context={"note_id": str(note_id)},
                )

            if "title" in fields and fields["title"] is None:
                raise ValidationError(message="Title must not be empty", field="title")
            for list_field in ("tags", "keywords"):
                if list_field in fields and fields[list_field] is None:
                    fields[list_field] = []
            if "content" in fields and fields["content"] is None:
                fields["content"] = ""

            text_changed = any(
                key in fields and fields[key] != getattr(note, key)
                for key in ("title", "content")
            )
            for key, value in fields.items():
                if key in ("id", "user_id", "created_at", "updated_at", "embedding"):
                    continue
                # JSON columns only detect reassignment, so always assign a new list
                setattr(note, key, list(value) if isinstance(value, list) else value)
            if text_changed:
                note.embedding = None
            note.updated_at = utcnow()
            await db.flush()
        except SmartNotesError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error updating note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not update the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e

        logger.info("Note %s updated (%s)", note.id, ", ".join(sorted(fields)) or "touch")
        realtime_hub.publish_on_commit(db, note.id, "UPDATE", note_record(note), user_id=user_id)
        return note

    async def delete_note(self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID) -> None:
        try:
            note, permission = await self.get_accessible_note(db, user_id, note_id)
            if permission != OWNER:
                raise PermissionDeniedError(
                    message="Only the owner can delete this note",
                    context={"note_id": str(note_id)},
                )
            await db.execute(delete(NoteCollaborator).where(NoteCollaborator.note_id == note.id))
            await db.execute(delete(SharedNote).where(SharedNote.note_id == note.id))
            await db.delete(note)
            await db.flush()
        except SmartNotesError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error deleting note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the note. Please try again.",
                context={"note_id": str(note_id)},
            ) from e

        logger.info("Note deleted: %s", note_id)
        realtime_hub.publish_on_commit(db, note_id, "DELETE", {"id": str(note_id)}, user_id=user_id)

    # ── Search ────────────────────────────────────────────────────────────

    async def search_notes(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        query: str,
        notes: Optional[Sequence[Note]] = None,
    ) -> List[Note]:
        """
        Quick text search.

        With `notes` given the list is filtered in memory (title, content or tag);
        otherwise the database is queried on title and content.
        """
        query = query.strip()
        if notes is not None:
            if not query:
                return list(notes)
            return [note for note in notes if matches_text(note, query)]

        if not query:
            return await self.get_all_notes(db, user_id)

        pattern = like_pattern(query)
        try:
            result = await db.execute(
                select(Note)
                .where(
                    Note.user_id == user_id,
                    or_(
                        Note.title.ilike(pattern, escape="\\"),
                        Note.content.ilike(pattern, escape="\\"),
                    ),
                )
                .order_by(Note.updated_at.desc())
            )
        except SQLAlchemyError as e:
            logger.error("Database error searching notes: %s", str(e), exc_info=True)
            raise DatabaseError(message="Search failed. Please try again.") from e
        return list(result.scalars().all())

    # ── Dashboard ─────────────────────────────────────────────────────────

    async def get_user_stats(self, db: AsyncSession, user_id: uuid.UUID) -> NoteStats:
        try:
            result = await db.execute(
                select(Note.content, Note.summary).where(Note.user_id == user_id)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Database error computing stats: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not load your statistics.") from e

        words = sum(count_words(content) for content, _ in rows)
        return NoteStats(
            total_notes=len(rows),
            words_written=words,
            time_spent=int(words * MINUTES_PER_WORD),
            ai_summaries=sum(1 for _, summary in rows if summary),
        )

    async def get_ai_insights(self, db: AsyncSession, user_id: uuid.UUID) -> List[AIInsight]:
        """
        Two dashboard cards computed from the user's own notes:
        a writing streak and the tag worth reusing.
        """
        try:
            result = await db.execute(
                select(Note.created_at, Note.tags).where(Note.user_id == user_id)
            )
            rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Database error computing insights: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not load insights.") from e

        streak = writing_streak(
            (as_utc(created_at).date() for created_at, _ in rows), utcnow().date()
        )
        if streak:
            streak_insight = AIInsight(
                id="writing-streak",
                type="trend",
                title="Writing Streak",
                description=(
                    f"You've been consistently taking notes for {streak} "
                    f"day{'s' if streak != 1 else ''}!"
                ),
                action="Keep it up!",
            )
        else:
            streak_insight = AIInsight(
                id="writing-streak",
                type="trend",
                title="Writing Streak",
                description="Write a note today to start a new streak.",
                action="Create a note",
            )

        tag_counts = Counter(tag for _, tags in rows for tag in (tags or []))
        if tag_counts:
            tag = tag_counts.most_common(1)[0][0]
            description = f"Consider using #{tag} tag for related notes"
        else:
            description = f"Consider using #{DEFAULT_TAG_SUGGESTION} tag for work-related notes"
        tag_insight = AIInsight(
            id="tag-suggestion",
            type="suggestion",
            title="Tag Suggestion",
            description=description,
            action="Auto-tag similar notes",
        )
        return [streak_insight, tag_insight]

    # ── Share links ───────────────────────────────────────────────────────

    async def share_note(
        self, db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID
    ) -> ShareLinkResponse:
        """
        Create an anonymous read-only link.

        Raises:
            NotFoundError / PermissionDeniedError: only owners and admins may share
        """
        try:
            note, permission = await self.get_accessible_note(db, user_id, note_id)
            if permission not in MANAGE_PERMISSIONS:
                raise PermissionDeniedError(
                    message="Only the owner or an admin can share this note",
                    context={"note_id": str(note_id)},
                )
            share_id = secrets.token_urlsafe(12)
            db.add(SharedNote(note_id=note.id, share_id=share_id, permission="view"))
            await db.flush()
        except SmartNotesError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error sharing note %s: %s", note_id, str(e), exc_info=True)
            raise DatabaseError(message="Could not create a share link. Please try again.") from e

        logger.info("Share link created for note %s", note_id)
        return ShareLinkResponse(url=f"{settings.share_base_url}/shared/{share_id}", share_id=share_id)

    async def get_shared_note(self, db: AsyncSession, share_id: str) -> SharedNoteView:
        result = await db.execute(
            select(Note, SharedNote.permission)
            .join(SharedNote, SharedNote.note_id == Note.id)
            .where(SharedNote.share_id == share_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError(resource="shared note", resource_id=share_id)
        note, permission = row
        view = SharedNoteView.model_validate(note)
        view.permission = permission
        return view

    async def count_notes(self, db: AsyncSession, user_id: uuid.UUID, note_type: Optional[str] = None) -> int:
        query = select(func.count(Note.id)).where(Note.user_id == user_id)
        if note_type:
            query = query.where(Note.type == note_type)
        result = await db.execute(query)
        return result.scalar() or 0


# ── Singleton Instance ────────────────────────────────────────────────────
note_service = NoteService()
