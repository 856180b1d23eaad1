"""
SmartNotes Backend — Note SQLAlchemy Models
=============================================

What:  ORM models for the `notes` and `shared_notes` tables.
Why:   Maps Python objects to database rows for type-safe CRUD.
Who:   Used by NoteService, SearchService, CollaborationService, StorageService,
       and by Alembic for schema management.

Table Design Rationale:
    - UUID primary key: non-sequential (can't guess the next ID)
    - type: 'text' | 'voice' | 'image' — how the note was captured
    - tags / keywords: JSON arrays; tag filtering happens after the SQL query
    - embedding: cached semantic-search vector, cleared when title/content change
    - updated_at: every list view orders by it, so it is indexed with user_id
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from smartnotes.database import Base, utcnow

NOTE_TYPES = ("text", "voice", "image")
SHARE_PERMISSIONS = ("view", "edit", "admin")


class Note(Base):
    """
    A user's note.

    Lifecycle:
        1. Created from the editor, a voice recording, or an import
        2. Updated by the owner or by collaborators holding 'edit'/'admin'
        3. Deleted by the owner only (collaborator rows and share links cascade)
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owner of the note",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="text",
        server_default=text("'text'"),
        comment="Capture type: text, voice, image",
    )

    folder: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # AI-generated fields. Null summary means no summary has been generated.
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    audio_uri: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    image_uri: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    embedding: Mapped[Optional[List[float]]] = mapped_column(
        JSON,
        nullable=True,
        default=None,
        comment="Cached embedding of title + content for semantic search",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_notes_user_updated_at", "user_id", "updated_at"),
    )

    @property
    def searchable_text(self) -> str:
        """Text that gets embedded for semantic search."""
        return f"{self.title}\n\n{self.content or ''}".strip()

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, type='{self.type}', title='{self.title[:30]}')>"


class SharedNote(Base):
    """
    Anonymous, read-only share link for one note.

    share_id is the random path segment in https://<share_base_url>/shared/<share_id>.
    """

    __tablename__ = "shared_notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    share_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    permission: Mapped[str] = mapped_column(String(20), nullable=False, default="view")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
