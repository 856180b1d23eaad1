"""
SmartNotes Backend — Collaboration Models
===========================================

note_collaborators:     who besides the owner can open a note, and with which permission
collaboration_invites:  pending shares for emails that have no account yet;
                        claimed when the invitee's profile is first created
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from smartnotes.database import Base, utcnow


class NoteCollaborator(Base):
    __tablename__ = "note_collaborators"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission: Mapped[str] = mapped_column(String(20), nullable=False, default="view")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("note_id", "user_id", name="uq_note_collaborators_note_user"),
    )


class CollaborationInvite(Base):
    __tablename__ = "collaboration_invites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    inviter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    # Null note_id: a general "join me" invite not tied to one note
    note_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("notes.id", ondelete="CASCADE"), nullable=True
    )
    permission: Mapped[str] = mapped_column(String(20), nullable=False, default="view")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
