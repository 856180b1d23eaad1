"""Initial SmartNotes schema

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

What:  Creates identity, profile, note, collaboration and search-history tables.
How:   Portable column types (sa.Uuid, sa.JSON) so the same migration runs on
       PostgreSQL in production and SQLite in local development.

Rollback: downgrade() drops every table (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    # ── Identity ──────────────────────────────────────────────────────────
    op.create_table(
        "auth_users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auth_users_email", "auth_users", ["email"], unique=True)

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        _timestamp("created_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["auth_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auth_sessions_token_hash", "auth_sessions", ["token_hash"], unique=True)
    op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])

    # ── Profiles ──────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        _timestamp("last_active", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["id"], ["auth_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "user_settings",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("dark_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notifications", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_sync", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("voice_transcription", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ai_suggestions", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("offline_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # ── Notes ─────────────────────────────────────────────────────────────
    op.create_table(
        "notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False, comment="Owner of the note"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "type",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'text'"),
            comment="Capture type: text, voice, image",
        ),
        sa.Column("folder", sa.String(255), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("audio_uri", sa.String(1024), nullable=True),
        sa.Column("image_uri", sa.String(1024), nullable=True),
        sa.Column(
            "embedding",
            sa.JSON(),
            nullable=True,
            comment="Cached embedding of title + content for semantic search",
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    # Every list view filters by owner and orders by updated_at
    op.create_index("idx_notes_user_updated_at", "notes", ["user_id", "updated_at"])

    op.create_table(
        "shared_notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("note_id", sa.Uuid(), nullable=False),
        sa.Column("share_id", sa.String(64), nullable=False),
        sa.Column("permission", sa.String(20), nullable=False, server_default=sa.text("'view'")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_id"),
    )
    op.create_index("ix_shared_notes_note_id", "shared_notes", ["note_id"])

    # ── Collaboration ─────────────────────────────────────────────────────
    op.create_table(
        "note_collaborators",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("note_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("permission", sa.String(20), nullable=False, server_default=sa.text("'view'")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("note_id", "user_id", name="uq_note_collaborators_note_user"),
    )
    op.create_index("ix_note_collaborators_note_id", "note_collaborators", ["note_id"])
    op.create_index("ix_note_collaborators_user_id", "note_collaborators", ["user_id"])

    op.create_table(
        "collaboration_invites",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("inviter_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("note_id", sa.Uuid(), nullable=True),
        sa.Column("permission", sa.String(20), nullable=False, server_default=sa.text("'view'")),
        _timestamp("created_at"),
        _timestamp("accepted_at", nullable=True),
        sa.ForeignKeyConstraint(["inviter_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_collaboration_invites_inviter_id", "collaboration_invites", ["inviter_id"])
    op.create_index("ix_collaboration_invites_email", "collaboration_invites", ["email"])

    # ── Search history ────────────────────────────────────────────────────
    op.create_table(
        "recent_searches",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("query", sa.String(500), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False, server_default=sa.text("'keyword'")),
        _timestamp("timestamp"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_recent_searches_user_timestamp", "recent_searches", ["user_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop every table, children first. Destructive."""
    op.drop_index("idx_recent_searches_user_timestamp", table_name="recent_searches")
    op.drop_table("recent_searches")
    op.drop_index("ix_collaboration_invites_email", table_name="collaboration_invites")
    op.drop_index("ix_collaboration_invites_inviter_id", table_name="collaboration_invites")
    op.drop_table("collaboration_invites")
    op.drop_index("ix_note_collaborators_user_id", table_name="note_collaborators")
    op.drop_index("ix_note_collaborators_note_id", table_name="note_collaborators")
    op.drop_table("note_collaborators")
    op.drop_index("ix_shared_notes_note_id", table_name="shared_notes")
    op.drop_table("shared_notes")
    op.drop_index("idx_notes_user_updated_at", table_name="notes")
    op.drop_table("notes")
    op.drop_table("user_settings")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_auth_sessions_user_id", table_name="auth_sessions")
    op.drop_index("ix_auth_sessions_token_hash", table_name="auth_sessions")
    op.drop_table("auth_sessions")
    op.drop_index("ix_auth_users_email", table_name="auth_users")
    op.drop_table("auth_users")
