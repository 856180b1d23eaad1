# Importing every model registers it on Base.metadata (Alembic autogenerate,
# test-suite create_all).
from smartnotes.models.collaboration import CollaborationInvite, NoteCollaborator
from smartnotes.models.note import Note, SharedNote
from smartnotes.models.search import RecentSearch
from smartnotes.models.user import AuthSession, AuthUser, User, UserSettings

__all__ = [
    "AuthSession",
    "AuthUser",
    "CollaborationInvite",
    "Note",
    "NoteCollaborator",
    "RecentSearch",
    "SharedNote",
    "User",
    "UserSettings",
]
