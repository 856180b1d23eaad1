"""
SmartNotes Backend — Notes Route Handlers
===========================================

What:  Note CRUD plus the dashboard endpoints (recent, stats, insights) and share links.
How:   Every handler except the public share view resolves the signed-in profile
       first and passes its ID to NoteService.

Caching:
    Note data is private and mutable: responses carry `Cache-Control: private, no-cache`
    so clients always revalidate. Public share views may be cached briefly.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_current_user
from smartnotes.exceptions import NotFoundError
from smartnotes.models.user import User
from smartnotes.schemas.common import ErrorResponse
from smartnotes.schemas.note import (
    AIInsight,
    NoteCreate,
    NoteResponse,
    NoteStats,
    NoteUpdate,
    ShareLinkResponse,
    SharedNoteView,
)
from smartnotes.services.note_service import note_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])

PRIVATE_CACHE = "private, no-cache"


@router.get(
    "/notes",
    response_model=List[NoteResponse],
    summary="All of the user's notes, most recently updated first",
)
async def list_notes(
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[NoteResponse]:
    notes = await note_service.get_all_notes(db, user.id)
    response.headers["X-Total-Count"] = str(len(notes))
    response.headers["Cache-Control"] = PRIVATE_CACHE
    return [NoteResponse.model_validate(n) for n in notes]


@router.get("/notes/recent", response_model=List[NoteResponse], summary="Most recently updated notes")
async def recent_notes(
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[NoteResponse]:
    notes = await note_service.get_recent_notes(db, user.id, limit=limit)
    return [NoteResponse.model_validate(n) for n in notes]


@router.get(
    "/notes/search",
    response_model=List[NoteResponse],
    summary="Quick title/content search",
    description="Substring match on title and content. For filters and semantic ranking use POST /api/search.",
)
async def quick_search(
    q: str = Query(default="", max_length=500),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[NoteResponse]:
    notes = await note_service.search_notes(db, user.id, q)
    return [NoteResponse.model_validate(n) for n in notes]


@router.get("/notes/stats", response_model=NoteStats, summary="Dashboard counters")
async def note_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteStats:
    return await note_service.get_user_stats(db, user.id)


@router.get("/notes/insights", response_model=List[AIInsight], summary="Dashboard insight cards")
async def note_insights(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[AIInsight]:
    return await note_service.get_ai_insights(db, user.id)


@router.post(
    "/notes",
    status_code=201,
    response_model=NoteResponse,
    responses={400: {"description": "Invalid note", "model": ErrorResponse}},
    summary="Create a note",
)
async def create_note(
    body: NoteCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.create_note(db, user.id, body)
    return NoteResponse.model_validate(note)


@router.get(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={404: {"description": "Note not found", "model": ErrorResponse}},
    summary="Get a note the user owns or collaborates on",
)
async def get_note(
    note_id: UUID,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.get_note_by_id(db, user.id, note_id)
    if note is None:
        raise NotFoundError(resource="note", resource_id=str(note_id))
    response.headers["Cache-Control"] = PRIVATE_CACHE
    return NoteResponse.model_validate(note)


@router.patch(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={
        403: {"description": "View-only access", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Update a note",
)
async def update_note(
    note_id: UUID,
    body: NoteUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.update_note(db, user.id, note_id, body)
    return NoteResponse.model_validate(note)


@router.delete(
    "/notes/{note_id}",
    status_code=204,
    responses={
        403: {"description": "Not the owner", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Delete a note",
)
async def delete_note(
    note_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await note_service.delete_note(db, user.id, note_id)
    return Response(status_code=204)


@router.post(
    "/notes/{note_id}/share",
    status_code=201,
    response_model=ShareLinkResponse,
    summary="Create a public read-only link",
)
async def share_note(
    note_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ShareLinkResponse:
    return await note_service.share_note(db, user.id, note_id)


@router.get(
    "/shared/{share_id}",
    response_model=SharedNoteView,
    responses={404: {"description": "Unknown share link", "model": ErrorResponse}},
    summary="Open a public share link (no sign-in required)",
)
async def view_shared_note(
    share_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> SharedNoteView:
    view = await note_service.get_shared_note(db, share_id)
    response.headers["Cache-Control"] = "public, max-age=60"
    return view
