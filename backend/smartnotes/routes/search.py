"""
SmartNotes Backend — Search Routes
====================================

POST /api/search runs keyword or semantic search with filters. Semantic search
silently degrades to keyword search when the AI provider is unavailable, so the
response mode is always the mode the client asked for.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import get_db_session
from smartnotes.deps import get_current_user
from smartnotes.models.user import User
from smartnotes.schemas.note import NoteResponse
from smartnotes.schemas.search import (
    RecentSearchResponse,
    SearchRequest,
    SearchResponse,
    SuggestionsResponse,
)
from smartnotes.services.search_service import search_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["Search"])


@router.post("", response_model=SearchResponse, summary="Search notes")
async def search(
    body: SearchRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SearchResponse:
    if body.mode == "semantic":
        notes = await search_service.semantic_search(db, user.id, body.query, body.filters)
    else:
        notes = await search_service.keyword_search(db, user.id, body.query, body.filters)

    if body.remember:
        await search_service.save_recent_search(db, user.id, body.query, body.mode)

    return SearchResponse(
        query=body.query,
        mode=body.mode,
        results=[NoteResponse.model_validate(n) for n in notes],
    )


@router.get("/recent", response_model=List[RecentSearchResponse], summary="Recent searches")
async def recent_searches(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> List[RecentSearchResponse]:
    searches = await search_service.get_recent_searches(db, user.id)
    return [RecentSearchResponse.model_validate(s) for s in searches]


@router.delete("/recent", status_code=204, summary="Clear search history")
async def clear_recent_searches(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await search_service.clear_recent_searches(db, user.id)
    return Response(status_code=204)


@router.get("/suggestions", response_model=SuggestionsResponse, summary="Query completions")
async def suggestions(
    q: str = Query(default="", max_length=500),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SuggestionsResponse:
    return SuggestionsResponse(
        query=q,
        suggestions=await search_service.get_search_suggestions(db, user.id, q),
    )
