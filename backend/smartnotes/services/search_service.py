"""
SmartNotes Backend — Search Service
=====================================

What:  Keyword and semantic note search, recent-search history, query suggestions.
Why:   The search screen offers both modes; semantic search must degrade to
       keyword search when the model provider is unavailable.
How:   Filters (type, audio, image, date range) become SQL predicates. The tag
       filter runs in Python after the query because tags are a JSON array.

Semantic ranking:
    1. Load the newest `semantic_candidate_limit` notes matching the filters
    2. Embed notes whose cached embedding is empty (title + content)
    3. Embed the query, rank by cosine similarity, keep `search_result_limit`
    Any provider failure in steps 2-3 → keyword_search with the same arguments.
"""

import logging
import math
import uuid
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import Select, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.config import settings
from smartnotes.database import as_utc
from smartnotes.exceptions import CircuitBreakerOpenError, DatabaseError, LLMServiceError
from smartnotes.models.note import Note
from smartnotes.models.search import RecentSearch
from smartnotes.schemas.search import SearchFilters
from smartnotes.services.gemini_service import gemini_service
from smartnotes.services.llm_base import LLMService
from smartnotes.services.note_service import like_pattern

logger = logging.getLogger(__name__)

AI_FAILURES = (LLMServiceError, CircuitBreakerOpenError)

MAX_SUGGESTIONS = 5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """0.0 for empty, zero or mismatched vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").strip().lower()


def apply_tag_filter(notes: Iterable[Note], tags: Sequence[str]) -> List[Note]:
    """Keep notes that carry ANY of `tags`. Empty `tags` keeps everything."""
    wanted = {normalize_tag(t) for t in tags if normalize_tag(t)}
    if not wanted:
        return list(notes)
    return [
        note for note in notes
        if wanted.intersection(normalize_tag(t) for t in (note.tags or []))
    ]


class SearchService:
    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or gemini_service

    def _filtered_query(self, user_id: uuid.UUID, filters: SearchFilters) -> Select:
        query = select(Note).where(Note.user_id == user_id)
        if filters.types:
            query = query.where(Note.type.in_(filters.types))
        if filters.has_audio:
            query = query.where(Note.audio_uri.is_not(None))
        if filters.has_images:
            query = query.where(Note.image_uri.is_not(None))
        if filters.date_range:
            query = query.where(
                Note.created_at >= as_utc(filters.date_range.start),
                Note.created_at <= as_utc(filters.date_range.end),
            )
        return query.order_by(Note.updated_at.desc())

    async def keyword_search(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        query: str,
        filters: Optional[SearchFilters] = None,
    ) -> List[Note]:
        """
        Case-insensitive substring search on title and content.

        The result limit applies before the tag filter, so a tag-filtered
        search can return fewer than `search_result_limit` notes.
        """
        filters = filters or SearchFilters()
        pattern = like_pattern(query.strip())
        statement = (
            self._filtered_query(user_id, filters)
            .where(
                or_(
                    Note.title.ilike(pattern, escape="\\"),
                    Note.content.ilike(pattern, escape="\\"),
                )
            )
            .limit(settings.search_result_limit)
        )
        try:
            result = await db.execute(statement)
        except SQLAlchemyError as e:
            logger.error("Keyword search failed: %s", str(e), exc_info=True)
            raise DatabaseError(message="Search failed. Please try again.") from e
        return apply_tag_filter(result.scalars().all(), filters.tags)

    async def semantic_search(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        query: str,
        filters: Optional[SearchFilters] = None,
    ) -> List[Note]:
        filters = filters or SearchFilters()
        statement = self._filtered_query(user_id, filters).limit(settings.semantic_candidate_limit)
        try:
            result = await db.execute(statement)
        except SQLAlchemyError as e:
            logger.error("Semantic search candidate query failed: %s", str(e), exc_info=True)
            raise DatabaseError(message="Search failed. Please try again.") from e

        candidates = apply_tag_filter(result.scalars().all(), filters.tags)
        if not candidates:
            return []

        try:
            stale = [note for note in candidates if not note.embedding]
            if stale:
                vectors = await self.llm.embed([note.searchable_text for note in stale])
                for note, vector in zip(stale, vectors):
                    note.embedding = list(vector)
                await db.flush()
                logger.info("Embedded %d notes for semantic search", len(stale))
            query_vectors = await self.llm.embed([query], for_query=True)
        except AI_FAILURES as e:
            logger.warning("Semantic search unavailable, falling back to keyword search: %s", e.message)
            return await self.keyword_search(db, user_id, query, filters)

        query_vector = query_vectors[0]
        ranked = sorted(
            candidates,
            key=lambda note: cosine_similarity(query_vector, note.embedding or []),
            reverse=True,
        )
        return ranked[: settings.search_result_limit]

    # ── Recent searches ───────────────────────────────────────────────────

    async def save_recent_search(
        self, db: AsyncSession, user_id: uuid.UUID, query: str, mode: str
    ) -> None:
        """History is a convenience: failures are logged and never reach the caller."""
        try:
            async with db.begin_nested():
                db.add(RecentSearch(user_id=user_id, query=query.strip(), mode=mode))
                await db.flush()
        except SQLAlchemyError as e:
            logger.error("Error saving recent search: %s", str(e))

    async def get_recent_searches(self, db: AsyncSession, user_id: uuid.UUID) -> List[RecentSearch]:
        try:
            result = await db.execute(
                select(RecentSearch)
                .where(RecentSearch.user_id == user_id)
                .order_by(RecentSearch.timestamp.desc())
                .limit(settings.recent_search_limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Error fetching recent searches: %s", str(e))
            return []

    async def clear_recent_searches(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        try:
            await db.execute(delete(RecentSearch).where(RecentSearch.user_id == user_id))
        except SQLAlchemyError as e:
            logger.error("Error clearing recent searches: %s", str(e))
            raise DatabaseError(message="Could not clear your search history.") from e

    # ── Suggestions ───────────────────────────────────────────────────────

    async def get_search_suggestions(
        self, db: AsyncSession, user_id: uuid.UUID, query: str
    ) -> List[str]:
        query = query.strip()
        if not query:
            return []

        titles_result = await db.execute(
            select(Note.title)
            .where(Note.user_id == user_id)
            .order_by(Note.updated_at.desc())
            .limit(50)
        )
        titles = list(titles_result.scalars().all())

        try:
            return (await self.llm.suggest_queries(query, titles))[:MAX_SUGGESTIONS]
        except AI_FAILURES as e:
            logger.warning("Suggestions unavailable, using history: %s", e.message)

        recent = await self.get_recent_searches(db, user_id)
        needle = query.lower()
        suggestions: List[str] = []
        for candidate in [r.query for r in recent] + titles:
            if candidate.lower().startswith(needle) and candidate not in suggestions:
                suggestions.append(candidate)
            if len(suggestions) == MAX_SUGGESTIONS:
                break
        return suggestions


search_service = SearchService()
