"""SmartNotes Backend — search request/response schemas."""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from smartnotes.schemas.note import NoteResponse, NoteType

SearchMode = Literal["semantic", "keyword"]


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date_range.end must not be before date_range.start")
        return self


class SearchFilters(BaseModel):
    """
    Narrowing options shared by keyword and semantic search.

    Empty lists mean "no restriction". `tags` matches notes carrying ANY of
    the given tags.
    """
    types: List[NoteType] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    has_audio: bool = False
    has_images: bool = False


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    mode: SearchMode = "semantic"
    filters: SearchFilters = Field(default_factory=SearchFilters)
    # When true the query is recorded in the user's recent searches
    remember: bool = True


class SearchResponse(BaseModel):
    query: str
    mode: SearchMode
    results: List[NoteResponse]


class RecentSearchResponse(BaseModel):
    id: uuid.UUID
    query: str
    mode: SearchMode
    timestamp: datetime

    model_config = {"from_attributes": True}


class SuggestionsResponse(BaseModel):
    query: str
    suggestions: List[str]
