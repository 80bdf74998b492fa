"""Pydantic schemas for API requests and responses."""
import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_QUERY_LENGTH = 500
MAX_QUESTION_LENGTH = 1000


def _clean_text(v: str, field_name: str) -> str:
    """Remove control characters except newline, tab and carriage return, then strip."""
    if not isinstance(v, str):
        v = str(v)
    cleaned = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', v).strip()
    if not cleaned:
        raise ValueError(f"{field_name} cannot be empty after cleaning")
    return cleaned


class CamelModel(BaseModel):
    """Base schema exchanged as camelCase JSON; snake_case is accepted on input too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentResponse(CamelModel):
    """Document metadata."""

    id: str
    title: str
    author: Optional[str] = None
    file_name: str
    file_type: str
    file_size: Optional[int] = None
    cover_url: Optional[str] = None
    total_pages: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UploadResponse(CamelModel):
    """Response schema for document upload."""

    success: bool = True
    document: DocumentResponse
    message: str = Field(default="Document uploaded successfully")


class DeleteResponse(CamelModel):
    """Response schema for document deletion."""

    success: bool = True
    document_id: str


class ProcessResponse(CamelModel):
    """Response schema for processing and reprocessing."""

    success: bool = True
    message: str
    chunks_created: Optional[int] = None
    already_processed: Optional[bool] = None
    book_title: Optional[str] = None


class ProcessStatusResponse(CamelModel):
    """Processing status derived from the stored chunk count."""

    success: bool = True
    is_processed: bool
    chunks_count: int
    book_title: Optional[str] = None


class SearchRequest(CamelModel):
    """Request schema for keyword search."""

    query: str = Field(..., min_length=1, max_length=MAX_QUERY_LENGTH, description="Search text")
    case_sensitive: bool = False
    whole_words: bool = False
    max_results: Optional[int] = Field(default=None, ge=1, le=200)

    @field_validator("query")
    @classmethod
    def clean_query(cls, v: str) -> str:
        return _clean_text(v, "Query")


class SearchMatchSchema(BaseModel):
    """One occurrence inside a chunk."""

    start: int
    end: int
    context: str
    highlighted: str


class SearchResultSchema(BaseModel):
    """A matching chunk. Keys stay snake_case for existing reader clients."""

    id: str
    chunk_index: int
    text_content: str
    matches: List[SearchMatchSchema]
    chapter_title: Optional[str] = None


class SearchOptions(CamelModel):
    case_sensitive: bool
    whole_words: bool
    max_results: int


class SearchResponse(CamelModel):
    """Response schema for keyword search."""

    success: bool = True
    results: List[SearchResultSchema]
    query: str
    total_results: int
    book_title: Optional[str] = None
    search_strategy: Optional[str] = None
    search_options: SearchOptions


class SummarizeRequest(CamelModel):
    """Request schema for a progress summary."""

    progress_percentage: float = Field(..., ge=0, le=100)
    force_refresh: bool = False


class SummaryResponse(CamelModel):
    """Response schema for a progress summary."""

    success: bool = True
    summary: str
    from_cache: bool
    progress_percentage: float
    chunk_end_index: int
    exact_match: bool = True
    needs_refresh: bool = False


class CachedSummarySchema(CamelModel):
    progress_percentage: float
    summary_text: str
    chunk_end_index: int
    model_used: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SummaryListResponse(CamelModel):
    success: bool = True
    summaries: List[CachedSummarySchema]


class ProgressUpdateRequest(CamelModel):
    """A reader moved to a new position."""

    progress_percentage: float = Field(..., ge=0, le=100)
    previous_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class ProgressUpdateResponse(CamelModel):
    success: bool = True
    progress_percentage: float
    summaries_invalidated: int


class AskRequest(CamelModel):
    """Request schema for asking questions."""

    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH, description="User's question")
    progress_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    max_chunks: Optional[int] = Field(default=None, ge=1, le=100)

    @field_validator("question")
    @classmethod
    def clean_question(cls, v: str) -> str:
        """
        Clean question by removing invalid control characters.

        Args:
            v: Raw question string

        Returns:
            Cleaned question string
        """
        return _clean_text(v, "Question")


class AskResponse(CamelModel):
    """Response schema for question answering."""

    success: bool = True
    answer: str = Field(..., description="LLM-generated answer")
    question: str
    book_title: Optional[str] = None
    chunks_used: int
    token_usage: Optional[Dict[str, int]] = Field(None, description="Token usage statistics")
    response_time_ms: Optional[float] = Field(None, description="Response time in milliseconds")
