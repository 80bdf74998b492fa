"""Document data models."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Chunk:
    """Represents a text chunk with page provenance."""

    content: str
    chunk_index: int
    word_count: int
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    document_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class EpubMetadata:
    """Metadata read from an EPUB package document."""

    title: Optional[str] = None
    author: Optional[str] = None
    cover_image: Optional[bytes] = None
    cover_media_type: Optional[str] = None
    estimated_pages: Optional[int] = None

    def is_empty(self) -> bool:
        return not (self.title or self.author or self.cover_image or self.estimated_pages)


@dataclass
class SearchMatch:
    """A single occurrence of a search term inside a chunk."""

    start: int
    end: int
    context: str
    highlighted: str


@dataclass
class SearchResult:
    """A chunk that matched a search, with every occurrence found in it."""

    id: str
    chunk_index: int
    text_content: str
    matches: List[SearchMatch] = field(default_factory=list)
    chapter_title: Optional[str] = None


@dataclass
class SummaryResult:
    """Outcome of a progress summary request."""

    summary: str
    from_cache: bool
    progress_percentage: float
    chunk_end_index: int
