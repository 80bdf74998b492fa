"""Keyword search over a document's chunks with fallback strategies."""
import math
import re
from typing import Dict, List, Optional, Tuple

from booklens.exceptions import NotProcessedError
from booklens.models.document import Chunk, SearchMatch, SearchResult
from booklens.services.chunk_store import ChunkStore
from booklens.utils.logger import logger
from booklens.utils.metrics import SEARCHES

CONTEXT_CHARS = 150
HIGHLIGHT_OPEN = '<mark class="search-highlight">'
HIGHLIGHT_CLOSE = "</mark>"

# Word-by-word fallback only looks at the first few significant words
MAX_QUERY_WORDS = 3
MIN_WORD_LENGTH = 3
MIN_VARIATION_LENGTH = 3


def _is_word_char(char: str) -> bool:
    return char.isalnum() or char == "_"


def _at_word_boundary(text: str, start: int, end: int) -> bool:
    before_ok = start == 0 or not _is_word_char(text[start - 1])
    after_ok = end >= len(text) or not _is_word_char(text[end])
    return before_ok and after_ok


def find_matches(
    text: str,
    term: str,
    case_sensitive: bool = False,
    whole_words: bool = False,
    context_chars: int = CONTEXT_CHARS,
) -> List[SearchMatch]:
    """
    Find every occurrence of a term, overlapping ones included.

    Args:
        text: Chunk content
        term: Literal search term
        case_sensitive: Match exact case
        whole_words: Keep only occurrences bounded by non-word characters
        context_chars: Characters of context on each side of a match

    Returns:
        Matches in order of position; the highlighted context keeps the
        original case of the matched text
    """
    if not term:
        return []

    pattern = re.compile(re.escape(term), 0 if case_sensitive else re.IGNORECASE)
    matches = []
    index = 0

    while index < len(text):
        found = pattern.search(text, index)
        if not found:
            break

        start, end = found.start(), found.end()
        index = start + 1

        if whole_words and not _at_word_boundary(text, start, end):
            continue

        context_start = max(0, start - context_chars)
        context_end = min(len(text), end + context_chars)
        highlighted = (
            f"{text[context_start:start]}{HIGHLIGHT_OPEN}{text[start:end]}"
            f"{HIGHLIGHT_CLOSE}{text[end:context_end]}"
        )
        matches.append(
            SearchMatch(
                start=start,
                end=end,
                context=text[context_start:context_end],
                highlighted=highlighted,
            )
        )

    return matches


def chunk_label(chunk: Chunk) -> str:
    """Human-readable location of a chunk."""
    return f"Page {chunk.page_start or chunk.chunk_index + 1}"


class SearchService:
    """Keyword search with phrase, word-by-word and partial-word fallbacks."""

    def __init__(self, chunk_store: ChunkStore):
        self.chunk_store = chunk_store

    def search(
        self,
        document_id: str,
        query: str,
        case_sensitive: bool = False,
        whole_words: bool = False,
        max_results: int = 50,
    ) -> Tuple[List[SearchResult], Optional[str]]:
        """
        Search a document's chunks.

        Strategies run in order and the first one with results wins:
        the exact query, then its individual words, then trimmed variations
        of the query.

        Args:
            document_id: Document identifier
            query: Search text
            case_sensitive: Case-sensitive matching (exact-query strategy only)
            whole_words: Require word boundaries (exact-query strategy only)
            max_results: Maximum number of chunks returned

        Returns:
            (results ordered by chunk index, name of the winning strategy or None)

        Raises:
            ValueError: If the query is blank or max_results is not positive
            NotProcessedError: If the document has no chunks
        """
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty")
        if max_results < 1:
            raise ValueError("max_results must be at least 1")

        if self.chunk_store.count_chunks(document_id) == 0:
            raise NotProcessedError(f"Document {document_id} has not been processed yet")

        strategy = None
        terms: List[str] = []

        chunks = self._search_phrase(document_id, query, case_sensitive, whole_words, max_results)
        if chunks:
            strategy, terms = "phrase", [query]

        if not chunks and re.search(r"\s", query):
            chunks, words = self._search_words(document_id, query, max_results)
            if chunks:
                strategy, terms = "words", words

        if not chunks and len(query) > 3:
            chunks, variation = self._search_variations(document_id, query, max_results)
            if chunks:
                strategy, terms = "partial", [variation]

        if strategy == "phrase":
            match_case, match_words = case_sensitive, whole_words
        else:
            match_case, match_words = False, False

        results = []
        for chunk in chunks:
            matches: List[SearchMatch] = []
            for term in terms:
                matches.extend(find_matches(chunk.content, term, match_case, match_words))
            matches.sort(key=lambda match: (match.start, match.end))
            results.append(
                SearchResult(
                    id=chunk.id,
                    chunk_index=chunk.chunk_index,
                    text_content=chunk.content,
                    matches=matches,
                    chapter_title=chunk_label(chunk),
                )
            )

        SEARCHES.labels(strategy=strategy or "none").inc()
        logger.info(
            f"Search for '{query}' returned {len(results)} results",
            extra={
                "document_id": document_id,
                "search_strategy": strategy,
                "total_results": len(results),
            },
        )
        return results, strategy

    def _search_phrase(
        self,
        document_id: str,
        query: str,
        case_sensitive: bool,
        whole_words: bool,
        max_results: int,
    ) -> List[Chunk]:
        if not whole_words:
            return self.chunk_store.find_chunks(document_id, query, case_sensitive, max_results)

        candidates = self.chunk_store.find_chunks(document_id, query, case_sensitive)
        chunks = [
            chunk for chunk in candidates
            if find_matches(chunk.content, query, case_sensitive, whole_words=True)
        ]
        return chunks[:max_results]

    def _search_words(
        self, document_id: str, query: str, max_results: int
    ) -> Tuple[List[Chunk], List[str]]:
        words = [word for word in query.lower().split() if len(word) >= MIN_WORD_LENGTH]
        if not words:
            return [], []

        per_word = math.ceil(max_results / len(words))
        searched = words[:MAX_QUERY_WORDS]
        merged: Dict[str, Chunk] = {}

        for word in searched:
            for chunk in self.chunk_store.find_chunks(document_id, word, False, per_word):
                merged.setdefault(chunk.id, chunk)

        chunks = sorted(merged.values(), key=lambda chunk: chunk.chunk_index)
        return chunks[:max_results], searched

    def _search_variations(
        self, document_id: str, query: str, max_results: int
    ) -> Tuple[List[Chunk], Optional[str]]:
        variations = [query.lower(), query[:-1], query[1:]]
        per_variation = math.ceil(max_results / len(variations))

        for variation in variations:
            if len(variation) < MIN_VARIATION_LENGTH:
                continue
            chunks = self.chunk_store.find_chunks(document_id, variation, False, per_variation)
            if chunks:
                return chunks[:max_results], variation

        return [], None
