"""Document processing: extraction, normalization and word-count chunking."""
from typing import List, Optional, Sequence, Tuple

from booklens.models.document import Chunk
from booklens.services.extraction import extract_pages, get_file_type
from booklens.utils.logger import logger
from booklens.utils.text_cleaner import normalize_pages

# Chunks this short are chunking artifacts (stray punctuation and the like)
MIN_CHUNK_CHARS = 20


class DocumentProcessor:
    """Turns raw PDF/EPUB bytes into an ordered list of chunks."""

    def __init__(self, chunk_size: int = 500, epub_retry_rounds: int = 3):
        """
        Initialize document processor.

        Args:
            chunk_size: Target chunk size in words
            epub_retry_rounds: Retry rounds for EPUB extraction
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1 word")
        self.chunk_size = chunk_size
        self.epub_retry_rounds = epub_retry_rounds
        logger.info(f"DocumentProcessor initialized with chunk size {chunk_size} words")

    def extract_raw_pages(
        self, data: bytes, mime_type: Optional[str], filename: Optional[str] = None
    ) -> List[str]:
        """
        Extract page text without normalization.

        Blank pages are kept, so the list length is the document's page count
        as seen by the winning extraction strategy.

        Raises:
            FileTypeNotSupportedError: If the format is not PDF or EPUB
            ExtractionError: If no text could be extracted
        """
        file_type = get_file_type(mime_type, filename)
        return extract_pages(data, file_type, retry_rounds=self.epub_retry_rounds)

    def normalize(self, raw_pages: Sequence[str]) -> List[Tuple[int, str]]:
        """
        Normalize raw pages and drop the empty ones.

        Args:
            raw_pages: Page strings from extract_raw_pages

        Returns:
            List of (page_number, page_text) tuples
        """
        pages = normalize_pages(raw_pages)

        total_chars = sum(len(text) for _, text in pages)
        logger.info(
            f"Normalized {len(raw_pages)} raw pages, "
            f"{len(pages)} kept, {total_chars:,} characters",
            extra={"page_count": len(pages)},
        )
        return pages

    def extract_text(
        self, data: bytes, mime_type: Optional[str], filename: Optional[str] = None
    ) -> List[Tuple[int, str]]:
        """
        Extract and normalize page text.

        Args:
            data: Raw document bytes
            mime_type: Declared MIME type
            filename: Original file name (fallback for type detection)

        Returns:
            List of (page_number, page_text) tuples

        Raises:
            FileTypeNotSupportedError: If the format is not PDF or EPUB
            ExtractionError: If no text could be extracted
        """
        return self.normalize(self.extract_raw_pages(data, mime_type, filename))

    def chunk_pages(
        self, pages: Sequence[Tuple[int, str]], document_id: Optional[str] = None
    ) -> List[Chunk]:
        """
        Pack page words greedily into chunks of at most ``chunk_size`` words.

        A chunk never spans two pages. Chunk indices are global to the
        document and contiguous.

        Args:
            pages: List of (page_number, normalized_text) tuples
            document_id: Parent document identifier

        Returns:
            Ordered list of Chunk objects
        """
        chunks: List[Chunk] = []

        def flush(words: List[str], page_num: int) -> None:
            content = " ".join(words).strip()
            if len(content) <= MIN_CHUNK_CHARS:
                return
            chunks.append(
                Chunk(
                    content=content,
                    chunk_index=len(chunks),
                    word_count=len(words),
                    page_start=page_num,
                    page_end=page_num,
                    document_id=document_id,
                )
            )

        for page_num, page_text in pages:
            buffer: List[str] = []
            for word in page_text.split():
                if len(buffer) + 1 > self.chunk_size and buffer:
                    flush(buffer, page_num)
                    buffer = [word]
                else:
                    buffer.append(word)
            if buffer:
                flush(buffer, page_num)

        logger.info(
            f"Created {len(chunks)} chunks from {len(pages)} pages",
            extra={"document_id": document_id, "chunk_count": len(chunks)},
        )
        return chunks

    def process_document(
        self,
        data: bytes,
        mime_type: Optional[str],
        document_id: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> List[Chunk]:
        """
        Process a document and return its chunks.

        Args:
            data: Raw document bytes
            mime_type: Declared MIME type
            document_id: Unique document identifier
            filename: Original file name

        Returns:
            List of Chunk objects in reading order
        """
        pages = self.extract_text(data, mime_type, filename)
        return self.chunk_pages(pages, document_id)
