"""Ingestion orchestration: stored file -> metadata -> chunks in the database."""
import time
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booklens.db.models import DocumentRecord
from booklens.exceptions import (
    DocumentNotFoundError,
    DocumentProcessingError,
    ExtractionError,
    PartialMetadataFailure,
    StorageError,
)
from booklens.services.chunk_store import ChunkStore
from booklens.services.document_processor import DocumentProcessor
from booklens.services.epub_extractor import extract_epub_metadata
from booklens.services.extraction import get_file_type
from booklens.services.file_storage import LocalFileStorage
from booklens.services.progress_window import ProgressWindower
from booklens.services.summary_cache import SummaryCache
from booklens.utils.logger import logger
from booklens.utils.metrics import DOCUMENTS_PROCESSED
from booklens.utils.tracer import start_span


class IngestionService:
    """Service for turning an uploaded document into stored chunks."""

    def __init__(
        self,
        session: Session,
        document_processor: DocumentProcessor,
        storage: LocalFileStorage,
    ):
        """
        Initialize ingestion service.

        Args:
            session: SQLAlchemy session bound to the request
            document_processor: Extraction and chunking pipeline
            storage: Storage holding the uploaded bytes
        """
        self.session = session
        self.document_processor = document_processor
        self.storage = storage
        self.chunk_store = ChunkStore(session)

    def process_document(self, document: DocumentRecord, reprocess: bool = False) -> Dict[str, Any]:
        """
        Extract, chunk and store a document.

        Steps:
        1. Skip documents that already have chunks (unless reprocessing)
        2. Read the stored file
        3. For EPUBs, back-fill title, author, cover and page estimate
        4. Extract and normalize page text, then chunk it
        5. Replace the document's chunks in one transaction

        Args:
            document: Document row to ingest
            reprocess: Drop existing chunks and cached summaries first

        Returns:
            Dict with success, chunks_created or already_processed, and timing

        Raises:
            FileTypeNotSupportedError: If the document is neither PDF nor EPUB
            ExtractionError: If no text could be extracted
            StorageError: If the file could not be read or chunks not written
        """
        start_time = time.time()
        document_id = document.id

        if not reprocess:
            existing = self.chunk_store.count_chunks(document_id)
            if existing > 0:
                logger.info(
                    f"Document {document_id} already processed ({existing} chunks)",
                    extra={"document_id": document_id, "chunk_count": existing},
                )
                return {"success": True, "already_processed": True, "chunks_count": existing}

        file_type = get_file_type(document.file_type, document.file_name)

        try:
            data = self.storage.read_document(document.file_path)
        except (DocumentNotFoundError, OSError) as e:
            raise StorageError(f"Failed to read stored file for document {document_id}: {str(e)}") from e

        if reprocess:
            self._clear_previous_results(document_id)

        if file_type == "epub":
            self._apply_epub_metadata(document, data)

        try:
            with start_span("document.ingest", document_id=document_id, file_type=file_type):
                raw_pages = self.document_processor.extract_raw_pages(
                    data, document.file_type, document.file_name
                )
                pages = self.document_processor.normalize(raw_pages)
                chunks = self.document_processor.chunk_pages(pages, document_id)
                if not chunks:
                    raise ExtractionError("No text content extracted from file")

                if file_type == "pdf" and not document.total_pages:
                    document.total_pages = len(raw_pages)

                chunks_created = self.chunk_store.replace_chunks(document_id, chunks)
        except DocumentProcessingError:
            DOCUMENTS_PROCESSED.labels(file_type=file_type, outcome="failed").inc()
            raise

        DOCUMENTS_PROCESSED.labels(file_type=file_type, outcome="processed").inc()
        processing_time = time.time() - start_time

        logger.info(
            f"Document processed successfully: {document_id}",
            extra={
                "document_id": document_id,
                "chunk_count": chunks_created,
                "page_count": len(pages),
                "response_time_ms": processing_time * 1000,
            },
        )

        return {
            "success": True,
            "chunks_created": chunks_created,
            "processing_time_seconds": processing_time,
        }

    def _clear_previous_results(self, document_id: str) -> None:
        """Drop old chunks and every reader's cached summaries; failures are logged."""
        try:
            self.chunk_store.delete_chunks(document_id)
        except StorageError as e:
            logger.warning(
                f"Could not delete existing chunks for {document_id}: {str(e)}",
                extra={"document_id": document_id},
            )

        try:
            cache = SummaryCache(self.session, ProgressWindower(self.chunk_store))
            cache.invalidate_document(document_id)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning(
                f"Could not delete existing summaries for {document_id}: {str(e)}",
                extra={"document_id": document_id},
            )

    def _apply_epub_metadata(self, document: DocumentRecord, data: bytes) -> None:
        """Back-fill document fields from EPUB metadata. Never fails ingestion."""
        try:
            metadata = extract_epub_metadata(data)
        except PartialMetadataFailure as e:
            logger.warning(
                f"Failed to extract EPUB metadata: {str(e)}",
                extra={"document_id": document.id},
            )
            return

        if metadata.is_empty():
            return

        if metadata.cover_image:
            try:
                document.cover_url = self.storage.save_cover(
                    document.id, metadata.cover_image, metadata.cover_media_type or "image/jpeg"
                )
            except OSError as e:
                logger.warning(f"Failed to store cover image: {str(e)}", extra={"document_id": document.id})

        if metadata.title and metadata.title.strip():
            document.title = metadata.title.strip()
        if metadata.author and metadata.author.strip():
            document.author = metadata.author.strip()
        if metadata.estimated_pages and metadata.estimated_pages > 0:
            document.total_pages = metadata.estimated_pages

        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error updating document metadata: {str(e)}", extra={"document_id": document.id})
            return

        logger.info(
            f"Updated metadata for document {document.id}",
            extra={"document_id": document.id, "page_count": document.total_pages},
        )
