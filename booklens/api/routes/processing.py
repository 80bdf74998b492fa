"""Processing endpoints: ingest, reprocess and status."""
from fastapi import APIRouter, Depends

from booklens.api.dependencies import (
    error_response,
    get_chunk_store,
    get_ingestion_service,
    get_owned_document,
)
from booklens.api.schemas import ProcessResponse, ProcessStatusResponse
from booklens.db.models import DocumentRecord
from booklens.exceptions import DocumentProcessingError
from booklens.services.chunk_store import ChunkStore
from booklens.services.ingestion_service import IngestionService
from booklens.utils.logger import logger

router = APIRouter()


def _run_ingestion(
    document: DocumentRecord, ingestion_service: IngestionService, reprocess: bool
):
    action = "reprocess" if reprocess else "process"
    try:
        result = ingestion_service.process_document(document, reprocess=reprocess)
    except DocumentProcessingError as e:
        logger.error(
            f"Failed to {action} document {document.id}: {str(e)}",
            extra={"document_id": document.id},
        )
        return error_response(e)

    if result.get("already_processed"):
        return ProcessResponse(
            message="Book has already been processed",
            already_processed=True,
            book_title=document.title,
        )

    return ProcessResponse(
        message=f"Book {action}ed successfully",
        chunks_created=result["chunks_created"],
        book_title=document.title,
    )


@router.post(
    "/documents/{document_id}/process",
    response_model=ProcessResponse,
    response_model_exclude_none=True,
)
def process_document(
    document: DocumentRecord = Depends(get_owned_document),
    ingestion_service: IngestionService = Depends(get_ingestion_service),
):
    """
    Extract and chunk a document. A no-op when chunks already exist.

    Returns:
        ProcessResponse with chunksCreated, or alreadyProcessed
    """
    return _run_ingestion(document, ingestion_service, reprocess=False)


@router.get("/documents/{document_id}/process", response_model=ProcessStatusResponse)
def get_processing_status(
    document: DocumentRecord = Depends(get_owned_document),
    chunk_store: ChunkStore = Depends(get_chunk_store),
):
    """Processing status, derived from the stored chunk count."""
    count = chunk_store.count_chunks(document.id)
    return ProcessStatusResponse(
        is_processed=count > 0,
        chunks_count=count,
        book_title=document.title,
    )


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=ProcessResponse,
    response_model_exclude_none=True,
)
def reprocess_document(
    document: DocumentRecord = Depends(get_owned_document),
    ingestion_service: IngestionService = Depends(get_ingestion_service),
):
    """Drop chunks and cached summaries, then ingest again."""
    return _run_ingestion(document, ingestion_service, reprocess=True)
