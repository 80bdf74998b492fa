"""FastAPI dependencies and exception-to-response mapping shared by the routes."""
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Path
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from booklens.config import Settings
from booklens.db.models import DocumentRecord
from booklens.db.session import get_session
from booklens.exceptions import (
    DocumentNotFoundError,
    DocumentProcessingError,
    ExtractionError,
    FileSizeExceededError,
    FileTypeNotSupportedError,
    GenerationError,
    NotProcessedError,
    StorageError,
    ValidationError,
)
from booklens.services.chunk_store import ChunkStore
from booklens.services.document_processor import DocumentProcessor
from booklens.services.file_storage import LocalFileStorage
from booklens.services.ingestion_service import IngestionService
from booklens.services.llm_service import LLMService
from booklens.services.progress_window import ProgressWindower
from booklens.services.search_service import SearchService
from booklens.services.summary_cache import SummaryCache


def get_app_settings() -> Settings:
    """Get application settings from main app."""
    from booklens.main import settings
    if settings is None:
        raise HTTPException(status_code=503, detail="Settings not initialized")
    return settings


def get_document_processor() -> DocumentProcessor:
    """Get document processor service."""
    from booklens.main import document_processor
    if document_processor is None:
        raise HTTPException(status_code=503, detail="Document processor not initialized")
    return document_processor


def get_storage() -> LocalFileStorage:
    """Get file storage from main app."""
    from booklens.main import file_storage
    if file_storage is None:
        raise HTTPException(status_code=503, detail="File storage not initialized")
    return file_storage


def get_llm_service() -> LLMService:
    """Get LLM service from main app."""
    from booklens.main import llm_service
    if llm_service is None:
        raise HTTPException(
            status_code=503,
            detail="AI service is not configured. Please set LLM_API_KEY in your environment.",
        )
    return llm_service


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_owned_document(
    document_id: str = Path(...),
    user_id: str = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> DocumentRecord:
    """Load a document owned by the caller; anything else is a 404."""
    stmt = select(DocumentRecord).where(
        DocumentRecord.id == document_id,
        DocumentRecord.owner_id == user_id,
    )
    document = session.scalars(stmt).first()
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found or access denied")
    return document


def get_chunk_store(session: Session = Depends(get_session)) -> ChunkStore:
    return ChunkStore(session)


def get_search_service(chunk_store: ChunkStore = Depends(get_chunk_store)) -> SearchService:
    return SearchService(chunk_store)


def get_summary_cache(
    session: Session = Depends(get_session),
    chunk_store: ChunkStore = Depends(get_chunk_store),
    app_settings: Settings = Depends(get_app_settings),
) -> SummaryCache:
    """Get summary cache bound to the request session."""
    return SummaryCache(
        session,
        ProgressWindower(chunk_store),
        model_name=app_settings.llm_model,
        timeout_seconds=app_settings.llm_timeout_seconds,
    )


def get_ingestion_service(
    session: Session = Depends(get_session),
    document_processor: DocumentProcessor = Depends(get_document_processor),
    storage: LocalFileStorage = Depends(get_storage),
) -> IngestionService:
    """Get ingestion service with dependencies."""
    return IngestionService(session, document_processor, storage)


def error_response(e: DocumentProcessingError, **extra: Any) -> JSONResponse:
    """
    Convert a document processing error to a JSON error response.

    Args:
        e: Error raised by a service
        **extra: Additional fields for the response body

    Returns:
        JSONResponse with ``success: false`` and the error message
    """
    body = {"success": False, "error": str(e)}

    if isinstance(e, (FileTypeNotSupportedError, FileSizeExceededError, ValidationError)):
        status_code = 400
    elif isinstance(e, ExtractionError):
        status_code = 422
    elif isinstance(e, NotProcessedError):
        status_code = 404
        body["needsProcessing"] = True
    elif isinstance(e, DocumentNotFoundError):
        status_code = 404
    elif isinstance(e, GenerationError):
        status_code = 502
        body["retryable"] = True
    elif isinstance(e, StorageError):
        status_code = 500
    else:
        status_code = 500

    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)
