"""Ask endpoint for question answering over a document."""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from booklens.api.dependencies import (
    error_response,
    get_app_settings,
    get_chunk_store,
    get_llm_service,
    get_owned_document,
)
from booklens.api.schemas import AskRequest, AskResponse
from booklens.config import Settings
from booklens.db.models import DocumentRecord
from booklens.exceptions import DocumentProcessingError, NotProcessedError
from booklens.services.chunk_store import ChunkStore
from booklens.services.llm_service import LLMService
from booklens.services.progress_window import ProgressWindower
from booklens.utils.logger import logger

router = APIRouter()


@router.post("/documents/{document_id}/ask", response_model=AskResponse)
async def ask_question(
    request: AskRequest,
    document: DocumentRecord = Depends(get_owned_document),
    chunk_store: ChunkStore = Depends(get_chunk_store),
    llm_service: LLMService = Depends(get_llm_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Answer a question about a document.

    Only content up to ``progressPercentage`` is used when it is given, so
    answers never reveal what the reader has not reached yet.

    Args:
        request: AskRequest with question, optional progress and chunk cap
        document: Document owned by the caller
        chunk_store: Chunk store instance
        llm_service: LLM service instance
        app_settings: Application settings (default chunk cap)

    Returns:
        AskResponse with the answer and how many chunks informed it
    """
    if chunk_store.count_chunks(document.id) == 0:
        return error_response(
            NotProcessedError("No book content found. The book may not have been processed yet.")
        )

    if request.progress_percentage is not None:
        chunks = ProgressWindower(chunk_store).chunks_up_to_progress(
            document.id, request.progress_percentage
        )
    else:
        chunks = chunk_store.get_chunks(document.id)
    chunks = chunks[:request.max_chunks or app_settings.qa_max_chunks]

    if not chunks:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "No content found for the specified progress"},
        )

    try:
        result = await llm_service.answer_question(
            request.question,
            chunks,
            context=f"Book: {document.title}",
        )
    except DocumentProcessingError as e:
        logger.error(
            f"Error answering question for {document.id}: {str(e)}",
            extra={"document_id": document.id},
        )
        return error_response(e)

    return AskResponse(
        answer=result["answer"],
        question=request.question,
        book_title=document.title,
        chunks_used=result["chunks_used"],
        token_usage=result.get("token_usage"),
        response_time_ms=result.get("response_time_ms"),
    )
