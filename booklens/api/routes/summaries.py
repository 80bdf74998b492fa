"""Progress-aware summary and reading-progress endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from booklens.api.dependencies import (
    error_response,
    get_current_user,
    get_llm_service,
    get_owned_document,
    get_summary_cache,
)
from booklens.api.schemas import (
    CachedSummarySchema,
    ProgressUpdateRequest,
    ProgressUpdateResponse,
    SummarizeRequest,
    SummaryListResponse,
    SummaryResponse,
)
from booklens.db.models import DocumentRecord
from booklens.exceptions import DocumentProcessingError
from booklens.services.llm_service import LLMService
from booklens.services.summary_cache import SummaryCache, should_refresh
from booklens.utils.logger import logger

router = APIRouter()


@router.post("/documents/{document_id}/summarize", response_model=SummaryResponse)
async def summarize_progress(
    request: SummarizeRequest,
    document: DocumentRecord = Depends(get_owned_document),
    user_id: str = Depends(get_current_user),
    summary_cache: SummaryCache = Depends(get_summary_cache),
    llm_service: LLMService = Depends(get_llm_service),
):
    """
    Summarize everything up to the reader's progress, from cache when possible.

    Args:
        request: Progress percentage and refresh flag
        document: Document owned by the caller
        user_id: Caller identity
        summary_cache: Summary cache instance
        llm_service: LLM service used on cache misses

    Returns:
        SummaryResponse with the summary and whether it came from cache
    """
    progress = request.progress_percentage

    async def generate(chunks):
        return await llm_service.generate_summary(chunks, progress, document.title)

    try:
        result = await summary_cache.get_or_generate(
            user_id,
            document.id,
            progress,
            generate,
            force_refresh=request.force_refresh,
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except DocumentProcessingError as e:
        logger.error(
            f"Summary failed for {document.id} at {progress}%: {str(e)}",
            extra={"document_id": document.id, "progress_percentage": progress},
        )
        return error_response(e)

    return SummaryResponse(
        summary=result.summary,
        from_cache=result.from_cache,
        progress_percentage=result.progress_percentage,
        chunk_end_index=result.chunk_end_index,
    )


@router.get("/documents/{document_id}/summarize", response_model=SummaryResponse)
def get_cached_summary(
    progress: float = Query(..., ge=0, le=100),
    document: DocumentRecord = Depends(get_owned_document),
    user_id: str = Depends(get_current_user),
    summary_cache: SummaryCache = Depends(get_summary_cache),
):
    """
    Return the cached summary for a progress mark without generating one.

    Falls back to the furthest summary before the mark; ``needsRefresh`` tells
    the reader whether it is stale.
    """
    record = summary_cache.get_cached(user_id, document.id, progress)
    exact = record is not None
    if record is None:
        record = summary_cache.most_recent_summary(user_id, document.id, progress)
    if record is None:
        raise HTTPException(status_code=404, detail="No cached summary for this progress")

    return SummaryResponse(
        summary=record.summary_text,
        from_cache=True,
        progress_percentage=record.progress_percentage,
        chunk_end_index=record.chunk_end_index,
        exact_match=exact,
        needs_refresh=should_refresh(record.progress_percentage, progress),
    )


@router.get("/documents/{document_id}/summaries", response_model=SummaryListResponse)
def list_summaries(
    document: DocumentRecord = Depends(get_owned_document),
    user_id: str = Depends(get_current_user),
    summary_cache: SummaryCache = Depends(get_summary_cache),
):
    """The caller's cached summaries for a document, ordered by progress."""
    records = summary_cache.list_summaries(user_id, document.id)
    return SummaryListResponse(
        summaries=[CachedSummarySchema.model_validate(record) for record in records]
    )


@router.post("/documents/{document_id}/progress", response_model=ProgressUpdateResponse)
def update_progress(
    request: ProgressUpdateRequest,
    document: DocumentRecord = Depends(get_owned_document),
    user_id: str = Depends(get_current_user),
    summary_cache: SummaryCache = Depends(get_summary_cache),
):
    """
    Record a reader's move. Going backwards drops summaries past the new position.
    """
    invalidated = 0
    previous = request.previous_percentage
    if previous is not None and request.progress_percentage < previous:
        invalidated = summary_cache.invalidate_from_progress(
            user_id, document.id, request.progress_percentage
        )

    return ProgressUpdateResponse(
        progress_percentage=request.progress_percentage,
        summaries_invalidated=invalidated,
    )
