"""Keyword search endpoint."""
from dataclasses import asdict

from fastapi import APIRouter, Depends

from booklens.api.dependencies import (
    error_response,
    get_app_settings,
    get_owned_document,
    get_search_service,
)
from booklens.api.schemas import SearchOptions, SearchRequest, SearchResponse, SearchResultSchema
from booklens.config import Settings
from booklens.db.models import DocumentRecord
from booklens.exceptions import DocumentProcessingError, NotProcessedError
from booklens.services.search_service import SearchService
from booklens.utils.logger import logger

router = APIRouter()


@router.post("/documents/{document_id}/search", response_model=SearchResponse)
def search_document(
    request: SearchRequest,
    document: DocumentRecord = Depends(get_owned_document),
    search_service: SearchService = Depends(get_search_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Search a processed document.

    Args:
        request: Query and matching options
        document: Document owned by the caller
        search_service: Search service instance
        app_settings: Application settings (default result cap)

    Returns:
        SearchResponse with matching chunks and highlighted contexts
    """
    max_results = request.max_results or app_settings.search_max_results
    try:
        results, strategy = search_service.search(
            document.id,
            request.query,
            case_sensitive=request.case_sensitive,
            whole_words=request.whole_words,
            max_results=max_results,
        )
    except NotProcessedError as e:
        return error_response(
            NotProcessedError("Book has not been processed yet. Please process the book first."),
            details=str(e),
        )
    except DocumentProcessingError as e:
        logger.error(f"Search failed for {document.id}: {str(e)}", extra={"document_id": document.id})
        return error_response(e)

    return SearchResponse(
        results=[SearchResultSchema(**asdict(result)) for result in results],
        query=request.query,
        total_results=len(results),
        book_title=document.title,
        search_strategy=strategy,
        search_options=SearchOptions(
            case_sensitive=request.case_sensitive,
            whole_words=request.whole_words,
            max_results=max_results,
        ),
    )
