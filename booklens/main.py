"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from booklens.api.routes import ask, documents, processing, search, summaries
from booklens.config import Settings
from booklens.db.session import dispose_db, init_db
from booklens.services.document_processor import DocumentProcessor
from booklens.services.file_storage import LocalFileStorage
from booklens.services.llm_service import LLMService
from booklens.utils.logger import logger
from booklens.utils.tracer import initialize_tracing, shutdown_tracing


# Global services (initialized in lifespan)
settings: Optional[Settings] = None
document_processor: Optional[DocumentProcessor] = None
file_storage: Optional[LocalFileStorage] = None
llm_service: Optional[LLMService] = None
tracer_provider = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global settings, document_processor, file_storage, llm_service, tracer_provider

    # Startup
    logger.info("Starting BookLens")
    settings = Settings()

    # Tracing before services
    tracer_provider = initialize_tracing(settings)

    init_db(settings.database_url)

    document_processor = DocumentProcessor(
        chunk_size=settings.chunk_size_words,
        epub_retry_rounds=settings.epub_retry_rounds,
    )
    file_storage = LocalFileStorage(
        upload_dir=settings.upload_dir,
        public_base_url=settings.public_base_url,
    )
    app.mount("/files/covers", StaticFiles(directory=file_storage.covers_dir), name="covers")

    if settings.llm_api_key:
        llm_service = LLMService(
            api_key=settings.llm_api_key,
            api_url=settings.llm_api_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
            max_tokens=settings.llm_max_tokens,
            max_context_words=settings.max_context_words,
        )
    else:
        logger.warning("LLM_API_KEY is not set; summaries and Q&A are disabled")

    logger.info("All services initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down BookLens")
    if llm_service:
        await llm_service.close()
    dispose_db()
    shutdown_tracing(tracer_provider)


# Create FastAPI app
app = FastAPI(
    title="BookLens",
    description="Document ingestion, keyword search and progress-aware summaries for PDF and EPUB books",
    version="1.0.0",
    lifespan=lifespan,
)


# Exception handler for JSON parsing errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle validation errors with better error messages.

    Specifically handles JSON decode errors from invalid control characters.
    """
    errors = exc.errors()

    for error in errors:
        if error.get("type") == "json_invalid":
            ctx = error.get("ctx", {})
            if "Invalid control character" in str(ctx.get("error", "")):
                return JSONResponse(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    content={
                        "success": False,
                        "error": "Invalid JSON: Control characters detected in request body.",
                        "hint": "Remove any special characters from your input or use proper JSON encoding.",
                    },
                )

    # Return standard validation error response
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error": "Invalid request", "detail": jsonable_encoder(errors)},
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "BookLens"}


# Prometheus metrics endpoint
@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include routers
app.include_router(documents.router, prefix="/api", tags=["documents"])
app.include_router(processing.router, prefix="/api", tags=["processing"])
app.include_router(search.router, prefix="/api", tags=["search"])
app.include_router(summaries.router, prefix="/api", tags=["summaries"])
app.include_router(ask.router, prefix="/api", tags=["ask"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host if settings else "0.0.0.0", port=settings.api_port if settings else 8000)
