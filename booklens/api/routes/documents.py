"""Document upload, lookup and deletion endpoints."""
from pathlib import Path as FilePath
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import select
from sqlalchemy.orm import Session

from booklens.api.dependencies import (
    error_response,
    get_app_settings,
    get_current_user,
    get_owned_document,
    get_storage,
)
from booklens.api.schemas import DeleteResponse, DocumentResponse, UploadResponse
from booklens.config import Settings
from booklens.db.models import DocumentRecord
from booklens.db.session import get_session
from booklens.exceptions import DocumentProcessingError, FileSizeExceededError, ValidationError
from booklens.services.extraction import get_file_type
from booklens.services.file_storage import LocalFileStorage
from booklens.utils.logger import logger

router = APIRouter()

CANONICAL_MIME_TYPES = {"pdf": "application/pdf", "epub": "application/epub+zip"}


@router.post("/documents/upload", response_model=UploadResponse, status_code=201)
async def upload_document(
    file: Annotated[UploadFile, File(...)],
    title: Annotated[Optional[str], Form()] = None,
    author: Annotated[Optional[str], Form()] = None,
    user_id: str = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: LocalFileStorage = Depends(get_storage),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Upload a PDF or EPUB. Processing is a separate step.

    Args:
        file: Document file to upload
        title: Display title (defaults to the file name)
        author: Author name
        user_id: Caller identity
        session: Database session
        storage: File storage
        app_settings: Application settings

    Returns:
        UploadResponse with the new document's metadata
    """
    try:
        file_type = get_file_type(file.content_type, file.filename)

        content = await file.read()
        if not content:
            raise ValidationError("Uploaded file is empty")

        max_bytes = app_settings.max_file_size_mb * 1024 * 1024
        if len(content) > max_bytes:
            raise FileSizeExceededError(
                f"File size ({len(content) / (1024 * 1024):.1f} MB) exceeds the "
                f"maximum of {app_settings.max_file_size_mb} MB"
            )
    except DocumentProcessingError as e:
        logger.warning(f"Rejected upload {file.filename}: {str(e)}", extra={"user_id": user_id})
        return error_response(e)

    filename = file.filename or f"document.{file_type}"
    file_path = storage.save_document(user_id, filename, content)

    document = DocumentRecord(
        owner_id=user_id,
        title=(title or "").strip() or FilePath(filename).stem,
        author=(author or "").strip() or None,
        file_name=filename,
        file_path=file_path,
        file_type=CANONICAL_MIME_TYPES[file_type],
        file_size=len(content),
    )
    session.add(document)
    session.flush()
    session.refresh(document)

    logger.info(
        f"Document uploaded: {document.id}",
        extra={"document_id": document.id, "user_id": user_id},
    )
    return UploadResponse(document=DocumentResponse.model_validate(document))


@router.get("/documents", response_model=List[DocumentResponse])
def list_documents(
    user_id: str = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """List the caller's documents, newest first."""
    stmt = (
        select(DocumentRecord)
        .where(DocumentRecord.owner_id == user_id)
        .order_by(DocumentRecord.created_at.desc())
    )
    return [DocumentResponse.model_validate(document) for document in session.scalars(stmt)]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document: DocumentRecord = Depends(get_owned_document)):
    """Get document metadata."""
    return DocumentResponse.model_validate(document)


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
def delete_document(
    document: DocumentRecord = Depends(get_owned_document),
    session: Session = Depends(get_session),
    storage: LocalFileStorage = Depends(get_storage),
):
    """Delete a document with its chunks, cached summaries and stored file."""
    document_id = document.id
    file_path = document.file_path

    session.delete(document)
    session.flush()

    try:
        storage.delete_document(file_path)
    except (DocumentProcessingError, OSError) as e:
        logger.warning(
            f"Could not delete stored file for {document_id}: {str(e)}",
            extra={"document_id": document_id},
        )

    logger.info(f"Document deleted: {document_id}", extra={"document_id": document_id})
    return DeleteResponse(document_id=document_id)
