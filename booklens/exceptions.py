"""Custom exception classes for document ingestion and retrieval."""


class DocumentProcessingError(Exception):
    """Base exception for document processing errors."""
    pass


class ValidationError(DocumentProcessingError):
    """Raised when an uploaded document fails validation."""
    pass


class FileTypeNotSupportedError(ValidationError):
    """Raised when a document is neither PDF nor EPUB."""
    pass


class FileSizeExceededError(ValidationError):
    """Raised when file size exceeds the maximum allowed."""
    pass


class DocumentNotFoundError(DocumentProcessingError):
    """Raised when a document does not exist or belongs to another user."""
    pass


class ProcessingError(DocumentProcessingError):
    """Raised when document processing fails."""
    pass


class ExtractionError(ProcessingError):
    """Raised when every text extraction strategy came back empty."""
    pass


class PartialMetadataFailure(ProcessingError):
    """Raised internally when metadata extraction fails; never fatal to ingestion."""
    pass


class StorageError(DocumentProcessingError):
    """Raised when replacing or reading document chunks fails."""
    pass


class NotProcessedError(DocumentProcessingError):
    """Raised when a document has no chunks yet."""
    pass


class GenerationError(DocumentProcessingError):
    """Raised when the language model call fails, times out or returns nothing."""
    pass

