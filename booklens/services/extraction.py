"""Format dispatch and the ordered-strategy runner shared by the extractors."""
from typing import Callable, List, Optional, Sequence, Tuple

from booklens.exceptions import FileTypeNotSupportedError
from booklens.utils.logger import logger

# A strategy takes raw document bytes and returns page-level text
Strategy = Callable[[bytes], List[str]]

PDF_MIME_TYPES = ("application/pdf",)
EPUB_MIME_TYPES = (
    "application/epub+zip",
    "application/epub",
    "application/x-epub",
    "application/x-epub+zip",
)


def get_file_type(mime_type: Optional[str], filename: Optional[str] = None) -> str:
    """
    Map a declared MIME type (or, failing that, a file extension) to a format.

    Args:
        mime_type: Declared content type of the upload
        filename: Original file name, used when the MIME type is generic

    Returns:
        'pdf' or 'epub'

    Raises:
        FileTypeNotSupportedError: If the document is neither PDF nor EPUB
    """
    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime in PDF_MIME_TYPES:
        return "pdf"
    if mime in EPUB_MIME_TYPES:
        return "epub"

    name = (filename or "").lower()
    if name.endswith(".pdf"):
        return "pdf"
    if name.endswith(".epub"):
        return "epub"

    raise FileTypeNotSupportedError(
        f"Unsupported file type: {mime_type or 'unknown'}. Supported: PDF, EPUB"
    )


def run_strategies(
    strategies: Sequence[Tuple[str, Strategy]],
    data: bytes,
    label: str = "document",
) -> Tuple[Optional[str], List[str]]:
    """
    Try each strategy in order until one yields at least one non-empty page.

    A strategy that raises is logged and skipped; the next one still runs.
    Blank pages of the winning strategy are kept so that page positions
    (and the page count) survive; normalize_pages drops them later.

    Args:
        strategies: Ordered (name, function) pairs
        data: Raw document bytes
        label: Short description used in log messages

    Returns:
        (winning strategy name, pages) or (None, []) when every strategy failed
    """
    for name, strategy in strategies:
        try:
            pages = strategy(data)
        except Exception as e:
            logger.warning(
                f"{label}: extraction strategy '{name}' failed: {str(e)}",
                extra={"strategy": name},
            )
            continue

        pages = [page or "" for page in pages]
        if any(page.strip() for page in pages):
            logger.info(
                f"{label}: strategy '{name}' extracted {len(pages)} pages",
                extra={"strategy": name, "page_count": len(pages)},
            )
            return name, pages

        logger.info(f"{label}: strategy '{name}' returned no text", extra={"strategy": name})

    return None, []


def extract_pages(data: bytes, file_type: str, retry_rounds: int = 3) -> List[str]:
    """
    Extract raw page text from a PDF or EPUB.

    Args:
        data: Raw document bytes
        file_type: 'pdf' or 'epub' (see get_file_type)
        retry_rounds: Number of EPUB retry rounds

    Returns:
        Ordered list of raw page strings

    Raises:
        ExtractionError: If no strategy recovered any text
    """
    # Imported here so the extractors can use run_strategies without a cycle
    from booklens.services.epub_extractor import extract_epub_pages
    from booklens.services.pdf_extractor import extract_pdf_pages

    if file_type == "pdf":
        return extract_pdf_pages(data)
    if file_type == "epub":
        return extract_epub_pages(data, retry_rounds=retry_rounds)
    raise FileTypeNotSupportedError(f"Unsupported file type: {file_type}")
