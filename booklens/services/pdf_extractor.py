"""PDF text extraction with structured, content-stream and raw-byte fallbacks."""
import re
import zlib
from io import BytesIO
from typing import List

import pdfplumber

from booklens.exceptions import ExtractionError
from booklens.services.extraction import run_strategies
from booklens.utils.logger import logger

STREAM_RE = re.compile(rb"stream\r?\n(.*?)\r?\n?endstream", re.DOTALL)
# A literal string followed by Tj, ' or ", or an array of strings and
# kerning numbers followed by TJ
SHOW_TEXT_RE = re.compile(
    rb"\(((?:[^()\\]|\\.)*)\)\s*(?:Tj|'|\")"
    rb"|\[((?:[^\[\]\\]|\\.)*)\]\s*TJ",
    re.DOTALL,
)
ARRAY_STRING_RE = re.compile(rb"\(((?:[^()\\]|\\.)*)\)", re.DOTALL)
PRINTABLE_RUN_RE = re.compile(rb"[\x20-\x7e]{10,}")
ESCAPE_RE = re.compile(rb"\\([0-7]{1,3}|.)", re.DOTALL)

ESCAPES = {
    b"n": b"\n",
    b"r": b"\r",
    b"t": b"\t",
    b"b": b"\b",
    b"f": b"\f",
    b"(": b"(",
    b")": b")",
    b"\\": b"\\",
    b"\n": b"",
    b"\r": b"",
}

PSEUDO_PAGE_CHARS = 3000


def _unescape_pdf_string(raw: bytes) -> str:
    """Resolve backslash escapes of a PDF literal string."""

    def replace(match: re.Match) -> bytes:
        token = match.group(1)
        if token[:1].isdigit():
            return bytes([int(token, 8) & 0xFF])
        return ESCAPES.get(token, token)

    return ESCAPE_RE.sub(replace, raw).decode("latin-1")


def _decode_stream(raw: bytes) -> bytes:
    """Inflate a FlateDecode stream, falling back to the raw bytes."""
    try:
        return zlib.decompress(raw)
    except zlib.error:
        pass
    try:
        # Tolerate truncated streams
        return zlib.decompressobj().decompress(raw)
    except zlib.error:
        return raw


def split_into_pages(text: str, chars_per_page: int = PSEUDO_PAGE_CHARS) -> List[str]:
    """
    Split a long text into pseudo-pages on word boundaries.

    Args:
        text: Text without page structure
        chars_per_page: Target page length in characters

    Returns:
        List of page strings
    """
    pages = []
    current = ""

    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) > chars_per_page and current:
            pages.append(current)
            current = word
        else:
            current = candidate

    if current.strip():
        pages.append(current)

    return pages


def extract_with_pdfplumber(data: bytes) -> List[str]:
    """
    Read page text through the PDF's own page and content model.

    Returns one entry per physical page; blank or unreadable pages are empty
    strings so later page numbers stay aligned.
    """
    pages = []
    with pdfplumber.open(BytesIO(data)) as pdf:
        for page_num, page in enumerate(pdf.pages, 1):
            try:
                text = page.extract_text() or ""
            except Exception as e:
                logger.warning(f"Error extracting text from PDF page {page_num}: {str(e)}")
                text = ""
            pages.append(text)
    return pages


def extract_from_content_streams(data: bytes) -> List[str]:
    """
    Regex-scan content streams for text-show operators.

    Used when the structured parser rejects the file. Every stream with a
    text object becomes one page, even when it shows only whitespace.
    """
    pages = []
    for match in STREAM_RE.finditer(data):
        stream = _decode_stream(match.group(1))
        if b"BT" not in stream:
            continue

        pieces = []
        for show in SHOW_TEXT_RE.finditer(stream):
            if show.group(1) is not None:
                pieces.append(_unescape_pdf_string(show.group(1)))
            else:
                parts = ARRAY_STRING_RE.findall(show.group(2))
                pieces.append("".join(_unescape_pdf_string(part) for part in parts))

        pages.append(" ".join(piece for piece in pieces if piece.strip()))
    return pages


def extract_printable_runs(data: bytes) -> List[str]:
    """Last resort: collect printable ASCII runs and cut them into pseudo-pages."""
    runs = [run.decode("ascii") for run in PRINTABLE_RUN_RE.findall(data)]
    if not runs:
        return []
    return split_into_pages(" ".join(runs))


PDF_STRATEGIES = [
    ("pdfplumber", extract_with_pdfplumber),
    ("content_stream_scan", extract_from_content_streams),
    ("printable_ascii_scan", extract_printable_runs),
]


def extract_pdf_pages(data: bytes) -> List[str]:
    """
    Extract page text from a PDF, trying each strategy in order.

    Args:
        data: Raw PDF bytes

    Returns:
        Ordered list of raw page strings

    Raises:
        ExtractionError: If no strategy recovered any text
    """
    _, pages = run_strategies(PDF_STRATEGIES, data, label="PDF")
    if not pages:
        raise ExtractionError(
            "Could not extract any text from this PDF. The document may be "
            "image-based (scanned), encrypted, or corrupted."
        )
    return pages
