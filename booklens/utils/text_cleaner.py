"""Text cleaning and normalization utilities."""
import re
from typing import Iterable, List, Tuple

# Pages shorter than this after normalization are treated as blank
MIN_PAGE_CHARS = 10

# Non-breaking and other exotic spaces
_SPACE_LIKE_RE = re.compile(
    "[\\u00a0\\u1680\\u180e\\u2000-\\u200a\\u2028\\u2029\\u202f\\u205f\\u3000]"
)
# Soft hyphen, zero-width and other invisible format characters
_INVISIBLE_RE = re.compile(
    "[\\u00ad\\u034f\\u061c\\u115f\\u1160\\u17b4\\u17b5"
    "\\u200b-\\u200f\\u202a-\\u202e\\u2060-\\u206f"
    "\\u3164\\ufeff\\uffa0]"
)
_CONTROL_RE = re.compile("[\\x00-\\x1f\\x7f-\\x9f]")
_WHITESPACE_RE = re.compile(r"\s+")

_QUOTE_TABLE = str.maketrans({
    "‘": "'",
    "’": "'",
    "‚": "'",
    "‛": "'",
    "“": '"',
    "”": '"',
    "„": '"',
    "‟": '"',
    "‐": "-",
    "‑": "-",
    "‒": "-",
    "–": "-",
    "—": "-",
    "―": "-",
    "−": "-",
})


def normalize_text(text: str) -> str:
    """
    Clean extracted text so substring search behaves predictably.

    Args:
        text: Raw page text from an extractor

    Returns:
        Single-spaced text with invisible characters removed and
        typographic quotes and dashes replaced by their ASCII forms
    """
    if not text:
        return ""

    text = _WHITESPACE_RE.sub(" ", text)
    text = _SPACE_LIKE_RE.sub(" ", text)
    text = _INVISIBLE_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    text = text.translate(_QUOTE_TABLE)
    text = _WHITESPACE_RE.sub(" ", text)

    return text.strip()


def normalize_pages(pages: Iterable[str]) -> List[Tuple[int, str]]:
    """
    Normalize every page and drop the ones that are effectively empty.

    Args:
        pages: Raw page strings in reading order

    Returns:
        List of (page_number, page_text) tuples; page numbers are 1-based
        positions in the input, so dropped blank pages leave gaps
    """
    normalized = []
    for page_num, page in enumerate(pages, 1):
        cleaned = normalize_text(page)
        if len(cleaned) >= MIN_PAGE_CHARS:
            normalized.append((page_num, cleaned))
    return normalized


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())
