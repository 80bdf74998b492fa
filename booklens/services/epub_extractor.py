"""EPUB text and metadata extraction.

An EPUB is a zip container: ``META-INF/container.xml`` points at the OPF
package document, whose manifest lists the content files and whose spine
gives the reading order. Real-world files are often only loosely conformant,
so text extraction runs an ordered list of strategies, from strict spine
parsing down to salvaging prose out of any readable entry, inside a bounded
number of retry rounds.
"""
import html
import mimetypes
import posixpath
import re
import zipfile
import xml.etree.ElementTree as ET
from io import BytesIO
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

from bs4 import BeautifulSoup
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from booklens.exceptions import ExtractionError, PartialMetadataFailure
from booklens.models.document import EpubMetadata
from booklens.services.extraction import run_strategies
from booklens.utils.logger import logger

CONTAINER_PATH = "META-INF/container.xml"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"

HTML_EXTENSIONS = (".html", ".xhtml", ".htm")
BINARY_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svgz", ".webp", ".tif", ".tiff",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".mp3", ".mp4", ".m4a", ".ogg", ".wav", ".webm",
    ".zip", ".pdf",
)
AGGRESSIVE_ENCODINGS = ("utf-8", "utf-16", "latin-1", "cp1252")

# Prose heuristic
MIN_PROSE_CHARS = 200
MIN_PROSE_WORDS = 10
MIN_TEXT_RATIO = 0.7

# Page estimate: ~500 words per page, ~5 characters per word
CHARS_PER_ESTIMATED_PAGE = 500 * 5

COMMON_COVER_NAMES = ("cover.jpg", "cover.jpeg", "cover.png")

_HIGH_PRIORITY_NAME_RE = re.compile(r"chapter|chap|ch\d|part|section|content|text|body|page", re.I)
_CONTENT_DIR_RE = re.compile(r"(^|/)(oebps|ops|text|content|contents|xhtml|html)/", re.I)
_LOW_PRIORITY_NAME_RE = re.compile(r"nav|toc|cover|title|copyright|index|colophon|dedication", re.I)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style|head)\b.*?</\1\s*>", re.I | re.S)
_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
_WORD_RE = re.compile(r"\b[^\W\d_]{3,}\b")
_DIGITS_RE = re.compile(r"(\d+)")


class EpubRoundFailed(Exception):
    """Raised when one retry round exhausted every strategy."""
    pass


# ---------------------------------------------------------------------
# Container helpers
# ---------------------------------------------------------------------

def _open_zip(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(BytesIO(data))


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="ignore")


def _local_name(tag: str) -> str:
    """Strip an XML namespace or prefix from a tag name."""
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1].lower()


def _resolve_href(base_dir: str, href: str) -> str:
    path = unquote(href.split("#", 1)[0])
    return posixpath.normpath(posixpath.join(base_dir, path)) if base_dir else posixpath.normpath(path)


def _find_entry(zf: zipfile.ZipFile, path: str) -> Optional[str]:
    """Case-insensitive entry lookup for containers built on Windows tools."""
    names = zf.namelist()
    if path in names:
        return path
    lowered = posixpath.normpath(path).lower()
    for name in names:
        if name.lower() == lowered:
            return name
    return None


def html_to_text(markup: str) -> str:
    """Visible text of an HTML/XHTML document body."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "head"]):
        tag.extract()
    body = soup.body or soup
    return body.get_text(" ").strip()


def _natural_key(name: str) -> List:
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS_RE.split(name)]


def html_priority(name: str) -> Tuple[int, List]:
    """
    Sort key ranking chapter-like content files ahead of navigation files.
    """
    base = posixpath.basename(name)
    if _LOW_PRIORITY_NAME_RE.search(base):
        rank = 3
    elif _HIGH_PRIORITY_NAME_RE.search(base):
        rank = 0
    elif _CONTENT_DIR_RE.search(name):
        rank = 1
    else:
        rank = 2
    return rank, _natural_key(name)


def looks_like_prose(text: str) -> bool:
    """
    Heuristic for salvaged blocks: long enough, made of real words and not
    dominated by markup remnants or special characters.
    """
    if len(text) < MIN_PROSE_CHARS:
        return False
    if len(_WORD_RE.findall(text)) < MIN_PROSE_WORDS:
        return False
    textual = sum(1 for c in text if c.isalpha() or c.isspace())
    return textual / len(text) >= MIN_TEXT_RATIO


def _strip_markup(markup: str) -> str:
    text = _SCRIPT_STYLE_RE.sub(" ", markup)
    # Keep block boundaries so salvage can split paragraphs
    text = re.sub(r"</(p|div|h[1-6]|li|section|br)\s*>|<br\s*/?>", "\n\n", text, flags=re.I)
    text = _TAG_RE.sub(" ", text)
    return html.unescape(text)


def _prose_blocks(text: str) -> List[str]:
    blocks = []
    for block in _BLOCK_SPLIT_RE.split(text):
        block = " ".join(block.split())
        if looks_like_prose(block):
            blocks.append(block)
    return blocks


def _is_binary_entry(name: str) -> bool:
    return name.lower().endswith(BINARY_EXTENSIONS)


# ---------------------------------------------------------------------
# Package document parsing
# ---------------------------------------------------------------------

def _strict_package(zf: zipfile.ZipFile) -> Tuple[str, ET.Element]:
    """Locate and parse the OPF through the standard container path."""
    container = ET.fromstring(zf.read(CONTAINER_PATH))
    rootfile = container.find(f".//{{{CONTAINER_NS}}}rootfile")
    if rootfile is None or not rootfile.get("full-path"):
        raise ValueError("container.xml has no rootfile full-path")
    opf_path = rootfile.get("full-path")
    return opf_path, ET.fromstring(zf.read(opf_path))


def _relaxed_package(zf: zipfile.ZipFile) -> Tuple[str, BeautifulSoup]:
    """
    Locate and parse the OPF tolerating prefixes, case and a broken container.
    """
    opf_path = None
    container_name = _find_entry(zf, CONTAINER_PATH)
    if container_name:
        container = BeautifulSoup(_decode(zf.read(container_name)), "html.parser")
        rootfile = container.find(lambda tag: _local_name(tag.name) == "rootfile")
        if rootfile is not None and rootfile.get("full-path"):
            opf_path = _find_entry(zf, rootfile["full-path"])

    if opf_path is None:
        candidates = [name for name in zf.namelist() if name.lower().endswith(".opf")]
        if not candidates:
            raise ValueError("no package document found")
        opf_path = candidates[0]

    return opf_path, BeautifulSoup(_decode(zf.read(opf_path)), "html.parser")


def _relaxed_manifest(opf: BeautifulSoup) -> Dict[str, Dict[str, str]]:
    items = {}
    for item in opf.find_all(lambda tag: _local_name(tag.name) == "item"):
        if item.get("id") and item.get("href"):
            items[item["id"]] = {
                "href": item["href"],
                "media_type": item.get("media-type", ""),
                "properties": item.get("properties", ""),
            }
    return items


def _relaxed_spine_hrefs(opf: BeautifulSoup) -> List[str]:
    manifest = _relaxed_manifest(opf)
    hrefs = []
    for itemref in opf.find_all(lambda tag: _local_name(tag.name) == "itemref"):
        item = manifest.get(itemref.get("idref", ""))
        if item:
            hrefs.append(item["href"])
    return hrefs


# ---------------------------------------------------------------------
# Text extraction strategies
# ---------------------------------------------------------------------

def extract_spine_strict(data: bytes) -> List[str]:
    """Spine-ordered text through the standard container and OPF namespaces."""
    with _open_zip(data) as zf:
        opf_path, opf = _strict_package(zf)
        base_dir = posixpath.dirname(opf_path)

        manifest = {
            item.get("id"): item.get("href")
            for item in opf.iter(f"{{{OPF_NS}}}item")
            if item.get("id") and item.get("href")
        }

        pages = []
        for itemref in opf.iter(f"{{{OPF_NS}}}itemref"):
            href = manifest.get(itemref.get("idref"))
            if not href:
                continue
            path = _resolve_href(base_dir, href)
            try:
                raw = zf.read(path)
            except KeyError:
                logger.warning(f"EPUB spine references missing content file: {path}")
                continue
            text = html_to_text(_decode(raw))
            if text:
                pages.append(text)
        return pages


def extract_spine_relaxed(data: bytes) -> List[str]:
    """Spine-ordered text using lenient element lookups and entry matching."""
    with _open_zip(data) as zf:
        opf_path, opf = _relaxed_package(zf)
        base_dir = posixpath.dirname(opf_path)

        pages = []
        for href in _relaxed_spine_hrefs(opf):
            name = _find_entry(zf, _resolve_href(base_dir, href))
            if name is None:
                continue
            text = html_to_text(_decode(zf.read(name)))
            if text:
                pages.append(text)
        return pages


def extract_all_html(data: bytes) -> List[str]:
    """Every HTML/XHTML entry, chapter-like names first, ignoring the spine."""
    with _open_zip(data) as zf:
        names = [name for name in zf.namelist() if name.lower().endswith(HTML_EXTENSIONS)]
        pages = []
        for name in sorted(names, key=html_priority):
            try:
                text = html_to_text(_decode(zf.read(name)))
            except Exception as e:
                logger.warning(f"Failed to extract from {name}: {str(e)}")
                continue
            if text:
                pages.append(text)
        return pages


def salvage_raw_text(data: bytes) -> List[str]:
    """Strip markup from every non-binary entry and keep prose-looking blocks."""
    with _open_zip(data) as zf:
        pages = []
        for name in sorted(zf.namelist(), key=html_priority):
            if name.endswith("/") or _is_binary_entry(name):
                continue
            try:
                text = _strip_markup(_decode(zf.read(name)))
            except Exception as e:
                logger.warning(f"Failed to salvage text from {name}: {str(e)}")
                continue
            pages.extend(_prose_blocks(text))
        return pages


EPUB_STRATEGIES = [
    ("spine_strict", extract_spine_strict),
    ("spine_relaxed", extract_spine_relaxed),
    ("html_scan", extract_all_html),
    ("raw_text_salvage", salvage_raw_text),
]


def extract_aggressive(data: bytes) -> List[str]:
    """
    Absolute fallback: decode every entry under several encodings and keep
    whatever passes the prose heuristic.
    """
    pages = []
    with _open_zip(data) as zf:
        for info in zf.infolist():
            if info.is_dir() or _is_binary_entry(info.filename):
                continue
            try:
                raw = zf.read(info)
            except Exception as e:
                logger.warning(f"Unreadable EPUB entry {info.filename}: {str(e)}")
                continue

            for encoding in AGGRESSIVE_ENCODINGS:
                try:
                    decoded = raw.decode(encoding)
                except UnicodeDecodeError:
                    continue
                blocks = _prose_blocks(_strip_markup(decoded))
                if blocks:
                    pages.extend(blocks)
                    break
    return pages


def extract_epub_pages(data: bytes, retry_rounds: int = 3) -> List[str]:
    """
    Extract page text from an EPUB.

    Runs the ordered strategies in up to ``retry_rounds`` rounds; the first
    strategy that returns text wins. When every round fails, the aggressive
    multi-encoding pass is tried.

    Args:
        data: Raw EPUB bytes
        retry_rounds: Number of rounds over the strategy list

    Returns:
        Ordered list of raw page strings, one per content block

    Raises:
        ExtractionError: If no text was recovered at all
    """
    try:
        for attempt in Retrying(
            stop=stop_after_attempt(max(1, retry_rounds)),
            retry=retry_if_exception_type(EpubRoundFailed),
            reraise=True,
        ):
            with attempt:
                round_number = attempt.retry_state.attempt_number
                _, pages = run_strategies(EPUB_STRATEGIES, data, label=f"EPUB round {round_number}")
                if not pages:
                    raise EpubRoundFailed(f"round {round_number} recovered no text")
        return pages
    except EpubRoundFailed:
        logger.warning(
            f"All {retry_rounds} EPUB extraction rounds failed, trying aggressive extraction",
            extra={"attempt": retry_rounds},
        )

    try:
        pages = extract_aggressive(data)
    except Exception as e:
        logger.error(f"Aggressive EPUB extraction failed: {str(e)}", exc_info=True)
        pages = []

    if not pages:
        raise ExtractionError(
            "Could not extract any text from this EPUB. The file may be DRM-protected, "
            "image-only, or corrupted."
        )

    logger.info(
        f"Aggressive EPUB extraction recovered {len(pages)} blocks",
        extra={"strategy": "aggressive", "page_count": len(pages)},
    )
    return pages


# ---------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------

def _first_text(opf: BeautifulSoup, local_name: str) -> Optional[str]:
    metadata = opf.find(lambda tag: _local_name(tag.name) == "metadata") or opf
    tag = metadata.find(lambda t: _local_name(t.name) == local_name)
    if tag is None:
        return None
    text = " ".join(tag.get_text().split())
    return text or None


def _find_cover(zf: zipfile.ZipFile, opf: BeautifulSoup, base_dir: str) -> Tuple[Optional[bytes], Optional[str]]:
    manifest = _relaxed_manifest(opf)
    candidates = []

    cover_meta = opf.find(
        lambda tag: _local_name(tag.name) == "meta" and (tag.get("name") or "").lower() == "cover"
    )
    if cover_meta is not None and cover_meta.get("content") in manifest:
        candidates.append(manifest[cover_meta["content"]])

    for item in manifest.values():
        if "cover-image" in item["properties"].split():
            candidates.append(item)

    for item in candidates:
        name = _find_entry(zf, _resolve_href(base_dir, item["href"]))
        if name is not None:
            media_type = item["media_type"] or mimetypes.guess_type(name)[0]
            return zf.read(name), media_type

    for cover_name in COMMON_COVER_NAMES:
        for path in (_resolve_href(base_dir, cover_name), cover_name):
            name = _find_entry(zf, path)
            if name is not None:
                return zf.read(name), mimetypes.guess_type(name)[0]

    return None, None


def _estimate_pages(zf: zipfile.ZipFile, opf: BeautifulSoup, base_dir: str) -> Optional[int]:
    total_chars = 0
    for href in _relaxed_spine_hrefs(opf):
        name = _find_entry(zf, _resolve_href(base_dir, href))
        if name is None:
            continue
        total_chars += len(html_to_text(_decode(zf.read(name))))
    if total_chars == 0:
        return None
    return max(1, round(total_chars / CHARS_PER_ESTIMATED_PAGE))


def extract_epub_metadata(data: bytes) -> EpubMetadata:
    """
    Read title, author, cover image and an estimated page count.

    Independent of text extraction: a book whose body text is unreadable can
    still have a usable title and cover.

    Raises:
        PartialMetadataFailure: If the container or package document is unreadable
    """
    try:
        zf = _open_zip(data)
    except zipfile.BadZipFile as e:
        raise PartialMetadataFailure(f"EPUB container is not a readable zip: {str(e)}") from e

    with zf:
        try:
            opf_path, opf = _relaxed_package(zf)
        except (KeyError, ValueError) as e:
            raise PartialMetadataFailure(f"EPUB package document not found: {str(e)}") from e

        base_dir = posixpath.dirname(opf_path)
        metadata = EpubMetadata(
            title=_first_text(opf, "title"),
            author=_first_text(opf, "creator"),
        )

        try:
            metadata.cover_image, metadata.cover_media_type = _find_cover(zf, opf, base_dir)
        except Exception as e:
            logger.warning(f"Failed to read EPUB cover image: {str(e)}")

        try:
            metadata.estimated_pages = _estimate_pages(zf, opf, base_dir)
        except Exception as e:
            logger.warning(f"Failed to estimate EPUB page count: {str(e)}")

    return metadata
