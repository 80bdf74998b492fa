"""Tests for PDF and EPUB text extraction."""
import zipfile
from io import BytesIO
from unittest.mock import MagicMock, Mock, patch

import pytest

from booklens.exceptions import ExtractionError, PartialMetadataFailure
from booklens.services.epub_extractor import (
    EPUB_STRATEGIES,
    _find_entry,
    extract_epub_metadata,
    extract_epub_pages,
    html_priority,
    looks_like_prose,
)
from booklens.services.extraction import run_strategies
from booklens.services.pdf_extractor import (
    extract_from_content_streams,
    extract_pdf_pages,
    split_into_pages,
)
from booklens.utils.text_cleaner import normalize_pages

PROSE = (
    "The river ran quietly past the old mill while the miller counted his sacks "
    "of flour and the children played along the muddy bank until the evening "
    "bells called everyone home for supper and long stories beside the fire. "
)

PDFPLUMBER_OPEN = "booklens.services.pdf_extractor.pdfplumber.open"


class TestPdfExtraction:
    """Tests for the PDF strategy chain."""

    def test_content_stream_fallback_when_parser_fails(self, pdf_factory):
        data = pdf_factory(["Opening page of the story.", "Closing page of the story."])

        with patch(PDFPLUMBER_OPEN, side_effect=Exception("xref table broken")):
            pages = extract_pdf_pages(data)

        assert pages == ["Opening page of the story.", "Closing page of the story."]

    def test_blank_pages_keep_their_position(self):
        texts = ["Title page of the book", None, "Chapter one begins here.", "   "]
        pdf = MagicMock()
        pdf.__enter__.return_value.pages = [
            Mock(extract_text=Mock(return_value=text)) for text in texts
        ]

        with patch(PDFPLUMBER_OPEN, return_value=pdf):
            pages = extract_pdf_pages(b"%PDF-1.4")

        assert pages == ["Title page of the book", "", "Chapter one begins here.", "   "]
        assert normalize_pages(pages) == [(1, "Title page of the book"), (3, "Chapter one begins here.")]

    def test_blank_content_stream_counts_as_page(self, pdf_factory):
        assert extract_from_content_streams(pdf_factory(["Only page.", ""])) == ["Only page.", ""]

    def test_uncompressed_streams(self, pdf_factory):
        data = pdf_factory(["Plain stream text."], compress=False)

        assert extract_from_content_streams(data) == ["Plain stream text."]

    def test_tj_arrays_and_escapes(self):
        data = (
            b"1 0 obj\n<< /Length 60 >>\nstream\n"
            b"BT [(Hel) -20 (lo) 15 ( world)] TJ (a \\(paren\\) \\101) Tj ET"
            b"\nendstream\nendobj\n"
        )

        pages = extract_from_content_streams(data)

        assert pages == ["Hello world a (paren) A"]

    def test_streams_without_text_are_skipped(self):
        data = b"stream\n0 0 612 792 re f\nendstream\n"

        assert extract_from_content_streams(data) == []

    def test_printable_runs_as_last_resort(self):
        data = b"\x00\x01\x02Readable text survives here\xff\xfe\x00short\x00"

        with patch(PDFPLUMBER_OPEN, side_effect=Exception("not a PDF")):
            pages = extract_pdf_pages(data)

        assert pages == ["Readable text survives here"]

    def test_nothing_recoverable(self):
        with patch(PDFPLUMBER_OPEN, side_effect=Exception("not a PDF")):
            with pytest.raises(ExtractionError):
                extract_pdf_pages(b"\x00\x01\x02\x03")

    def test_split_into_pages(self):
        text = " ".join(["abcd"] * 2000)

        pages = split_into_pages(text, chars_per_page=3000)

        assert len(pages) == 4
        assert all(len(page) <= 3000 for page in pages)
        assert " ".join(pages) == text


class TestEpubExtraction:
    """Tests for the EPUB strategy chain."""

    def test_spine_order(self, epub_factory):
        data = epub_factory(
            [("ch1.xhtml", "First chapter body."), ("ch2.xhtml", "Second chapter body.")],
            spine_hrefs=["ch2.xhtml", "ch1.xhtml"],
        )

        pages = extract_epub_pages(data)

        assert len(pages) == 2
        assert "Second chapter body." in pages[0]
        assert "First chapter body." in pages[1]
        assert all("margin" not in page for page in pages)

    def test_broken_spine_recovered_by_html_scan(self, epub_factory):
        data = epub_factory(
            [("Text/chapter_one.xhtml", "Recovered chapter text.")],
            spine_hrefs=["missing.xhtml"],
        )

        strategy, pages = run_strategies(EPUB_STRATEGIES, data, label="EPUB")

        assert strategy == "html_scan"
        assert "Recovered chapter text." in pages[0]
        assert extract_epub_pages(data) == pages

    def test_wrong_container_path_uses_relaxed_parser(self, epub_factory):
        original = epub_factory([("ch1.xhtml", "Body text of the only chapter.")])
        buffer = BytesIO()
        with zipfile.ZipFile(BytesIO(original)) as src, zipfile.ZipFile(buffer, "w") as dst:
            for name in src.namelist():
                content = src.read(name)
                if name == "META-INF/container.xml":
                    content = content.replace(b"OEBPS/content.opf", b"wrong/package.opf")
                dst.writestr(name, content)

        strategy, pages = run_strategies(EPUB_STRATEGIES, buffer.getvalue(), label="EPUB")

        assert strategy == "spine_relaxed"
        assert "Body text of the only chapter." in pages[0]

    def test_rounds_then_aggressive_pass(self):
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("notes.txt", PROSE * 2)
            zf.writestr("image.png", b"\x89PNG" + PROSE.encode())
        empty_strategy = Mock(return_value=[])

        with patch(
            "booklens.services.epub_extractor.EPUB_STRATEGIES", [("empty", empty_strategy)]
        ):
            pages = extract_epub_pages(buffer.getvalue(), retry_rounds=3)

        assert empty_strategy.call_count == 3
        assert len(pages) == 1
        assert pages[0].startswith("The river ran quietly")

    def test_unreadable_file(self):
        with pytest.raises(ExtractionError):
            extract_epub_pages(b"this is not a zip container", retry_rounds=2)

    def test_entry_lookup_ignores_case_and_dot_prefix(self):
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(".hidden/Chapter.xhtml", "<p>hidden</p>")
            zf.writestr("OEBPS/Ch1.xhtml", "<p>first</p>")

        with zipfile.ZipFile(buffer) as zf:
            assert _find_entry(zf, ".HIDDEN/chapter.xhtml") == ".hidden/Chapter.xhtml"
            assert _find_entry(zf, "./oebps/ch1.xhtml") == "OEBPS/Ch1.xhtml"
            assert _find_entry(zf, "hidden/chapter.xhtml") is None

    def test_html_priority(self):
        names = ["nav.xhtml", "chapter10.xhtml", "random.html", "OEBPS/misc.xhtml", "chapter2.xhtml"]

        assert sorted(names, key=html_priority) == [
            "chapter2.xhtml",
            "chapter10.xhtml",
            "OEBPS/misc.xhtml",
            "random.html",
            "nav.xhtml",
        ]

    def test_looks_like_prose(self):
        assert looks_like_prose(" ".join(PROSE.split()))
        assert not looks_like_prose("{}<>[]|#@" * 40)
        assert not looks_like_prose("too short")


class TestEpubMetadata:
    """Tests for EPUB metadata extraction."""

    def test_title_author_cover_and_pages(self, epub_factory):
        cover = b"\xff\xd8\xff\xe0fake-jpeg"
        data = epub_factory(
            [("ch1.xhtml", PROSE * 30)],
            title="A Tale of Two Tests",
            author="C. Dickens",
            cover=cover,
        )

        metadata = extract_epub_metadata(data)

        assert metadata.title == "A Tale of Two Tests"
        assert metadata.author == "C. Dickens"
        assert metadata.cover_image == cover
        assert metadata.cover_media_type == "image/jpeg"
        assert metadata.estimated_pages >= 2

    def test_metadata_without_cover(self, epub_factory):
        metadata = extract_epub_metadata(epub_factory([("ch1.xhtml", "Short.")]))

        assert metadata.cover_image is None
        assert metadata.estimated_pages == 1
        assert not metadata.is_empty()

    def test_unreadable_container(self):
        with pytest.raises(PartialMetadataFailure):
            extract_epub_metadata(b"not a zip")
