"""Tests for text normalization and chunking."""
from unittest.mock import patch

import pytest

from booklens.exceptions import FileTypeNotSupportedError
from booklens.services.document_processor import DocumentProcessor
from booklens.services.extraction import get_file_type
from booklens.utils.text_cleaner import count_words, normalize_pages, normalize_text


def words(count: int, prefix: str = "word") -> str:
    return " ".join(f"{prefix}{i}" for i in range(count))


class TestNormalizeText:
    """Tests for the text normalizer."""

    def test_collapses_whitespace(self):
        assert normalize_text("  Hello \n\n  world\t\tagain  ") == "Hello world again"

    def test_replaces_typographic_quotes_and_dashes(self):
        text = "\u201cIt\u2019s here\u201d \u2014 she said \u2013 twice\u2010over"
        assert normalize_text(text) == "\"It's here\" - she said - twice-over"

    def test_removes_invisible_characters(self):
        text = "in\u00advisible zero\u200bwidth\ufeff"
        assert normalize_text(text) == "invisible zerowidth"

    def test_non_breaking_space_becomes_space(self):
        assert normalize_text("New\u00a0York") == "New York"

    def test_removes_control_characters(self):
        assert normalize_text("bell\x07 and\x00 null") == "bell and null"

    def test_empty_input(self):
        assert normalize_text("") == ""

    def test_count_words(self):
        assert count_words("one two  three\nfour") == 4


class TestNormalizePages:
    """Tests for page-level normalization."""

    def test_drops_blank_pages_and_keeps_page_numbers(self):
        pages = ["First page with enough text.", "   \n  ", "short", "Fourth page text here."]
        result = normalize_pages(pages)

        assert result == [(1, "First page with enough text."), (4, "Fourth page text here.")]


class TestGetFileType:
    """Tests for format detection."""

    def test_mime_types(self):
        assert get_file_type("application/pdf") == "pdf"
        assert get_file_type("application/epub+zip") == "epub"

    def test_falls_back_to_extension(self):
        assert get_file_type("application/octet-stream", "Book.EPUB") == "epub"
        assert get_file_type(None, "paper.pdf") == "pdf"

    def test_unsupported(self):
        with pytest.raises(FileTypeNotSupportedError):
            get_file_type("text/plain", "notes.txt")


class TestChunker:
    """Tests for the word-count chunker."""

    def test_page_boundaries_split_chunks(self):
        """600 words on page 1 and 100 on page 2 give chunks of 500, 100 and 100 words."""
        processor = DocumentProcessor(chunk_size=500)
        pages = [(1, words(600, "a")), (2, words(100, "b"))]

        chunks = processor.chunk_pages(pages, document_id="doc-1")

        assert [c.word_count for c in chunks] == [500, 100, 100]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [(c.page_start, c.page_end) for c in chunks] == [(1, 1), (1, 1), (2, 2)]
        assert chunks[0].content.startswith("a0 a1")
        assert chunks[1].content.startswith("a500")
        assert chunks[2].content.startswith("b0")
        assert all(c.document_id == "doc-1" for c in chunks)

    def test_tiny_chunks_are_dropped_and_indices_stay_dense(self):
        processor = DocumentProcessor(chunk_size=5)
        pages = [
            (1, "one two three four five six"),  # second chunk is just "six"
            (2, "alpha beta gamma delta epsilon"),
        ]

        chunks = processor.chunk_pages(pages)

        assert [c.content for c in chunks] == [
            "one two three four five",
            "alpha beta gamma delta epsilon",
        ]
        assert [c.chunk_index for c in chunks] == [0, 1]
        assert [c.page_start for c in chunks] == [1, 2]

    def test_every_chunk_respects_size(self):
        processor = DocumentProcessor(chunk_size=50)
        chunks = processor.chunk_pages([(1, words(1234)), (2, words(77))])

        assert all(c.word_count <= 50 for c in chunks)
        assert sum(c.word_count for c in chunks) == 1234 + 77

    def test_no_pages(self):
        assert DocumentProcessor().chunk_pages([]) == []

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            DocumentProcessor(chunk_size=0)

    def test_process_document_end_to_end(self, pdf_factory):
        data = pdf_factory(["First page of the book text.", "Second page of the book."])
        processor = DocumentProcessor(chunk_size=500)

        with patch("booklens.services.pdf_extractor.pdfplumber.open", side_effect=Exception("no xref")):
            chunks = processor.process_document(data, "application/pdf", document_id="doc-2")

        assert len(chunks) == 2
        assert [c.page_start for c in chunks] == [1, 2]
        assert chunks[0].content == "First page of the book text."
