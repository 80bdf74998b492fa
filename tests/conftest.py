"""Pytest configuration and fixtures."""
import shutil
import tempfile
import zlib
import zipfile
from io import BytesIO
from typing import List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booklens.db.models import Base, DocumentRecord
from booklens.db.session import create_db_engine
from booklens.models.document import Chunk
from booklens.services.chunk_store import ChunkStore
from booklens.services.file_storage import LocalFileStorage
from booklens.services.llm_service import LLMService

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_XML = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="uid">urn:uuid:test-book</dc:identifier>
    <dc:title>{title}</dc:title>
    <dc:creator>{author}</dc:creator>
    {cover_meta}
  </metadata>
  <manifest>
{manifest}
  </manifest>
  <spine>
{spine}
  </spine>
</package>
"""

XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>{title}</title><style>p {{ margin: 0; }}</style></head>
<body><h1>{title}</h1><p>{body}</p></body>
</html>
"""


def build_epub(
    chapters: Sequence[Tuple[str, str]],
    spine_hrefs: Optional[List[str]] = None,
    title: str = "The Test Book",
    author: str = "Jane Author",
    cover: Optional[bytes] = None,
    opf_dir: str = "OEBPS",
) -> bytes:
    """
    Build an EPUB in memory.

    Args:
        chapters: (href relative to the OPF, body text) pairs written to the zip
        spine_hrefs: Spine order; hrefs without a chapter become manifest
            entries pointing at missing files (defaults to the chapters)
        title: dc:title
        author: dc:creator
        cover: Cover JPEG bytes, referenced through <meta name="cover">
        opf_dir: Directory holding the OPF and content files
    """
    spine_hrefs = spine_hrefs if spine_hrefs is not None else [href for href, _ in chapters]
    hrefs = [href for href, _ in chapters] + [h for h in spine_hrefs if h not in dict(chapters)]
    ids = {href: f"item{i}" for i, href in enumerate(hrefs)}

    manifest = [
        f'    <item id="{ids[href]}" href="{href}" media-type="application/xhtml+xml"/>'
        for href in hrefs
    ]
    cover_meta = ""
    if cover is not None:
        manifest.append('    <item id="cover-img" href="images/cover.jpg" media-type="image/jpeg"/>')
        cover_meta = '<meta name="cover" content="cover-img"/>'
    spine = [f'    <itemref idref="{ids[href]}"/>' for href in spine_hrefs]

    opf_path = f"{opf_dir}/content.opf" if opf_dir else "content.opf"
    prefix = f"{opf_dir}/" if opf_dir else ""

    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        zf.writestr(
            opf_path,
            OPF_XML.format(
                title=title,
                author=author,
                cover_meta=cover_meta,
                manifest="\n".join(manifest),
                spine="\n".join(spine),
            ),
        )
        for i, (href, body) in enumerate(chapters, 1):
            zf.writestr(prefix + href, XHTML.format(title=f"Chapter {i}", body=body))
        if cover is not None:
            zf.writestr(prefix + "images/cover.jpg", cover)
    return buffer.getvalue()


def build_pdf(pages: Sequence[str], compress: bool = True) -> bytes:
    """
    Build a minimal PDF body with one text content stream per page.

    There is no xref table or catalog, so only byte-level scanning can read it.
    """
    out = [b"%PDF-1.4\n"]
    for number, text in enumerate(pages, 1):
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        content = f"BT /F1 12 Tf 72 712 Td ({escaped}) Tj ET".encode("latin-1")
        stream, filter_entry = content, b""
        if compress:
            compressed = zlib.compress(content)
            # A trailing newline would blur the end-of-stream boundary
            if not compressed.endswith((b"\n", b"\r")):
                stream, filter_entry = compressed, b" /Filter /FlateDecode"
        out.append(
            b"%d 0 obj\n<< /Length %d%s >>\nstream\n" % (number, len(stream), filter_entry)
            + stream
            + b"\nendstream\nendobj\n"
        )
    out.append(b"%%EOF\n")
    return b"".join(out)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def db_engine():
    """In-memory SQLite shared across threads, with foreign keys on."""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Database session bound to the in-memory engine."""
    session = sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def storage(temp_dir):
    """File storage rooted in a temporary directory."""
    return LocalFileStorage(upload_dir=temp_dir, public_base_url="http://testserver")


@pytest.fixture
def make_document(db_session):
    """Factory for document rows owned by ``user-1``."""

    def _make(
        title: str = "Test Book",
        file_type: str = "application/pdf",
        file_name: str = "book.pdf",
        file_path: str = "documents/user-1/book.pdf",
        owner_id: str = "user-1",
    ) -> DocumentRecord:
        document = DocumentRecord(
            owner_id=owner_id,
            title=title,
            file_name=file_name,
            file_path=file_path,
            file_type=file_type,
        )
        db_session.add(document)
        db_session.commit()
        return document

    return _make


@pytest.fixture
def sample_chunks():
    """Sample document chunks for testing."""
    texts = [
        "The quick brown fox jumps over the lazy dog near the river bank.",
        "A second passage about the river and the mill that stood beside it.",
        "The miller counted his sacks of flour while the fox watched quietly.",
        "Night fell over the valley and the lanterns of the village were lit.",
    ]
    return [
        Chunk(
            content=text,
            chunk_index=i,
            word_count=len(text.split()),
            page_start=i + 1,
            page_end=i + 1,
        )
        for i, text in enumerate(texts)
    ]


@pytest.fixture
def stored_document(db_session, make_document, sample_chunks):
    """A document whose sample chunks are already stored."""
    document = make_document()
    ChunkStore(db_session).replace_chunks(document.id, sample_chunks)
    return document


@pytest.fixture
def mock_llm_service():
    """Mock LLM service."""
    service = Mock(spec=LLMService)
    service.generate_summary = AsyncMock(return_value="This is a test summary.")
    service.answer_question = AsyncMock(
        return_value={
            "answer": "This is a test answer.",
            "chunks_used": 2,
            "token_usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
            "response_time_ms": 500.0,
        }
    )
    service.close = AsyncMock()
    return service


@pytest.fixture
def epub_factory():
    """Builder for in-memory EPUB files."""
    return build_epub


@pytest.fixture
def pdf_factory():
    """Builder for minimal byte-level PDFs."""
    return build_pdf
