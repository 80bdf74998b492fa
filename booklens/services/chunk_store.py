"""Relational chunk storage."""
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booklens.db.models import ChunkRecord
from booklens.exceptions import StorageError
from booklens.models.document import Chunk
from booklens.utils.logger import logger


def _to_chunk(record: ChunkRecord) -> Chunk:
    return Chunk(
        id=record.id,
        document_id=record.document_id,
        chunk_index=record.chunk_index,
        content=record.content,
        word_count=record.word_count,
        page_start=record.page_start,
        page_end=record.page_end,
    )


class ChunkStore:
    """Persists a document's chunk set and serves ordered reads over it."""

    def __init__(self, session: Session, batch_size: int = 500):
        """
        Initialize chunk store.

        Args:
            session: SQLAlchemy session bound to the request
            batch_size: Rows per INSERT statement when replacing chunks
        """
        self.session = session
        self.batch_size = batch_size

    def replace_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        """
        Replace every chunk of a document in a single transaction.

        On failure the transaction is rolled back, so the previous chunk set
        is left untouched.

        Args:
            document_id: Document the chunks belong to
            chunks: New chunks with dense indices starting at 0

        Returns:
            Number of chunks written

        Raises:
            ValueError: If chunk indices are not 0..n-1 in order
            StorageError: If the database rejected the write
        """
        indices = [chunk.chunk_index for chunk in chunks]
        if indices != list(range(len(chunks))):
            raise ValueError("Chunk indices must be dense and start at 0")

        rows = [
            {
                "document_id": document_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "word_count": chunk.word_count,
                "page_start": chunk.page_start,
                "page_end": chunk.page_end,
            }
            for chunk in chunks
        ]

        try:
            self.session.execute(delete(ChunkRecord).where(ChunkRecord.document_id == document_id))
            for i in range(0, len(rows), self.batch_size):
                self.session.execute(insert(ChunkRecord), rows[i:i + self.batch_size])
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                f"Failed to store chunks for document {document_id}: {str(e)}",
                extra={"document_id": document_id},
            )
            raise StorageError(f"Failed to store document chunks: {str(e)}") from e

        logger.info(
            f"Stored {len(rows)} chunks for document {document_id}",
            extra={"document_id": document_id, "chunk_count": len(rows)},
        )
        return len(rows)

    def delete_chunks(self, document_id: str) -> int:
        """Delete every chunk of a document and return how many were removed."""
        try:
            result = self.session.execute(
                delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to delete document chunks: {str(e)}") from e

        deleted = result.rowcount or 0
        logger.info(
            f"Deleted {deleted} chunks for document {document_id}",
            extra={"document_id": document_id, "chunk_count": deleted},
        )
        return deleted

    def get_chunks(self, document_id: str, limit: Optional[int] = None) -> List[Chunk]:
        """
        Get a document's chunks in reading order.

        Args:
            document_id: Document identifier
            limit: Return only the first ``limit`` chunks (all when None)

        Returns:
            Chunks ordered by chunk index
        """
        if limit is not None and limit <= 0:
            return []

        stmt = (
            select(ChunkRecord)
            .where(ChunkRecord.document_id == document_id)
            .order_by(ChunkRecord.chunk_index)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        return [_to_chunk(record) for record in self.session.scalars(stmt)]

    def count_chunks(self, document_id: str) -> int:
        """Number of chunks stored for a document."""
        stmt = select(func.count()).select_from(ChunkRecord).where(
            ChunkRecord.document_id == document_id
        )
        return self.session.scalar(stmt) or 0

    def find_chunks(
        self,
        document_id: str,
        needle: str,
        case_sensitive: bool = False,
        limit: Optional[int] = None,
    ) -> List[Chunk]:
        """
        Find chunks whose content contains a substring.

        SQL LIKE folds case differently per backend. SQLite ignores ASCII case
        only, so "été" never matches "ÉTÉ" there. The SQL predicate is
        therefore only a prefilter: every candidate is re-checked in Python
        and the limit is applied afterwards. On SQLite the case-insensitive
        lookup skips the prefilter and scans the document's chunks in order.

        Args:
            document_id: Document identifier
            needle: Literal substring; LIKE wildcards are escaped
            case_sensitive: Require an exact-case match
            limit: Maximum number of chunks to return

        Returns:
            Matching chunks ordered by chunk index
        """
        if not needle or (limit is not None and limit <= 0):
            return []

        stmt = (
            select(ChunkRecord)
            .where(ChunkRecord.document_id == document_id)
            .order_by(ChunkRecord.chunk_index)
        )

        if case_sensitive:
            stmt = stmt.where(ChunkRecord.content.contains(needle, autoescape=True))

            def matches(content: str) -> bool:
                return needle in content

        else:
            if self.session.get_bind().dialect.name != "sqlite":
                stmt = stmt.where(ChunkRecord.content.icontains(needle, autoescape=True))
            folded = needle.lower()

            # Same folding as re.IGNORECASE in the match step
            def matches(content: str) -> bool:
                return folded in content.lower()

        chunks = []
        for record in self.session.scalars(stmt):
            if matches(record.content):
                chunks.append(_to_chunk(record))
                if limit is not None and len(chunks) >= limit:
                    break
        return chunks
