"""Per-reader cache of progress-aware summaries."""
import asyncio
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booklens.db.models import SummaryRecord
from booklens.exceptions import GenerationError, NotProcessedError
from booklens.models.document import Chunk, SummaryResult
from booklens.services.progress_window import ProgressWindower
from booklens.utils.logger import logger
from booklens.utils.metrics import SUMMARY_CACHE_REQUESTS

# Produces summary text for the chunks a reader has seen
SummaryGenerator = Callable[[List[Chunk]], Awaitable[str]]

DEFAULT_REFRESH_THRESHOLD = 10.0


def round_progress(progress_percentage: float) -> float:
    """Round to the nearest 0.5, halves rounding up."""
    return math.floor(progress_percentage * 2 + 0.5) / 2


def should_refresh(
    cached_progress: float,
    current_progress: float,
    threshold: float = DEFAULT_REFRESH_THRESHOLD,
) -> bool:
    """Whether the reader has moved far enough from a cached summary to warrant a new one."""
    return abs(current_progress - cached_progress) >= threshold


class SummaryCache:
    """Stores one summary per (reader, document, rounded progress)."""

    def __init__(
        self,
        session: Session,
        windower: ProgressWindower,
        model_name: Optional[str] = None,
        timeout_seconds: Optional[float] = 60.0,
    ):
        """
        Initialize summary cache.

        Args:
            session: SQLAlchemy session bound to the request
            windower: Progress windower used to select chunks on a miss
            model_name: Model recorded alongside generated summaries
            timeout_seconds: Default time limit for the generator
        """
        self.session = session
        self.windower = windower
        self.model_name = model_name
        self.timeout_seconds = timeout_seconds

    def get_cached(
        self, user_id: str, document_id: str, progress_percentage: float
    ) -> Optional[SummaryRecord]:
        """Look up the summary stored for a progress mark (rounded before lookup)."""
        stmt = select(SummaryRecord).where(
            SummaryRecord.user_id == user_id,
            SummaryRecord.document_id == document_id,
            SummaryRecord.progress_percentage == round_progress(progress_percentage),
        )
        return self.session.scalars(stmt).first()

    async def get_or_generate(
        self,
        user_id: str,
        document_id: str,
        progress_percentage: float,
        generator: SummaryGenerator,
        force_refresh: bool = False,
        timeout: Optional[float] = None,
    ) -> SummaryResult:
        """
        Return the cached summary for a progress mark or generate and cache one.

        Args:
            user_id: Reader identifier
            document_id: Document identifier
            progress_percentage: Reading progress in [0, 100]
            generator: Async callable producing summary text from chunks
            force_refresh: Skip the cache lookup and regenerate
            timeout: Generator time limit in seconds (instance default when None)

        Returns:
            SummaryResult; ``from_cache`` tells whether the generator ran

        Raises:
            ValueError: If progress is out of range or no content precedes it
            NotProcessedError: If the document has no chunks
            GenerationError: If the generator failed, timed out or returned nothing
        """
        if not 0 <= progress_percentage <= 100:
            raise ValueError("Progress percentage must be between 0 and 100")

        rounded = round_progress(progress_percentage)

        if not force_refresh:
            cached = self.get_cached(user_id, document_id, rounded)
            if cached:
                SUMMARY_CACHE_REQUESTS.labels(result="hit").inc()
                logger.info(
                    f"Summary cache hit for document {document_id} at {rounded}%",
                    extra={"document_id": document_id, "user_id": user_id, "from_cache": True},
                )
                return SummaryResult(
                    summary=cached.summary_text,
                    from_cache=True,
                    progress_percentage=rounded,
                    chunk_end_index=cached.chunk_end_index,
                )

        SUMMARY_CACHE_REQUESTS.labels(result="miss").inc()

        chunks = self.windower.chunks_up_to_progress(document_id, progress_percentage)
        if not chunks:
            if self.windower.chunk_store.count_chunks(document_id) == 0:
                raise NotProcessedError(f"Document {document_id} has not been processed yet")
            raise ValueError("No content found for the specified progress")

        time_limit = timeout if timeout is not None else self.timeout_seconds
        try:
            summary = await asyncio.wait_for(generator(chunks), timeout=time_limit)
        except asyncio.TimeoutError as e:
            raise GenerationError(f"Summary generation timed out after {time_limit}s") from e
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Summary generation failed: {str(e)}") from e

        if not summary or not summary.strip():
            raise GenerationError("Summary generation returned no text")

        chunk_end_index = chunks[-1].chunk_index
        self._store(user_id, document_id, rounded, summary, chunk_end_index)

        logger.info(
            f"Generated summary for document {document_id} at {rounded}% "
            f"from {len(chunks)} chunks",
            extra={
                "document_id": document_id,
                "user_id": user_id,
                "progress_percentage": rounded,
                "chunk_count": len(chunks),
                "from_cache": False,
            },
        )
        return SummaryResult(
            summary=summary,
            from_cache=False,
            progress_percentage=rounded,
            chunk_end_index=chunk_end_index,
        )

    def _store(
        self,
        user_id: str,
        document_id: str,
        rounded_progress: float,
        summary: str,
        chunk_end_index: int,
    ) -> None:
        """Upsert a summary row. A failed write is logged; the summary is still returned."""
        try:
            record = self.get_cached(user_id, document_id, rounded_progress)
            if record is None:
                record = SummaryRecord(
                    user_id=user_id,
                    document_id=document_id,
                    progress_percentage=rounded_progress,
                )
                self.session.add(record)
            record.summary_text = summary
            record.chunk_end_index = chunk_end_index
            record.model_used = self.model_name
            record.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                f"Failed to cache summary for document {document_id}: {str(e)}",
                extra={"document_id": document_id, "user_id": user_id},
            )

    def invalidate_document(self, document_id: str, user_id: Optional[str] = None) -> int:
        """
        Delete cached summaries of a document.

        Args:
            document_id: Document identifier
            user_id: Restrict to one reader (all readers when None)

        Returns:
            Number of summaries deleted
        """
        stmt = delete(SummaryRecord).where(SummaryRecord.document_id == document_id)
        if user_id is not None:
            stmt = stmt.where(SummaryRecord.user_id == user_id)
        deleted = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        logger.info(
            f"Invalidated {deleted} cached summaries for document {document_id}",
            extra={"document_id": document_id},
        )
        return deleted

    def invalidate_from_progress(
        self, user_id: str, document_id: str, progress_percentage: float
    ) -> int:
        """Delete a reader's summaries at or above a progress mark."""
        stmt = delete(SummaryRecord).where(
            SummaryRecord.user_id == user_id,
            SummaryRecord.document_id == document_id,
            SummaryRecord.progress_percentage >= progress_percentage,
        )
        deleted = self.session.execute(stmt).rowcount or 0
        self.session.commit()
        logger.info(
            f"Invalidated {deleted} summaries from {progress_percentage}% for document {document_id}",
            extra={
                "document_id": document_id,
                "user_id": user_id,
                "progress_percentage": progress_percentage,
            },
        )
        return deleted

    def list_summaries(self, user_id: str, document_id: str) -> List[SummaryRecord]:
        """A reader's cached summaries for a document, ordered by progress."""
        stmt = (
            select(SummaryRecord)
            .where(SummaryRecord.user_id == user_id, SummaryRecord.document_id == document_id)
            .order_by(SummaryRecord.progress_percentage)
        )
        return list(self.session.scalars(stmt))

    def most_recent_summary(
        self, user_id: str, document_id: str, progress_percentage: float
    ) -> Optional[SummaryRecord]:
        """The furthest cached summary at or before a progress mark."""
        stmt = (
            select(SummaryRecord)
            .where(
                SummaryRecord.user_id == user_id,
                SummaryRecord.document_id == document_id,
                SummaryRecord.progress_percentage <= progress_percentage,
            )
            .order_by(SummaryRecord.progress_percentage.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()
