"""Map a reading-progress percentage to the prefix of chunks read so far."""
import math
from typing import List

from booklens.models.document import Chunk
from booklens.services.chunk_store import ChunkStore


def chunk_count_for_progress(total_chunks: int, progress_percentage: float) -> int:
    """
    Number of leading chunks covered by a progress mark.

    Progress is treated as linear in chunk count, not in words or pages.

    Args:
        total_chunks: Chunks stored for the document
        progress_percentage: Reading progress in [0, 100]

    Returns:
        ceil(progress / 100 * total), clamped to [0, total]
    """
    if total_chunks <= 0 or math.isnan(progress_percentage):
        return 0
    count = math.ceil(progress_percentage * total_chunks / 100)
    return max(0, min(total_chunks, count))


class ProgressWindower:
    """Selects everything a reader has seen up to a progress mark."""

    def __init__(self, chunk_store: ChunkStore):
        self.chunk_store = chunk_store

    def chunks_up_to_progress(self, document_id: str, progress_percentage: float) -> List[Chunk]:
        """
        Get the first chunks of a document up to a progress mark.

        Args:
            document_id: Document identifier
            progress_percentage: Reading progress in [0, 100]

        Returns:
            Chunks in reading order; empty at 0% or when nothing is stored
        """
        total = self.chunk_store.count_chunks(document_id)
        count = chunk_count_for_progress(total, progress_percentage)
        if count == 0:
            return []
        return self.chunk_store.get_chunks(document_id, limit=count)
