"""
Read-only query façade over one loaded index.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..core.errors import StaleRetriever
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from .chunking import Chunk
from .hnsw import HNSWIndex

logger = get_logger(__name__)


@dataclass
class RetrievalResult:
    """One retrieved chunk and its distance to the query."""

    chunk: Chunk
    distance: float
    rank: int
    metadata: dict[str, Any] = field(default_factory=dict)


class Retriever:
    """
    Top-k similarity queries against a single index generation.

    The lifecycle manager hands out one retriever per loaded or built index
    and invalidates it when that index is replaced or deleted. Any call on an
    invalidated retriever raises :class:`StaleRetriever`.
    """

    def __init__(self, index: HNSWIndex, chunks: dict[str, Chunk], generation: int = 0):
        self._index = index
        self._chunks = chunks
        self.generation = generation
        self._valid = True

    @property
    def is_valid(self) -> bool:
        return self._valid

    @property
    def size(self) -> int:
        self.ensure_valid()
        return len(self._index)

    @property
    def dim(self) -> int | None:
        self.ensure_valid()
        return self._index.dim

    def invalidate(self) -> None:
        if self._valid:
            self._valid = False
            logger.debug("Retriever invalidated", generation=self.generation)

    def ensure_valid(self) -> None:
        """Raise :class:`StaleRetriever` if this retriever was invalidated."""
        if not self._valid:
            raise StaleRetriever(
                f"retriever for index generation {self.generation} is no longer valid",
                generation=self.generation,
            )

    def retrieve(
        self, query_vector: Sequence[float] | np.ndarray, k: int, ef: int | None = None
    ) -> list[RetrievalResult]:
        """Return the ``k`` nearest chunks, nearest first."""
        self.ensure_valid()
        hits = self._index.search(query_vector, k, ef=ef)
        results = [
            RetrievalResult(
                chunk=self._chunks[self._index.chunk_ref(node)],
                distance=distance,
                rank=rank,
                metadata={"entry_id": node},
            )
            for rank, (node, distance) in enumerate(hits)
        ]
        get_metrics_collector().record_retrieval(len(results))
        logger.debug("Retrieved chunks", k=k, returned=len(results), generation=self.generation)
        return results
