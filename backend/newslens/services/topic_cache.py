"""
In-process caches used by the topic canonicalizer.

AliasCache holds resolved surfaces for the lifetime of the process.
CanonicalEmbeddingIndex keeps every canonical topic embedding in one
row-normalized matrix so nearest-neighbour search is a single matmul.
"""
import time
from typing import Callable, Optional, Sequence

import numpy as np
import structlog
from numpy.typing import NDArray

from newslens.models.domain import CanonicalTopic, ResolvedTopic
from newslens.services.store import Store

logger = structlog.get_logger(__name__)


class AliasCache:
    """Unbounded normalized-surface -> ResolvedTopic map. Never evicts."""

    def __init__(self):
        self._entries: dict[str, ResolvedTopic] = {}

    def get(self, surface: str) -> Optional[ResolvedTopic]:
        return self._entries.get(surface)

    def put(self, surface: str, resolved: ResolvedTopic) -> None:
        self._entries[surface] = resolved

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, surface: str) -> bool:
        return surface in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CanonicalEmbeddingIndex:
    """
    TTL-cached matrix of canonical topic embeddings.

    The list is reloaded from the store when older than `ttl_seconds` or after
    `invalidate()`. Topics without an embedding, or whose embedding dimension
    differs from the majority of the vocabulary, are left out of the matrix.
    """

    def __init__(
        self,
        store: Store,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._topics: list[CanonicalTopic] = []
        self._matrix: NDArray[np.float32] = np.zeros((0, 0), dtype=np.float32)
        self._loaded_at: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl_seconds

    @property
    def size(self) -> int:
        return len(self._topics)

    def invalidate(self) -> None:
        """Force a reload on the next lookup."""
        self._loaded_at = None

    async def refresh(self) -> None:
        """Reload all canonical embeddings from the store."""
        topics = await self.store.list_canonicals()
        self._build(topics)
        self._loaded_at = self._clock()
        logger.debug("topic.index.refreshed", size=len(self._topics))

    def _build(self, topics: Sequence[CanonicalTopic]) -> None:
        with_vectors = [t for t in topics if t.embedding]
        if not with_vectors:
            self._topics = []
            self._matrix = np.zeros((0, 0), dtype=np.float32)
            return

        dims: dict[int, int] = {}
        for t in with_vectors:
            dims[len(t.embedding)] = dims.get(len(t.embedding), 0) + 1
        dimension = max(dims, key=dims.get)

        kept = [t for t in with_vectors if len(t.embedding) == dimension]
        matrix = np.array([t.embedding for t in kept], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms = np.where(norms > 0, norms, 1)  # Avoid division by zero

        self._topics = kept
        self._matrix = matrix / norms

    async def nearest(self, vector: Sequence[float]) -> tuple[Optional[CanonicalTopic], float]:
        """
        Most similar canonical topic by cosine similarity.

        Returns (None, 0.0) when the index is empty or the query vector does
        not match the index dimension.
        """
        if self.is_stale:
            await self.refresh()

        if not self._topics:
            return None, 0.0

        query = np.asarray(vector, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != self._matrix.shape[1]:
            logger.warning(
                "topic.index.dimension_mismatch",
                query_dim=int(query.shape[-1]) if query.ndim else 0,
                index_dim=int(self._matrix.shape[1]),
            )
            return None, 0.0

        norm = np.linalg.norm(query)
        if norm == 0:
            return None, 0.0

        similarities = self._matrix @ (query / norm)
        best = int(np.argmax(similarities))
        return self._topics[best], float(similarities[best])
