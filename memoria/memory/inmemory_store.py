"""
In-process vector stores.

Records live in a dict keyed by id, vectors in a VectorIndex. Nothing
survives the process; use ChromaVectorStore when memories must persist.
"""

import logging
from typing import Optional

from ..errors import StorageError, ValidationError
from .base import VectorStore
from .index import ExactIndex, HNSWIndex, VectorIndex
from .models import MemoryRecord, MemoryScope, SearchResult
from .similarity import DistanceMetric, score_to_distance

logger = logging.getLogger("memoria.memory.inmemory")


class InMemoryVectorStore(VectorStore):
    """
    Vector store backed by an in-process index.

    Defaults to an exact linear scan. Every mutation completes without
    awaiting, so a concurrent search sees either the old or the new state.
    """

    def __init__(
        self,
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
        index: Optional[VectorIndex] = None,
    ):
        self.metric = DistanceMetric.parse(metric)
        self._index = index or ExactIndex(metric=self.metric, dimension=dimension)
        if self._index.metric != self.metric:
            raise ValueError(
                f"Index metric {self._index.metric.value} does not match store metric {self.metric.value}"
            )
        self._records: dict[str, MemoryRecord] = {}
        self._initialized = False
        logger.info(f"{type(self).__name__} configured: metric={self.metric.value}")

    @property
    def dimension(self) -> Optional[int]:
        return self._index.dimension

    @property
    def index(self) -> VectorIndex:
        return self._index

    async def initialize(self) -> None:
        self._initialized = True

    def _ensure_initialized(self) -> None:
        """Ensure the store is initialized."""
        if not self._initialized:
            raise StorageError(f"{type(self).__name__} not initialized. Call initialize() first.")

    def _visible_ids(self, scope: MemoryScope) -> set[str]:
        return {rid for rid, rec in self._records.items() if scope.covers(rec.scope)}

    async def store_embeddings(self, records: list[MemoryRecord]) -> list[str]:
        self._ensure_initialized()

        for record in records:
            if not record.embedding:
                raise ValidationError(f"Memory {record.id} has no embedding")

        # Validate every vector before touching the index so a bad batch
        # leaves the store unchanged
        pending = []
        expected = self._index.dimension
        for record in records:
            vector = self._index.check_vector(record.embedding, expected)
            expected = int(vector.size)
            pending.append((record, vector))

        for record, vector in pending:
            self._index.add(record.id, vector)
            self._records[record.id] = record.copy()

        logger.debug(f"Stored {len(records)} memories ({len(self._records)} total)")
        return [r.id for r in records]

    async def search_similar(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        scope: Optional[MemoryScope] = None,
        min_similarity: float = 0.0,
    ) -> list[SearchResult]:
        self._ensure_initialized()

        if top_k <= 0 or not self._records:
            return []

        allowed = self._visible_ids(scope) if scope is not None else None
        if allowed is not None and not allowed:
            return []

        hits = self._index.search(query_embedding, top_k, allowed=allowed)

        results = []
        for memory_id, score in hits:
            if score < min_similarity:
                continue
            results.append(SearchResult(
                record=self._records[memory_id].copy(),
                similarity=score,
                distance=score_to_distance(score, self.metric),
            ))
        return results

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        self._ensure_initialized()
        record = self._records.get(memory_id)
        return record.copy() if record else None

    async def list_memories(
        self,
        scope: MemoryScope,
        limit: Optional[int] = None,
        exact: bool = False,
    ) -> list[MemoryRecord]:
        self._ensure_initialized()

        if exact:
            records = [r for r in self._records.values() if r.scope == scope]
        else:
            records = [r for r in self._records.values() if scope.covers(r.scope)]

        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        if limit is not None:
            records = records[:limit]
        return [r.copy() for r in records]

    async def delete(self, memory_ids: list[str]) -> int:
        self._ensure_initialized()

        removed = 0
        for memory_id in memory_ids:
            if self._records.pop(memory_id, None) is not None:
                self._index.remove(memory_id)
                removed += 1
        return removed

    async def clear(self, scope: MemoryScope) -> int:
        self._ensure_initialized()
        doomed = [rid for rid, rec in self._records.items() if scope.contains(rec.scope)]
        return await self.delete(doomed)

    async def count(self, scope: Optional[MemoryScope] = None) -> int:
        self._ensure_initialized()
        if scope is None:
            return len(self._index)
        return sum(
            1 for rid, rec in self._records.items()
            if scope.covers(rec.scope) and rid in self._index
        )

    async def rebuild_index(self) -> None:
        self._ensure_initialized()
        await self._index.rebuild()

    async def close(self) -> None:
        self._initialized = False
        logger.info(f"{type(self).__name__} closed")


class HNSWVectorStore(InMemoryVectorStore):
    """In-process vector store searched through an HNSW graph."""

    def __init__(
        self,
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        fallback_threshold: int = 100,
        seed: Optional[int] = None,
    ):
        metric = DistanceMetric.parse(metric)
        super().__init__(
            metric=metric,
            index=HNSWIndex(
                metric=metric,
                dimension=dimension,
                m=m,
                ef_construction=ef_construction,
                ef_search=ef_search,
                fallback_threshold=fallback_threshold,
                seed=seed,
            ),
        )
