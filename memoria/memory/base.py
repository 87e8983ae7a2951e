"""
Base interface for vector memory storage.

Defines the abstract contract that every storage backend implements.
Backends own durability and the search primitive; they know nothing
about classification or retention.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import MemoryRecord, MemoryScope, SearchResult
from .similarity import DistanceMetric


class VectorStore(ABC):
    """
    Abstract interface for vector storage backends.

    Implementations: in-memory exact scan, in-memory HNSW graph,
    ChromaDB (persistent directory).

    Every record handed out is a copy; callers can mutate results freely.
    """

    metric: DistanceMetric = DistanceMetric.COSINE

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Embedding length fixed for this store, None until the first write."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the vector store (create collections, etc.). Idempotent."""
        pass

    @abstractmethod
    async def store_embeddings(self, records: list[MemoryRecord]) -> list[str]:
        """
        Insert or replace memory records together with their embeddings.

        Args:
            records: Records with `embedding` populated

        Returns:
            The IDs of the stored records

        Raises:
            DimensionMismatchError: An embedding does not match the store
        """
        pass

    @abstractmethod
    async def search_similar(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        scope: Optional[MemoryScope] = None,
        min_similarity: float = 0.0,
    ) -> list[SearchResult]:
        """
        Search for similar memories.

        Args:
            query_embedding: The embedding to search for
            top_k: Maximum number of results
            scope: Restrict to memories visible from this scope
            min_similarity: Drop results scoring below this

        Returns:
            List of search results, ordered by similarity
        """
        pass

    @abstractmethod
    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Get a specific memory by ID."""
        pass

    @abstractmethod
    async def list_memories(
        self,
        scope: MemoryScope,
        limit: Optional[int] = None,
        exact: bool = False,
    ) -> list[MemoryRecord]:
        """
        List memories for a scope, newest first.

        With exact=True only the (user, session) partition itself is
        returned, without the user's global memories.
        """
        pass

    @abstractmethod
    async def delete(self, memory_ids: list[str]) -> int:
        """Delete memories by ID. Returns how many existed."""
        pass

    @abstractmethod
    async def clear(self, scope: MemoryScope) -> int:
        """Delete every memory owned by a scope. Returns how many were removed."""
        pass

    @abstractmethod
    async def count(self, scope: Optional[MemoryScope] = None) -> int:
        """Get number of stored embeddings, optionally within a scope."""
        pass

    async def rebuild_index(self) -> None:
        """Rebuild the search index, if the backend keeps one of its own."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        pass
