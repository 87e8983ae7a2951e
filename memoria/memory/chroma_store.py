"""
ChromaDB Vector Store Implementation.

ChromaDB is the persistent backend:
- No server required
- Stores everything in a local directory
- Built-in persistence, including its own HNSW index
- Good performance for moderate scale (< 1M vectors)
"""

import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..errors import DimensionMismatchError, StorageError, ValidationError
from .base import VectorStore
from .models import (
    MemoryImportance,
    MemoryRecord,
    MemoryScope,
    MemoryType,
    NamedEntity,
    SearchResult,
)
from .similarity import DistanceMetric

logger = logging.getLogger("memoria.memory.chroma")

# Chroma metadata cannot hold None; user-global memories use this
GLOBAL_SESSION = ""


class ChromaVectorStore(VectorStore):
    """
    ChromaDB implementation of the vector store.

    Stores memories locally with full persistence. The distance metric
    is fixed when the collection is created.
    """

    def __init__(
        self,
        persist_directory: str = "./memory_store",
        collection_name: str = "memories",
        metric: DistanceMetric = DistanceMetric.COSINE,
        dimension: Optional[int] = None,
    ):
        self.persist_directory = Path(persist_directory)
        self.collection_name = collection_name
        self.metric = DistanceMetric.parse(metric)
        self._dimension = dimension
        self._client = None
        self._collection = None
        logger.info(f"ChromaVectorStore configured with directory: {persist_directory}")

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    async def initialize(self) -> None:
        """Initialize ChromaDB client and collection."""
        if self._collection is not None:
            return

        try:
            import chromadb
            from chromadb.config import Settings
        except ImportError:
            raise StorageError(
                "chromadb not installed. Install with: pip install chromadb"
            )

        try:
            # Create persist directory if needed
            self.persist_directory.mkdir(parents=True, exist_ok=True)

            # Initialize persistent client
            self._client = chromadb.PersistentClient(
                path=str(self.persist_directory),
                settings=Settings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                ),
            )

            # Get or create collection
            self._collection = self._client.get_or_create_collection(
                name=self.collection_name,
                metadata={
                    "description": "Conversational agent memory store",
                    "hnsw:space": self.metric.value,
                },
            )
        except Exception as e:
            self._client = None
            self._collection = None
            raise StorageError(f"Failed to open ChromaDB at {self.persist_directory}: {e}") from e

        space = (self._collection.metadata or {}).get("hnsw:space", DistanceMetric.COSINE.value)
        if space != self.metric.value:
            logger.warning(
                f"Collection '{self.collection_name}' was created with metric '{space}', "
                f"using it instead of '{self.metric.value}'"
            )
            self.metric = DistanceMetric.parse(space)

        count = self._collection.count()
        if count and self._dimension is None:
            sample = self._collection.get(limit=1, include=["embeddings"])
            embeddings = sample.get("embeddings")
            if embeddings is not None and len(embeddings):
                self._dimension = len(embeddings[0])

        logger.info(f"ChromaDB initialized with {count} existing memories")

    def _ensure_initialized(self) -> None:
        """Ensure the store is initialized."""
        if self._collection is None:
            raise StorageError("ChromaVectorStore not initialized. Call initialize() first.")

    def _record_to_metadata(self, record: MemoryRecord) -> dict:
        """Convert a MemoryRecord to ChromaDB metadata."""
        return {
            "user_id": record.scope.user_id,
            "session_id": record.scope.session_id or GLOBAL_SESSION,
            "type": record.type.value,
            "category": record.category or "",
            "importance": int(record.importance),
            "relevance": record.relevance,
            "tags": json.dumps(sorted(record.tags)),
            "entities": json.dumps([e.to_dict() for e in record.entities]),
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
        }

    def _metadata_to_record(
        self,
        id: str,
        metadata: dict,
        document: str,
        embedding=None,
    ) -> MemoryRecord:
        """Convert ChromaDB metadata back to a MemoryRecord."""
        return MemoryRecord(
            id=id,
            scope=MemoryScope(
                user_id=metadata["user_id"],
                session_id=metadata.get("session_id") or None,
            ),
            content=document,
            type=MemoryType.parse(metadata.get("type")) or MemoryType.OTHER,
            importance=MemoryImportance(int(metadata.get("importance", 1))),
            relevance=float(metadata.get("relevance", 0.0)),
            category=metadata.get("category") or None,
            tags=set(json.loads(metadata.get("tags", "[]"))),
            entities=[NamedEntity.from_dict(e) for e in json.loads(metadata.get("entities", "[]"))],
            embedding=[float(x) for x in embedding] if embedding is not None else None,
            created_at=datetime.fromisoformat(metadata["created_at"]),
            updated_at=datetime.fromisoformat(metadata["updated_at"]),
        )

    def _records_from_get(self, results: dict) -> list[MemoryRecord]:
        embeddings = results.get("embeddings")
        records = []
        for i, id in enumerate(results["ids"]):
            records.append(self._metadata_to_record(
                id=id,
                metadata=results["metadatas"][i],
                document=results["documents"][i],
                embedding=embeddings[i] if embeddings is not None else None,
            ))
        return records

    def _scope_filter(self, scope: MemoryScope, exact: bool = False) -> dict:
        """Build a Chroma `where` clause for what a scope may read."""
        if scope.session_id is None:
            if exact:
                return {"$and": [
                    {"user_id": scope.user_id},
                    {"session_id": GLOBAL_SESSION},
                ]}
            return {"user_id": scope.user_id}
        if exact:
            sessions = {"session_id": scope.session_id}
        else:
            sessions = {"session_id": {"$in": [scope.session_id, GLOBAL_SESSION]}}
        return {"$and": [{"user_id": scope.user_id}, sessions]}

    def _to_similarity(self, distance: float) -> float:
        # Chroma reports squared L2 and 1 - dot for "ip"
        if self.metric == DistanceMetric.L2:
            return 1.0 / (1.0 + math.sqrt(max(distance, 0.0)))
        return 1.0 - distance

    async def store_embeddings(self, records: list[MemoryRecord]) -> list[str]:
        """Store memory records with their embeddings."""
        self._ensure_initialized()

        if not records:
            return []

        for record in records:
            if not record.embedding:
                raise ValidationError(f"Memory {record.id} has no embedding")
            expected = self._dimension or len(records[0].embedding)
            if len(record.embedding) != expected:
                raise DimensionMismatchError(expected, len(record.embedding))
        self._dimension = len(records[0].embedding)

        try:
            self._collection.upsert(
                ids=[r.id for r in records],
                embeddings=[list(r.embedding) for r in records],
                documents=[r.content for r in records],
                metadatas=[self._record_to_metadata(r) for r in records],
            )
        except Exception as e:
            raise StorageError(f"ChromaDB upsert failed: {e}") from e

        logger.info(f"Stored {len(records)} memories")
        return [r.id for r in records]

    async def search_similar(
        self,
        query_embedding: list[float],
        top_k: int = 5,
        scope: Optional[MemoryScope] = None,
        min_similarity: float = 0.0,
    ) -> list[SearchResult]:
        """Search for similar memories."""
        self._ensure_initialized()

        if self._dimension is not None and len(query_embedding) != self._dimension:
            raise DimensionMismatchError(self._dimension, len(query_embedding))

        where = self._scope_filter(scope) if scope is not None else None
        available = await self.count(scope)
        if top_k <= 0 or available == 0:
            return []

        # ChromaDB uses distance (lower is better), we want similarity (higher is better)
        results = self._collection.query(
            query_embeddings=[list(query_embedding)],
            n_results=min(top_k, available),
            where=where,
            include=["documents", "metadatas", "distances", "embeddings"],
        )

        search_results = []

        if results["ids"] and results["ids"][0]:
            embeddings = results.get("embeddings")
            for i, id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i]
                similarity = self._to_similarity(distance)

                if similarity >= min_similarity:
                    record = self._metadata_to_record(
                        id=id,
                        metadata=results["metadatas"][0][i],
                        document=results["documents"][0][i],
                        embedding=embeddings[0][i] if embeddings is not None else None,
                    )
                    search_results.append(SearchResult(
                        record=record,
                        similarity=similarity,
                        distance=distance,
                    ))

        # Sort by similarity and limit
        search_results.sort(key=lambda x: (-x.similarity, x.record.id))
        return search_results[:top_k]

    async def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Get a specific memory by ID."""
        self._ensure_initialized()

        results = self._collection.get(
            ids=[memory_id],
            include=["documents", "metadatas", "embeddings"],
        )
        records = self._records_from_get(results)
        return records[0] if records else None

    async def list_memories(
        self,
        scope: MemoryScope,
        limit: Optional[int] = None,
        exact: bool = False,
    ) -> list[MemoryRecord]:
        """List memories for a scope, newest first."""
        self._ensure_initialized()

        results = self._collection.get(
            where=self._scope_filter(scope, exact=exact),
            include=["documents", "metadatas", "embeddings"],
        )
        records = self._records_from_get(results)

        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        if limit is not None:
            records = records[:limit]
        return records

    async def delete(self, memory_ids: list[str]) -> int:
        """Delete memories by ID."""
        self._ensure_initialized()

        if not memory_ids:
            return 0
        existing = self._collection.get(ids=list(memory_ids), include=[])["ids"]
        if existing:
            self._collection.delete(ids=existing)
        return len(existing)

    async def clear(self, scope: MemoryScope) -> int:
        """Delete every memory owned by a scope."""
        self._ensure_initialized()

        if scope.session_id is None:
            where = {"user_id": scope.user_id}
        else:
            where = self._scope_filter(scope, exact=True)
        existing = self._collection.get(where=where, include=[])["ids"]
        if existing:
            self._collection.delete(ids=existing)
        logger.info(f"Cleared {len(existing)} memories for scope {scope}")
        return len(existing)

    async def count(self, scope: Optional[MemoryScope] = None) -> int:
        """Get number of stored memories."""
        self._ensure_initialized()
        if scope is None:
            return self._collection.count()
        return len(self._collection.get(where=self._scope_filter(scope), include=[])["ids"])

    async def rebuild_index(self) -> None:
        # Chroma maintains its HNSW index on every write
        self._ensure_initialized()
        logger.info("ChromaDB manages its own index; nothing to rebuild")

    async def close(self) -> None:
        """Clean up resources."""
        # ChromaDB PersistentClient handles cleanup automatically
        self._client = None
        self._collection = None
        logger.info("ChromaDB connection closed")
