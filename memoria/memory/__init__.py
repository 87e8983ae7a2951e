"""
Semantic memory for conversational agents.

This module decides what an agent should remember from a conversation,
stores it with an embedding, and retrieves the most relevant memories
to enrich the next request.
"""

from .base import VectorStore
from .models import (
    ConsolidationCriteria,
    ConsolidationSuggestion,
    ConsolidationType,
    EntityType,
    MemoryClassification,
    MemoryContext,
    MemoryImportance,
    MemoryRecord,
    MemoryScope,
    MemoryType,
    NamedEntity,
    SearchResult,
    SentimentAnalysis,
    SentimentType,
    SimilarityType,
    SimilarMemory,
    UserProfile,
)
from .similarity import DistanceMetric, similarity
from .index import ExactIndex, HNSWIndex, VectorIndex
from .embeddings import EmbeddingService, create_embedding_service
from .inmemory_store import HNSWVectorStore, InMemoryVectorStore
from .chroma_store import ChromaVectorStore
from .prompts import MemoryDomainConfig
from .classifier import MemoryClassifier
from .retention import RetentionPolicy
from .locks import ScopeLocks
from .memory_manager import MemoryManager, create_memory_manager, create_vector_store

__all__ = [
    "VectorStore",
    "ConsolidationCriteria",
    "ConsolidationSuggestion",
    "ConsolidationType",
    "EntityType",
    "MemoryClassification",
    "MemoryContext",
    "MemoryImportance",
    "MemoryRecord",
    "MemoryScope",
    "MemoryType",
    "NamedEntity",
    "SearchResult",
    "SentimentAnalysis",
    "SentimentType",
    "SimilarityType",
    "SimilarMemory",
    "UserProfile",
    "DistanceMetric",
    "similarity",
    "ExactIndex",
    "HNSWIndex",
    "VectorIndex",
    "EmbeddingService",
    "create_embedding_service",
    "HNSWVectorStore",
    "InMemoryVectorStore",
    "ChromaVectorStore",
    "MemoryDomainConfig",
    "MemoryClassifier",
    "RetentionPolicy",
    "ScopeLocks",
    "MemoryManager",
    "create_memory_manager",
    "create_vector_store",
]
