"""
Embedding services: text in, fixed-length vectors out.

OpenAI's text-embedding-3 models are the default; sentence-transformers
runs the same interface locally when no API key is available. Every
batch is checked before it reaches a store: one vector per input, in
input order, each `dimension` long.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Literal

from ..errors import DimensionMismatchError, ProviderError

logger = logging.getLogger("memoria.memory.embeddings")


class EmbeddingService(ABC):
    """Abstract interface for embedding generation."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector this service produces."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """One embedding per text, in order."""
        pass

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    def _check_batch(self, texts: list[str], vectors: list[list[float]]) -> list[list[float]]:
        if len(vectors) != len(texts):
            raise ProviderError(
                "embed_batch", f"expected {len(texts)} embeddings, got {len(vectors)}"
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vector))
        return vectors


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class OpenAIEmbeddingService(EmbeddingService):
    """
    text-embedding-3 models through AsyncOpenAI.

    `dimensions` asks the API for shortened vectors, so a store can keep
    small vectors while using the large model. Asking for more than the
    model produces is ignored with a warning.
    """

    MODEL_DEFAULT_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }
    # Inputs per request accepted by the embeddings endpoint
    MAX_BATCH = 2048

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        max_batch: int = MAX_BATCH,
    ):
        self.api_key = api_key
        self.model = model
        self.max_batch = max(1, min(max_batch, self.MAX_BATCH))
        self._client = None

        native = self.MODEL_DEFAULT_DIMENSIONS.get(model, 1536)
        if dimensions is not None and dimensions > native:
            logger.warning(
                f"Requested {dimensions} dimensions but {model} produces {native}; using {native}"
            )
            dimensions = None
        self._requested_dimensions = dimensions
        self._dimension = dimensions or native

        logger.info(f"OpenAI embeddings: model={model}, dimensions={self._dimension}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _request_kwargs(self, texts: list[str]) -> dict:
        kwargs = {"model": self.model, "input": texts}
        if self._requested_dimensions is not None:
            kwargs["dimensions"] = self._requested_dimensions
        return kwargs

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        client = self._get_client()
        vectors: list[list[float]] = []
        for chunk in _chunks(texts, self.max_batch):
            response = await client.embeddings.create(**self._request_kwargs(chunk))
            # The API reports an index per item; do not rely on response order
            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(item.embedding for item in ordered)

        logger.debug(f"Embedded {len(texts)} texts with {self.model}")
        return self._check_batch(texts, vectors)


class LocalEmbeddingService(EmbeddingService):
    """
    sentence-transformers model run in-process.

    The model loads on first use and encoding runs in the default
    executor so the event loop keeps serving other conversations.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32):
        self.model_name = model_name
        self.batch_size = batch_size
        self._model = None
        self._dimension = 384  # all-MiniLM-L6-v2; replaced once the model loads

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise RuntimeError(
                    "sentence-transformers not installed. "
                    "Install with: pip install 'memoria[local]'"
                )
            self._model = SentenceTransformer(self.model_name)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded local embedding model {self.model_name} ({self._dimension}d)")
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._get_model()
        return model.encode(texts, batch_size=self.batch_size, convert_to_numpy=True).tolist()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        loop = asyncio.get_running_loop()
        vectors = await loop.run_in_executor(None, self._encode, list(texts))
        return self._check_batch(texts, vectors)


def create_embedding_service(
    provider: Literal["openai", "local"] = "openai",
    api_key: str = "",
    model: str = "",
    dimensions: int | None = None,
) -> EmbeddingService:
    """
    Build the configured embedding service.

    Raises:
        ValueError: Unknown provider, or openai without an API key
    """
    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI API key required for openai embedding provider")
        return OpenAIEmbeddingService(
            api_key=api_key,
            model=model or "text-embedding-3-small",
            dimensions=dimensions,
        )
    if provider == "local":
        if dimensions is not None:
            logger.warning("embedding.dimensions is ignored for local models")
        return LocalEmbeddingService(model_name=model or "all-MiniLM-L6-v2")
    raise ValueError(f"Unknown embedding provider: {provider}")
