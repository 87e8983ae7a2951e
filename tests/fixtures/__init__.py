"""
Test fixtures and sample data for memoria tests.
"""

import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from memoria.llm.base import LLMProvider, LLMResponse, make_tool_call
from memoria.memory.embeddings import EmbeddingService
from memoria.memory.models import (
    MemoryImportance,
    MemoryRecord,
    MemoryScope,
    MemoryType,
    new_memory_id,
)

# Keyword groups; each one is an embedding axis
CONCEPTS = [
    ("coffee", "espresso", "latte", "caffeine", "cappuccino", "brew"),
    ("shellfish", "shrimp", "lobster", "crab", "allergic", "allergy", "seafood", "prawns"),
    ("work", "job", "engineer", "office", "company", "manager"),
    ("travel", "trip", "flight", "lisbon", "paris", "vacation", "holiday"),
    ("music", "guitar", "jazz", "piano", "concert"),
    ("dog", "cat", "pet", "puppy"),
]
NOISE_DIMS = 2
DIMENSION = len(CONCEPTS) + NOISE_DIMS


def concept_vector(text: str) -> list[float]:
    """
    Deterministic embedding: one axis per concept the text mentions, plus a
    small hash-derived component so distinct texts never collide exactly.
    """
    lowered = text.lower()
    vector = [float(sum(lowered.count(word) for word in group)) for group in CONCEPTS]
    digest = hashlib.sha256(lowered.strip().encode()).digest()
    scale = 0.05 if any(vector) else 1.0
    for i in range(NOISE_DIMS):
        vector.append(scale * (digest[i] / 255.0 + 0.01))
    return vector


class FakeEmbeddingService(EmbeddingService):
    """Concept-axis embeddings with call counting and scripted failures."""

    def __init__(self, dimension: int = DIMENSION, fail_times: int = 0, error: Optional[Exception] = None):
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.fail_times = fail_times
        self.error = error or Exception("503 Service Unavailable")

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_times:
            self.fail_times -= 1
            raise self.error
        vectors = [concept_vector(t)[: self._dimension] for t in texts]
        return self._check_batch(texts, vectors)


def classification_json(
    memory_type: str = "Fact",
    importance: str = "MEDIUM",
    relevance: float = 0.7,
    tags: Optional[list[str]] = None,
    entities: Optional[list[dict]] = None,
    topic: str = "general",
) -> str:
    return json.dumps({
        "type": memory_type,
        "importance": importance,
        "relevance": relevance,
        "tags": tags or [],
        "entities": entities or [],
        "sentiment": {"positive": 0.2, "negative": 0.0, "neutral": 0.8},
        "topic": topic,
    })


Responder = Callable[[dict[str, Any]], Any]


class ScriptedLLM(LLMProvider):
    """
    LLM double.

    Queued responses are returned first (strings become content, lists of
    (name, args) become tool calls, exceptions are raised). When the queue
    is empty the responder is asked, and failing that a canned answer per
    prompt kind is returned.
    """

    def __init__(self, responder: Optional[Responder] = None, model: str = "scripted"):
        self.responder = responder
        self.queue: list[Any] = []
        self.calls: list[dict[str, Any]] = []
        self._model = model

    @property
    def provider_name(self) -> str:
        return "Scripted"

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return True

    def push(self, *items: Any) -> "ScriptedLLM":
        self.queue.extend(items)
        return self

    def calls_of(self, marker: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if marker in (c.get("prompt") or "")]

    async def generate(
        self,
        prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        tools: list[dict] | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        call = {
            "prompt": prompt,
            "messages": [dict(m) for m in messages] if messages else None,
            "system_prompt": system_prompt,
            "tools": tools,
            "json_mode": json_mode,
        }
        self.calls.append(call)

        if self.queue:
            item = self.queue.pop(0)
        elif self.responder is not None:
            item = self.responder(call)
        else:
            item = default_reply(call)

        if isinstance(item, Exception):
            raise item
        if isinstance(item, list):
            tool_calls = [
                make_tool_call(f"call_{i}", name, args) for i, (name, args) in enumerate(item)
            ]
            return LLMResponse(content="", model=self._model, tool_calls=tool_calls)
        return LLMResponse(content=item, model=self._model)


_USER_LINE = re.compile(r"^User: (.*)$", re.MULTILINE)


def default_reply(call: dict[str, Any]) -> str:
    prompt = call.get("prompt") or ""
    if prompt.startswith("Analyze this conversation"):
        # Like a real model, offer the user's own statement as the memory
        match = _USER_LINE.search(prompt)
        user_message = match.group(1).strip() if match else ""
        return json.dumps({"memories": [{"content": user_message}] if user_message else []})
    if prompt.startswith("Classify this memory"):
        return classification_json()
    if "keywords" in prompt:
        return "[]"
    if "named entities" in prompt:
        return "[]"
    if "sentiment" in prompt:
        return json.dumps({"positive": 0.0, "negative": 0.0, "neutral": 1.0})
    return "OK"


def make_record(
    content: str,
    user_id: str = "alice",
    session_id: Optional[str] = None,
    memory_type: MemoryType = MemoryType.FACT,
    importance: MemoryImportance = MemoryImportance.MEDIUM,
    created_at: Optional[datetime] = None,
    embedding: Optional[list[float]] = None,
    with_embedding: bool = True,
    tags: Optional[set[str]] = None,
    memory_id: Optional[str] = None,
) -> MemoryRecord:
    """Create a MemoryRecord with a concept embedding."""
    created = created_at or datetime.now(timezone.utc)
    if embedding is None and with_embedding:
        embedding = concept_vector(content)
    return MemoryRecord(
        id=memory_id or new_memory_id(),
        scope=MemoryScope(user_id, session_id),
        content=content,
        type=memory_type,
        importance=importance,
        relevance=0.5,
        tags=tags or set(),
        embedding=embedding,
        created_at=created,
        updated_at=created,
    )


def make_sample_memories(user_id: str = "alice", session_id: Optional[str] = None) -> list[MemoryRecord]:
    """A small spread of memories across concepts, one minute apart."""
    base = datetime.now(timezone.utc) - timedelta(hours=1)
    texts = [
        "I drink a double espresso every morning",
        "I am allergic to shellfish",
        "I work as a software engineer at a small company",
        "Planning a trip to Lisbon in June",
        "I play jazz guitar on weekends",
        "My dog is called Biscuit",
    ]
    return [
        make_record(text, user_id=user_id, session_id=session_id, created_at=base + timedelta(minutes=i))
        for i, text in enumerate(texts)
    ]


def make_vectors(count: int, dimension: int = 16, seed: int = 7) -> dict[str, list[float]]:
    """Reproducible random vectors keyed by id."""
    import numpy as np

    rng = np.random.default_rng(seed)
    return {f"v{i:04d}": rng.normal(size=dimension).tolist() for i in range(count)}
