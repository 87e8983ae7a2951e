"""
Memory Manager - Orchestrates the memory system.

This is the high-level interface a conversation runtime uses.
It handles:
- Resolving who a turn belongs to (including anonymous sessions)
- Injecting relevant memories into outgoing messages
- Deciding what to remember from a finished turn and storing it
- Explicit memory CRUD, consolidation and a tool-driven agent turn
"""

import asyncio
import logging
import re
import uuid
from collections import Counter
from typing import TYPE_CHECKING, Any, Optional

from ..errors import IndexIntegrityError, ProviderError, StorageError, ValidationError
from ..llm.base import LLMProvider, parse_tool_arguments
from ..llm.retry import RetryPolicy, retry_async
from .base import VectorStore
from .classifier import MemoryClassifier, normalize_text
from .embeddings import EmbeddingService, create_embedding_service
from .locks import ScopeLocks, scoped
from .models import (
    ConsolidationCriteria,
    ConsolidationSuggestion,
    ConsolidationType,
    MemoryContext,
    MemoryImportance,
    MemoryRecord,
    MemoryScope,
    MemoryType,
    NamedEntity,
    SearchResult,
    UserProfile,
    new_memory_id,
    utcnow,
)
from .retention import RetentionPolicy

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger("memoria.memory.manager")

AGENT_SYSTEM_PROMPT = """You are a helpful assistant with long-term memory about the user.

You have tools to search, add, update, delete and list memories. Use them when:
- The user shares something worth remembering later (add_memory)
- You need something about the user that is not already in your context (search_memories)
- The user corrects or retracts something you remembered (update_memory / delete_memory)

Do not store greetings, small talk or information only relevant to this turn."""

SUMMARY_PROMPT = """Combine these related memories about a user into ONE self-contained sentence.
Keep every concrete detail (names, dates, numbers, preferences). Do not add anything.

MEMORIES:
{memories}

Respond with only the sentence."""

_SENTENCE_RE = re.compile(r"(?<=[.!?;])\s+")


class MemoryManager:
    """
    High-level memory management for conversational agents.

    All operations are scoped to a MemoryContext. Writes to the same
    (user, session) scope are serialized; different scopes never wait on
    each other.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_service: EmbeddingService,
        classifier: Optional[MemoryClassifier] = None,
        llm: Optional[LLMProvider] = None,
        retention: Optional[RetentionPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        anonymous_mode: bool = True,
        context_limit: int = 5,
        min_similarity: float = 0.3,
        max_tool_rounds: int = 5,
        temperature: float = 0.7,
    ):
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.llm = llm
        self.retention = retention or RetentionPolicy()
        self.retry_policy = retry_policy or RetryPolicy()
        self.classifier = classifier or MemoryClassifier(
            llm=llm,
            embeddings=embedding_service,
            retry_policy=self.retry_policy,
        )
        if self.classifier.on_failure is None:
            self.classifier.on_failure = self._on_failure
        if self.classifier.domain.type_min_importance:
            self.retention = self.retention.with_type_floors(self.classifier.domain.type_min_importance)
        self.anonymous_mode = anonymous_mode
        self.context_limit = context_limit
        self.min_similarity = min_similarity
        self.max_tool_rounds = max_tool_rounds
        self.temperature = temperature

        self.locks = ScopeLocks()
        self.failures: Counter[str] = Counter()
        self._initialized = False
        logger.info("MemoryManager created")

    async def initialize(self) -> None:
        """Initialize the memory system."""
        await self.vector_store.initialize()
        self._initialized = True
        count = await self.vector_store.count()
        logger.info(f"MemoryManager initialized with {count} stored memories")

    def _ensure_initialized(self) -> None:
        """Ensure the system is initialized."""
        if not self._initialized:
            raise RuntimeError("MemoryManager not initialized. Call initialize() first.")

    def _on_failure(self, operation: str, error: Exception) -> None:
        self.failures[operation] += 1
        logger.warning(f"{operation} failed, continuing with defaults: {error}")

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        return await retry_async(
            "embed", lambda: self.embedding_service.embed_batch(texts), self.retry_policy
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def load_context(
        self,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        conversation_topic: Optional[str] = None,
    ) -> MemoryContext:
        """
        Resolve who this turn belongs to.

        In anonymous mode a missing session id is generated for the
        lifetime of the returned context, and a missing user id becomes
        `anonymous_<8 hex>`. Either way the context is marked was_generated.

        Raises:
            ValidationError: No user id and anonymous mode is off
        """
        user_id = user_id.strip() if user_id else None
        session_id = session_id.strip() if session_id else None
        generated = False

        if not user_id:
            if not self.anonymous_mode:
                raise ValidationError("user_id is required when anonymous mode is disabled")
            user_id = f"anonymous_{uuid.uuid4().hex[:8]}"
            session_id = session_id or str(uuid.uuid4())
            generated = True
        elif not session_id and self.anonymous_mode:
            session_id = str(uuid.uuid4())
            generated = True

        context = MemoryContext(
            user_id=user_id,
            session_id=session_id,
            conversation_topic=conversation_topic,
            was_generated=generated,
        )
        if generated:
            logger.debug(f"Generated context {context.scope}")
        return context

    def _write_scope(self, context: MemoryContext) -> MemoryScope:
        """
        Where memories from this context are stored.

        A named user's generated session only lives as long as the
        context, so their memories go to the user-global scope where the
        next session can still see them.
        """
        if context.was_generated and not context.is_anonymous:
            return MemoryScope(context.user_id)
        return context.scope

    def _check_visible(self, record: Optional[MemoryRecord], memory_id: str, context: MemoryContext) -> MemoryRecord:
        if record is None or not context.scope.covers(record.scope):
            raise ValidationError(f"Unknown memory id: {memory_id}")
        return record

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        context: MemoryContext,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> list[SearchResult]:
        """Memories visible to the context, most similar to query first."""
        self._ensure_initialized()
        vector = (await self._embed([query]))[0]
        return await self.vector_store.search_similar(
            vector,
            top_k=limit or self.context_limit,
            scope=context.scope,
            min_similarity=self.min_similarity if min_similarity is None else min_similarity,
        )

    def format_memories_for_llm(self, results: list[SearchResult]) -> str:
        """
        Format retrieved memories for inclusion in an LLM prompt.

        Strong matches come first, then moderate ones, then the rest;
        everything passed in is included.
        """
        if not results:
            return ""

        lines = ["RELEVANT MEMORIES ABOUT THIS USER:", ""]
        ordered = sorted(
            results, key=lambda r: (not r.is_strong_match, not r.is_moderate_match)
        )
        for result in ordered:
            lines.append(result.record.to_context_string())
        lines.append("")
        lines.append("Use these only when they are relevant to the current request.")
        return "\n".join(lines)

    async def enhance_messages(
        self,
        messages: list[dict[str, Any]],
        context: MemoryContext,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """
        Prepend one system message with the memories relevant to the
        latest user message.

        The input is never reordered or modified; if nothing is found or
        retrieval fails the same messages are returned.
        """
        self._ensure_initialized()
        query = next(
            (m.get("content") for m in reversed(messages)
             if m.get("role") == "user" and isinstance(m.get("content"), str)),
            None,
        )
        if not query or not query.strip():
            return list(messages)

        async with scoped(context.scope):
            try:
                results = await self.search(query, context, limit, min_similarity)
            except IndexIntegrityError:
                raise
            except (ProviderError, StorageError) as e:
                self._on_failure("enhance_messages", e)
                return list(messages)

            if not results:
                return list(messages)

            logger.info(f"Injecting {len(results)} memories into context")
            block = self.format_memories_for_llm(results)
            return [{"role": "system", "content": block}, *messages]

    async def get_existing_memories(
        self,
        context: MemoryContext,
        limit: Optional[int] = None,
        query: Optional[str] = None,
    ) -> list[MemoryRecord]:
        """Memories visible to the context: newest first, or ranked by a query."""
        self._ensure_initialized()
        if query:
            total = await self.vector_store.count(context.scope)
            if total == 0:
                return []
            results = await self.search(query, context, limit=limit or total, min_similarity=0.0)
            return [r.record for r in results]
        return await self.vector_store.list_memories(context.scope, limit=limit)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _build_record(
        self,
        content: str,
        scope: MemoryScope,
        memory_type: MemoryType,
        importance: MemoryImportance,
        relevance: float = 0.0,
        tags: Optional[set[str]] = None,
        entities: Optional[list[NamedEntity]] = None,
        category: Optional[str] = None,
    ) -> MemoryRecord:
        now = utcnow()
        return MemoryRecord(
            id=new_memory_id(),
            scope=scope,
            content=content.strip(),
            type=memory_type,
            importance=importance,
            relevance=relevance,
            category=category,
            tags=set(list(tags or set())[: self.classifier.max_tags]),
            entities=list(entities or []),
            created_at=now,
            updated_at=now,
        )

    async def _store(self, scope: MemoryScope, records: list[MemoryRecord]) -> list[MemoryRecord]:
        """Write records and enforce retention in one critical section."""
        async with self.locks.hold(scope):
            await self.vector_store.store_embeddings(records)
            evicted = set(await self.retention.enforce(self.vector_store, scope))
        return [r for r in records if r.id not in evicted]

    async def process_interaction(
        self,
        user_message: str,
        assistant_message: str,
        context: MemoryContext,
        user_profile: Optional[UserProfile] = None,
    ) -> list[MemoryRecord]:
        """
        Remember what is worth remembering from one finished turn.

        Classification and embedding failures are logged and yield fewer
        (or no) memories; they never break the turn. Integrity errors
        still propagate.

        Returns:
            The memories that were stored
        """
        self._ensure_initialized()
        scope = self._write_scope(context)

        async with scoped(scope):
            if self.classifier.llm is None:
                # Without a model the user message is the only candidate
                candidates = [user_message.strip()] if user_message and user_message.strip() else []
            else:
                # An empty answer or a failed extraction means nothing to remember
                candidates = await self.classifier.extract_candidates(user_message, assistant_message, context)

            try:
                existing = await self.vector_store.list_memories(context.scope)
            except IndexIntegrityError:
                raise
            except StorageError as e:
                self._on_failure("process_interaction", e)
                return []

            records = []
            seen = set()
            for candidate in candidates:
                key = normalize_text(candidate)
                if key in seen:
                    continue
                if not await self.classifier.should_update(candidate, context, existing):
                    continue
                seen.add(key)

                classification = await self.classifier.classify(candidate, context)
                if user_profile is not None:
                    relevance = await self.classifier.calculate_relevance(candidate, context, user_profile)
                else:
                    relevance = classification.relevance
                record = self._build_record(
                    candidate,
                    scope,
                    classification.type,
                    classification.importance,
                    relevance=relevance,
                    tags=classification.suggested_tags,
                    entities=classification.entities,
                    category=classification.category,
                )
                if not self.retention.admits(record):
                    logger.debug(
                        f"Below importance floor ({record.importance.name}): {candidate[:40]!r}"
                    )
                    continue
                records.append(record)

            if not records:
                logger.debug("Nothing worth remembering in this turn")
                return []

            try:
                vectors = await self._embed([r.content for r in records])
            except ProviderError as e:
                self._on_failure("process_interaction", e)
                return []
            for record, vector in zip(records, vectors):
                record.embedding = vector

            stored = await self._store(scope, records)
            logger.info(f"Stored {len(stored)} new memories")
            return stored

    async def add_memory(
        self,
        content: str,
        context: MemoryContext,
        memory_type: Optional[MemoryType] = None,
        importance: Optional[MemoryImportance] = None,
        tags: Optional[set[str]] = None,
        category: Optional[str] = None,
    ) -> MemoryRecord:
        """
        Store one memory explicitly.

        Type and importance are classified when not given. Content that
        duplicates a memory already visible to the context is rejected.

        Raises:
            ValidationError: Empty content, a duplicate, or importance below
                the retention floor
            ProviderError: The content could not be embedded
        """
        self._ensure_initialized()
        if not content or not content.strip():
            raise ValidationError("Memory content cannot be empty")
        scope = self._write_scope(context)

        async with scoped(scope):
            classification = None
            if memory_type is None or importance is None:
                classification = await self.classifier.classify(content, context)
            record = self._build_record(
                content,
                scope,
                memory_type or classification.type,
                importance if importance is not None else classification.importance,
                relevance=classification.relevance if classification else 1.0,
                tags=tags if tags is not None else (classification.suggested_tags if classification else set()),
                entities=classification.entities if classification else [],
                category=category or (classification.category if classification else None),
            )
            if not self.retention.admits(record):
                raise ValidationError(
                    f"Importance {record.importance.name} is below the minimum "
                    f"{self.retention.floor_for(record.type).name} for {record.type.value}"
                )

            record.embedding = (await self._embed([record.content]))[0]
            existing = await self.vector_store.list_memories(context.scope)
            duplicate = await self.classifier.find_duplicate(record.content, existing, record.embedding)
            if duplicate is not None:
                raise ValidationError(
                    f"Duplicate of memory {duplicate.memory.id} "
                    f"({duplicate.similarity_score:.2f}): {duplicate.memory.content}"
                )
            stored = await self._store(scope, [record])
            if not stored:
                logger.info(f"Memory {record.id} was evicted immediately by retention")
            return record

    async def update_memory(
        self,
        memory_id: str,
        context: MemoryContext,
        content: Optional[str] = None,
        memory_type: Optional[MemoryType] = None,
        importance: Optional[MemoryImportance] = None,
        tags: Optional[set[str]] = None,
    ) -> MemoryRecord:
        """
        Change a stored memory. New content is re-embedded.

        Raises:
            ValidationError: Unknown id (or not visible to the context), empty content
        """
        self._ensure_initialized()
        if content is not None and not content.strip():
            raise ValidationError("Memory content cannot be empty")

        record = self._check_visible(await self.vector_store.get(memory_id), memory_id, context)
        async with scoped(record.scope):
            embedding = record.embedding
            if content is not None and content.strip() != record.content:
                embedding = (await self._embed([content.strip()]))[0]

            async with self.locks.hold(record.scope):
                # Re-read under the lock: it may have been deleted meanwhile
                current = self._check_visible(await self.vector_store.get(memory_id), memory_id, context)
                if content is not None:
                    current.content = content.strip()
                    current.embedding = embedding
                if memory_type is not None:
                    current.type = memory_type
                if importance is not None:
                    current.importance = importance
                if tags is not None:
                    current.tags = set(tags)
                if not self.retention.admits(current):
                    raise ValidationError(
                        f"Importance {current.importance.name} is below the minimum for {current.type.value}"
                    )
                current.updated_at = utcnow()
                await self.vector_store.store_embeddings([current])

            logger.info(f"Updated memory {memory_id}")
            return current

    async def delete_memory(self, memory_id: str, context: MemoryContext) -> bool:
        """Delete one memory. Unknown or invisible ids return False."""
        self._ensure_initialized()
        try:
            record = self._check_visible(await self.vector_store.get(memory_id), memory_id, context)
        except ValidationError:
            return False
        async with self.locks.hold(record.scope):
            deleted = await self.vector_store.delete([memory_id])
        if deleted:
            logger.info(f"Deleted memory {memory_id}")
        return deleted > 0

    async def clear_memory(self, context: MemoryContext) -> int:
        """
        Delete memories owned by the context's scope.

        With a session only that session's memories go; without one,
        everything for the user goes.
        """
        self._ensure_initialized()
        scope = context.scope
        async with scoped(scope), self.locks.hold(scope):
            removed = await self.vector_store.clear(scope)
        logger.info(f"Cleared {removed} memories for {scope}")
        return removed

    async def refresh_relevance(
        self,
        context: MemoryContext,
        user_profile: Optional[UserProfile] = None,
    ) -> int:
        """
        Recompute the stored relevance of a scope's memories against a new
        context and profile.

        Returns:
            How many memories changed
        """
        self._ensure_initialized()
        scope = self._write_scope(context)
        async with scoped(scope):
            memories = await self.vector_store.list_memories(scope, exact=True)
            changed = []
            for memory in memories:
                relevance = await self.classifier.calculate_relevance(memory.content, context, user_profile)
                if abs(relevance - memory.relevance) > 1e-6:
                    memory.relevance = relevance
                    changed.append(memory)

            if changed:
                async with self.locks.hold(scope):
                    # Only rewrite memories that still exist
                    alive = [m for m in changed if await self.vector_store.get(m.id) is not None]
                    await self.vector_store.store_embeddings(alive)
                changed = alive
            logger.info(f"Refreshed relevance of {len(changed)}/{len(memories)} memories")
            return len(changed)

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    async def suggest_consolidation(
        self,
        context: MemoryContext,
        criteria: Optional[ConsolidationCriteria] = None,
    ) -> list[ConsolidationSuggestion]:
        """Consolidation suggestions for the memories stored in the context's scope."""
        self._ensure_initialized()
        scope = self._write_scope(context)
        async with scoped(scope):
            memories = await self.vector_store.list_memories(scope, exact=True)
            return await self.classifier.suggest_consolidation(memories, criteria)

    async def _summarize(self, members: list[MemoryRecord]) -> str:
        joined = "; ".join(m.content.rstrip(".") for m in members)
        if self.llm is None:
            return joined
        prompt = SUMMARY_PROMPT.format(memories="\n".join(f"- {m.content}" for m in members))
        try:
            response = await retry_async(
                "summarize",
                lambda: self.llm.generate(prompt=prompt, temperature=0.2, max_tokens=300),
                self.retry_policy,
            )
        except ProviderError as e:
            self._on_failure("summarize", e)
            return joined
        return (response.content or "").strip() or joined

    def _combined(self, members: list[MemoryRecord], content: str, scope: MemoryScope) -> MemoryRecord:
        """One record carrying the strongest metadata of the members."""
        lead = max(members, key=lambda m: (m.importance, m.updated_at, m.id))
        entities = []
        seen = set()
        for member in members:
            for entity in member.entities:
                key = (entity.text.lower(), entity.type)
                if key not in seen:
                    seen.add(key)
                    entities.append(entity)
        record = self._build_record(
            content,
            scope,
            lead.type,
            max(m.importance for m in members),
            relevance=max(m.relevance for m in members),
            tags=set().union(*(m.tags for m in members)),
            entities=entities,
            category=lead.category,
        )
        record.created_at = min(m.created_at for m in members)
        return record

    async def apply_consolidation(
        self,
        suggestion: ConsolidationSuggestion,
        context: MemoryContext,
    ) -> list[MemoryRecord]:
        """
        Carry out one consolidation suggestion.

        Any new embeddings are computed first, so cancelling during that
        phase changes nothing; the store is then updated in one shielded
        critical section.

        Returns:
            The records written (new or changed)

        Raises:
            ValidationError: A member id is unknown or not visible
        """
        self._ensure_initialized()
        members = []
        for memory_id in suggestion.memory_ids:
            members.append(self._check_visible(await self.vector_store.get(memory_id), memory_id, context))
        if not members:
            return []
        scope = members[0].scope

        upserts: list[MemoryRecord] = []
        deletes: list[str] = []

        async with scoped(scope):
            if suggestion.type == ConsolidationType.MERGE:
                lead = max(members, key=lambda m: (m.importance, len(m.content), m.updated_at, m.id))
                merged = self._combined(members, lead.content, scope)
                merged.embedding = lead.embedding or (await self._embed([lead.content]))[0]
                upserts.append(merged)
                deletes.extend(m.id for m in members)

            elif suggestion.type == ConsolidationType.SUMMARIZE:
                summary = await self._summarize(members)
                combined = self._combined(members, summary, scope)
                combined.embedding = (await self._embed([summary]))[0]
                upserts.append(combined)
                deletes.extend(m.id for m in members)

            elif suggestion.type == ConsolidationType.ARCHIVE:
                # Demote to the lowest admissible importance so they are evicted first
                for member in members:
                    member.importance = self.retention.floor_for(member.type)
                    member.updated_at = utcnow()
                    upserts.append(member)

            elif suggestion.type == ConsolidationType.DELETE:
                deletes.extend(m.id for m in members)

            elif suggestion.type == ConsolidationType.SPLIT:
                for member in members:
                    parts = [p.strip() for p in _SENTENCE_RE.split(member.content) if len(p.split()) >= 2]
                    if len(parts) < 2:
                        continue
                    for part in parts:
                        piece = self._build_record(
                            part, scope, member.type, member.importance,
                            relevance=member.relevance, tags=member.tags,
                            entities=[e for e in member.entities if e.text.lower() in part.lower()],
                            category=member.category,
                        )
                        piece.created_at = member.created_at
                        upserts.append(piece)
                    deletes.append(member.id)
                pending = [r for r in upserts if not r.embedding]
                if pending:
                    vectors = await self._embed([r.content for r in pending])
                    for record, vector in zip(pending, vectors):
                        record.embedding = vector

            await asyncio.shield(self._commit(scope, upserts, deletes))
            logger.info(
                f"Applied {suggestion.type.value}: {len(upserts)} written, {len(deletes)} removed"
            )
            return upserts

    async def _commit(self, scope: MemoryScope, upserts: list[MemoryRecord], deletes: list[str]) -> None:
        async with self.locks.hold(scope):
            if upserts:
                await self.vector_store.store_embeddings(upserts)
            keep = {r.id for r in upserts}
            doomed = [i for i in deletes if i not in keep]
            if doomed:
                await self.vector_store.delete(doomed)
            await self.retention.enforce(self.vector_store, scope)

    # ------------------------------------------------------------------
    # Agent turn
    # ------------------------------------------------------------------

    async def run(
        self,
        message: str,
        context: Optional[MemoryContext] = None,
        remember: bool = False,
    ) -> str:
        """
        Answer one user message with the memory tools available.

        The model may call tools for up to max_tool_rounds rounds; after
        that it is asked once more without tools for a final answer.

        Args:
            message: The user's message
            context: Defaults to a fresh context from load_context()
            remember: Also run process_interaction on the finished turn
        """
        # Local import: tools builds on this module
        from ..tools import MemoryToolRegistry

        self._ensure_initialized()
        if self.llm is None:
            raise RuntimeError("MemoryManager.run() needs an LLM provider")
        context = context or self.load_context()

        registry = MemoryToolRegistry(self, context)
        tools = registry.get_definitions()
        messages = await self.enhance_messages(
            [
                {"role": "system", "content": AGENT_SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ],
            context,
        )

        async with scoped(context.scope):
            answer = None
            for round_number in range(1, self.max_tool_rounds + 1):
                response = await retry_async(
                    "run",
                    lambda: self.llm.generate(
                        messages=messages, temperature=self.temperature, tools=tools
                    ),
                    self.retry_policy,
                )
                if not response.tool_calls:
                    answer = response.content
                    break

                logger.info(f"Tool round {round_number}: {len(response.tool_calls)} call(s)")
                messages.append({
                    "role": "assistant",
                    "content": response.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.function.name, "arguments": call.function.arguments},
                        }
                        for call in response.tool_calls
                    ],
                })
                for call in response.tool_calls:
                    result = await registry.execute(call.function.name, parse_tool_arguments(call))
                    messages.append({
                        "role": "tool",
                        "tool_call_id": call.id,
                        "name": call.function.name,
                        "content": result,
                    })

            if answer is None:
                logger.warning(f"Tool rounds exhausted after {self.max_tool_rounds}, asking for a final answer")
                response = await retry_async(
                    "run",
                    lambda: self.llm.generate(messages=messages, temperature=self.temperature),
                    self.retry_policy,
                )
                answer = response.content

        answer = answer or ""
        if remember:
            await self.process_interaction(message, answer, context)
        return answer

    async def close(self) -> None:
        """Clean up resources."""
        await self.vector_store.close()
        logger.info("MemoryManager closed")


def create_vector_store(config: "Config") -> VectorStore:
    """Build the configured store backend (not yet initialized)."""
    from .chroma_store import ChromaVectorStore
    from .inmemory_store import HNSWVectorStore, InMemoryVectorStore

    store = config.store
    if store.backend == "memory":
        return InMemoryVectorStore(metric=store.metric)
    elif store.backend == "hnsw":
        for warning in config.hnsw.validate():
            logger.warning(f"HNSW configuration: {warning}")
        return HNSWVectorStore(
            metric=store.metric,
            m=config.hnsw.m,
            ef_construction=config.hnsw.ef_construction,
            ef_search=config.hnsw.ef_search,
            fallback_threshold=config.hnsw.fallback_threshold,
            seed=config.hnsw.seed,
        )
    elif store.backend == "chroma":
        return ChromaVectorStore(
            persist_directory=store.chroma_path,
            collection_name=store.collection_name,
            metric=store.metric,
        )
    else:
        raise ValueError(f"Unknown store backend: {store.backend}")


async def create_memory_manager(
    config: "Config",
    llm: Optional[LLMProvider] = None,
    embedding_service: Optional[EmbeddingService] = None,
    vector_store: Optional[VectorStore] = None,
) -> MemoryManager:
    """
    Factory function to create a configured MemoryManager.

    Anything passed in explicitly is used as-is; the rest is built from
    config.

    Returns:
        Initialized MemoryManager
    """
    from ..llm.factory import create_llm_provider
    from .entities import SpacyEntityExtractor
    from .prompts import MemoryDomainConfig
    from .retention import policy_from_config

    # Create embedding service
    if embedding_service is None:
        embedding_service = create_embedding_service(
            provider=config.embedding.provider,
            api_key=config.llm.openai_api_key,
            model=(
                config.embedding.openai_model
                if config.embedding.provider == "openai"
                else config.embedding.local_model
            ),
            dimensions=config.embedding.dimensions,
        )

    if llm is None:
        llm = create_llm_provider(config.llm)

    if vector_store is None:
        vector_store = create_vector_store(config)

    retry_policy = RetryPolicy(
        attempts=config.retry.attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
        timeout=config.retry.timeout,
    )

    settings = config.classifier
    if settings.domain == "clinical":
        domain = MemoryDomainConfig.clinical()
    elif settings.domain == "legal":
        domain = MemoryDomainConfig.legal()
    else:
        domain = MemoryDomainConfig(
            max_memories_per_interaction=settings.max_memories_per_interaction,
            min_importance=MemoryImportance.parse(settings.min_importance) or MemoryImportance.LOW,
        )
    if settings.custom_categories:
        domain = domain.with_categories(*settings.custom_categories)

    entity_extractor = None
    if settings.entity_backend == "spacy":
        entity_extractor = SpacyEntityExtractor(settings.spacy_model)

    classifier = MemoryClassifier(
        llm=llm,
        embeddings=embedding_service,
        domain=domain,
        retry_policy=retry_policy,
        duplicate_threshold=settings.duplicate_threshold,
        max_tags=settings.max_tags,
        entity_extractor=entity_extractor,
        temperature=config.llm.temperature,
    )

    # Create and initialize manager
    manager = MemoryManager(
        vector_store=vector_store,
        embedding_service=embedding_service,
        classifier=classifier,
        llm=llm,
        retention=policy_from_config(
            max_memories=config.retention.max_memories,
            min_importance=config.retention.min_importance,
            type_min_importance=config.retention.type_min_importance,
        ),
        retry_policy=retry_policy,
        anonymous_mode=config.app.anonymous_mode,
        context_limit=config.app.context_limit,
        min_similarity=config.app.min_similarity,
        max_tool_rounds=config.llm.max_tool_rounds,
    )

    await manager.initialize()
    return manager
