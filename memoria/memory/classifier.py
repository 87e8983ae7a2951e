"""
Memory Classifier - decides what is worth remembering and how.

Cheap checks (trivial content, relevance heuristics) run locally and
never touch the model. Everything model-backed goes through bounded
retry and fails into a conservative default instead of raising, so a
flaky provider can never break a conversation turn. Failures are
reported through `on_failure` so the caller can log or count them.
"""

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional

import numpy as np

from ..errors import DimensionMismatchError, ProviderError
from ..llm.base import LLMProvider
from ..llm.retry import RetryPolicy, retry_async
from .embeddings import EmbeddingService
from .entities import SpacyEntityExtractor, extract_pattern_entities
from .models import (
    ConsolidationCriteria,
    ConsolidationSuggestion,
    ConsolidationType,
    MemoryClassification,
    MemoryContext,
    MemoryImportance,
    MemoryRecord,
    MemoryType,
    NamedEntity,
    SentimentAnalysis,
    SimilarityType,
    SimilarMemory,
    UserProfile,
    clamp,
    utcnow,
)
from .prompts import (
    CLASSIFICATION_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    MemoryDomainConfig,
    entities_prompt,
    parse_json_response,
    sentiment_prompt,
    tags_prompt,
)
from .similarity import cosine_similarity

logger = logging.getLogger("memoria.memory.classifier")

FailureCallback = Callable[[str, Exception], None]

# Greetings and acknowledgements that never deserve a memory
TRIVIAL_PHRASES = {
    "hi", "hello", "hey", "hiya", "yo", "howdy",
    "good morning", "good afternoon", "good evening", "good night",
    "ok", "okay", "k", "kk", "alright", "fine",
    "thanks", "thank you", "thx", "ty", "thanks a lot", "thank you so much",
    "bye", "goodbye", "see you", "see ya", "later", "cya",
    "yes", "no", "yep", "nope", "yeah", "nah", "sure", "maybe",
    "cool", "great", "nice", "awesome", "got it", "sounds good", "lol", "haha",
}

# First-person statements of fact, preference or instruction
MARKER_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r"\bmy name is\b",
    r"\bi am\b|\bi'm\b",
    r"\bi (?:really |usually |always |never )?(?:like|love|prefer|enjoy|hate|dislike|want|need)\b",
    r"\bi (?:work|live|study|teach|own|have|use)\b",
    r"\bmy\b",
    r"\ballergic\b|\ballergy\b",
    r"\bfavou?rite\b",
    r"\b(?:always|never) (?:use|call|send|reply|answer|write)\b",
    r"\bplease (?:remember|always|never|don't|do not)\b",
    r"\bremember (?:that|this)\b",
    r"\bi(?:'ve| have) (?:been|decided|started|switched)\b",
    r"\bcall me\b",
)]

STOPWORDS = {
    "the", "a", "an", "and", "or", "but", "if", "then", "so", "of", "to", "in",
    "on", "at", "by", "for", "with", "about", "from", "into", "over", "after",
    "is", "are", "was", "were", "be", "been", "being", "am", "do", "does", "did",
    "have", "has", "had", "it", "its", "this", "that", "these", "those", "there",
    "i", "me", "my", "mine", "you", "your", "we", "our", "they", "their", "he",
    "she", "his", "her", "them", "us", "what", "which", "who", "whom", "when",
    "where", "why", "how", "not", "no", "yes", "can", "could", "should", "would",
    "will", "just", "very", "really", "also", "too", "some", "any", "all", "more",
    "most", "other", "such", "than", "as", "like", "im", "dont", "ive", "please",
}

_WORD_RE = re.compile(r"[^\W\d_]{2,}", re.UNICODE)
_NORMALIZE_RE = re.compile(r"[^\w\s]", re.UNICODE)

RECENCY_HALF_LIFE_HOURS = 24.0
EXACT_DUPLICATE_SCORE = 0.98
MERGE_SCORE = 0.9


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    return " ".join(_NORMALIZE_RE.sub(" ", text.lower()).split())


def is_trivial(content: str) -> bool:
    """Greeting, acknowledgement or content with no real words."""
    if not content or not _WORD_RE.search(content):
        return True
    return normalize_text(content) in TRIVIAL_PHRASES


class MemoryClassifier:
    """
    Decides whether content deserves a memory and classifies it.

    The embedding service is injected for duplicate detection and
    consolidation; the classifier never talks to the store.
    """

    def __init__(
        self,
        llm: Optional[LLMProvider] = None,
        embeddings: Optional[EmbeddingService] = None,
        domain: Optional[MemoryDomainConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        duplicate_threshold: float = 0.95,
        max_tags: int = 10,
        entity_extractor: Optional[SpacyEntityExtractor] = None,
        temperature: float = 0.2,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.llm = llm
        self.embeddings = embeddings
        self.domain = domain or MemoryDomainConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.duplicate_threshold = duplicate_threshold
        self.max_tags = max_tags
        self.entity_extractor = entity_extractor
        self.temperature = temperature
        self.on_failure = on_failure

    @property
    def min_importance(self) -> MemoryImportance:
        return self.domain.min_importance

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _report(self, operation: str, error: Exception) -> None:
        if self.on_failure is not None:
            self.on_failure(operation, error)
        else:
            logger.warning(f"Classifier {operation} failed, using default: {error}")

    async def _generate_json(
        self,
        operation: str,
        prompt: str,
        system_prompt: str = CLASSIFICATION_SYSTEM_PROMPT,
        json_mode: bool = True,
        max_tokens: int = 800,
    ) -> Any:
        """Call the model with retry and parse its output as JSON."""
        if self.llm is None:
            raise ProviderError(operation, "no LLM provider configured")

        response = await retry_async(
            operation,
            lambda: self.llm.generate(
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=self.temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
            ),
            self.retry_policy,
        )
        return parse_json_response(response.content)

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.embeddings is None:
            raise ProviderError("embed", "no embedding service configured")
        return await retry_async(
            "embed", lambda: self.embeddings.embed_batch(texts), self.retry_policy
        )

    async def _ensure_embeddings(self, memories: list[MemoryRecord]) -> dict[str, list[float]]:
        """Embeddings by memory id; missing ones are computed in one batch."""
        vectors = {m.id: m.embedding for m in memories if m.embedding}
        missing = [m for m in memories if not m.embedding]
        if missing:
            computed = await self._embed_batch([m.content for m in missing])
            for memory, vector in zip(missing, computed):
                vectors[memory.id] = vector
        return vectors

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def is_trivial(self, content: str) -> bool:
        return is_trivial(content)

    async def should_update(
        self,
        content: str,
        context: Optional[MemoryContext] = None,
        existing_memories: Optional[list[MemoryRecord]] = None,
    ) -> bool:
        """
        Decide whether content deserves a new memory.

        Trivial content is rejected without any model or embedding call.
        """
        if is_trivial(content):
            logger.debug(f"Rejected trivial content: {content[:40]!r}")
            return False

        relevance = await self.calculate_relevance(content, context)
        if relevance < self.min_importance.threshold:
            logger.debug(f"Rejected low relevance ({relevance:.2f}): {content[:40]!r}")
            return False

        if existing_memories:
            try:
                duplicate = await self.find_duplicate(content, existing_memories)
            except (ProviderError, ValueError) as e:
                self._report("should_update", e)
                return False
            if duplicate is not None:
                logger.debug(
                    f"Rejected duplicate of {duplicate.memory.id} "
                    f"({duplicate.similarity_score:.3f}): {content[:40]!r}"
                )
                return False

        return True

    async def find_duplicate(
        self,
        content: str,
        existing_memories: list[MemoryRecord],
        query_embedding: Optional[list[float]] = None,
    ) -> Optional[SimilarMemory]:
        """
        The closest existing memory scoring at least duplicate_threshold.

        Raises:
            ProviderError: Embeddings could not be computed
        """
        if not existing_memories:
            return None
        similar = await self._find_similar(
            content, existing_memories, self.duplicate_threshold, query_embedding
        )
        return similar[0] if similar else None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def classify(
        self,
        content: str,
        context: Optional[MemoryContext] = None,
    ) -> MemoryClassification:
        """Classify content with the model; malformed output yields the default."""
        try:
            data = await self._generate_json(
                "classify", self.domain.classification_prompt(content)
            )
            classification = self._parse_classification(data)
        except (ProviderError, ValueError) as e:
            self._report("classify", e)
            return MemoryClassification.default()

        if self.entity_extractor is not None:
            classification.entities = await self.extract_entities(content)
        return classification

    def _parse_classification(self, data: Any) -> MemoryClassification:
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

        label = data.get("type")
        category = None
        if isinstance(label, str) and self.domain.custom_categories:
            for custom in self.domain.custom_categories:
                if custom.lower() == label.strip().lower():
                    category = custom
                    break
        memory_type = MemoryType.parse(label) or MemoryType.OTHER

        importance = MemoryImportance.parse(data.get("importance")) or MemoryImportance.LOW

        try:
            relevance = float(data.get("relevance", 0.0))
        except (TypeError, ValueError):
            relevance = 0.0

        return MemoryClassification(
            type=memory_type,
            importance=importance,
            relevance=relevance,
            suggested_tags=self._parse_tags(data.get("tags"), self.max_tags),
            entities=self._parse_entities(data.get("entities")),
            sentiment=self._parse_sentiment(data.get("sentiment")),
            topic=data.get("topic") if isinstance(data.get("topic"), str) else None,
            category=category,
        )

    def _parse_tags(self, raw: Any, max_tags: int) -> set[str]:
        if not isinstance(raw, list):
            return set()
        tags = []
        for item in raw:
            if isinstance(item, str):
                tag = item.strip().lower()
                if tag and tag not in tags:
                    tags.append(tag)
        return set(tags[:max_tags])

    def _parse_entities(self, raw: Any) -> list[NamedEntity]:
        if not isinstance(raw, list):
            return []
        entities = []
        for item in raw:
            if not isinstance(item, dict) or not item.get("text"):
                continue
            try:
                entities.append(NamedEntity.from_dict(item))
            except (TypeError, ValueError):
                continue
        return entities

    def _parse_sentiment(self, raw: Any) -> SentimentAnalysis:
        if isinstance(raw, dict):
            try:
                return SentimentAnalysis.from_scores(
                    float(raw.get("positive", 0.0)),
                    float(raw.get("negative", 0.0)),
                    float(raw.get("neutral", 0.0)),
                )
            except (TypeError, ValueError):
                return SentimentAnalysis()
        if isinstance(raw, str):
            label = raw.strip().lower()
            scores = {
                "positive": (1.0, 0.0, 0.0),
                "negative": (0.0, 1.0, 0.0),
                "mixed": (0.5, 0.5, 0.0),
            }.get(label, (0.0, 0.0, 1.0))
            return SentimentAnalysis.from_scores(*scores)
        return SentimentAnalysis()

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    async def calculate_relevance(
        self,
        content: str,
        context: Optional[MemoryContext] = None,
        user_profile: Optional[UserProfile] = None,
    ) -> float:
        """
        Heuristic usefulness of content for future conversations, in [0, 1].

        Combines first-person fact/preference markers, context recency
        (24h half-life), profile alignment when a profile is given, and
        how much information the content carries.
        """
        markers = self._marker_score(content)
        recency = self._recency_score(context)
        info = min(1.0, len(_WORD_RE.findall(content)) / 12.0)

        if user_profile is not None:
            profile = self._profile_score(content, user_profile)
            score = 0.45 * markers + 0.2 * recency + 0.25 * profile + 0.1 * info
        else:
            score = 0.55 * markers + 0.3 * recency + 0.15 * info
        return clamp(score)

    def _marker_score(self, content: str) -> float:
        hits = sum(1 for pattern in MARKER_PATTERNS if pattern.search(content))
        if hits == 0:
            return 0.1
        return min(1.0, 0.4 + 0.2 * (hits - 1))

    def _recency_score(self, context: Optional[MemoryContext]) -> float:
        if context is None:
            return 0.5
        timestamp = context.timestamp
        now = utcnow() if timestamp.tzinfo else datetime.now()
        age_hours = max(0.0, (now - timestamp).total_seconds() / 3600.0)
        return 0.5 ** (age_hours / RECENCY_HALF_LIFE_HOURS)

    def _profile_score(self, content: str, profile: UserProfile) -> float:
        words = set(normalize_text(content).split())
        text = normalize_text(content)
        score = 0.0
        for topic, weight in profile.topic_preferences.items():
            topic_norm = normalize_text(topic)
            if topic_norm and (topic_norm in words or topic_norm in text):
                score = max(score, clamp(weight))
        for interest in profile.interests:
            interest_norm = normalize_text(interest)
            if interest_norm and interest_norm in text:
                score = max(score, 1.0)
        return score

    # ------------------------------------------------------------------
    # Tags, entities, sentiment
    # ------------------------------------------------------------------

    def _keyword_tags(self, content: str, max_tags: int) -> set[str]:
        words = [w.lower() for w in _WORD_RE.findall(content)]
        counts = Counter(w for w in words if len(w) >= 3 and w not in STOPWORDS)
        first_seen = {w: i for i, w in reversed(list(enumerate(words)))}
        ranked = sorted(counts, key=lambda w: (-counts[w], first_seen[w]))
        return set(ranked[:max_tags])

    async def extract_tags(self, content: str, max_tags: Optional[int] = None) -> set[str]:
        """Short lowercase keywords; keyword heuristics when no model is configured."""
        if max_tags is None:
            max_tags = self.max_tags
        if max_tags <= 0:
            return set()
        if self.llm is None:
            return self._keyword_tags(content, max_tags)
        try:
            data = await self._generate_json(
                "extract_tags", tags_prompt(content, max_tags), json_mode=False, max_tokens=200
            )
        except (ProviderError, ValueError) as e:
            self._report("extract_tags", e)
            return set()
        if isinstance(data, dict):
            data = data.get("tags")
        return self._parse_tags(data, max_tags)

    async def extract_entities(self, content: str) -> list[NamedEntity]:
        """Named entities via spaCy when configured, otherwise via the model."""
        if self.entity_extractor is not None:
            try:
                return self.entity_extractor.extract(content)
            except RuntimeError as e:
                self._report("extract_entities", e)
                return []
        if self.llm is None:
            return extract_pattern_entities(content)
        try:
            data = await self._generate_json(
                "extract_entities", entities_prompt(content), json_mode=False, max_tokens=500
            )
        except (ProviderError, ValueError) as e:
            self._report("extract_entities", e)
            return []
        if isinstance(data, dict):
            data = data.get("entities")
        return self._parse_entities(data)

    async def analyze_sentiment(self, content: str) -> SentimentAnalysis:
        """Sentiment scores summing to 1; neutral when the model is unavailable."""
        if self.llm is None:
            return SentimentAnalysis()
        try:
            data = await self._generate_json(
                "analyze_sentiment", sentiment_prompt(content), max_tokens=100
            )
        except (ProviderError, ValueError) as e:
            self._report("analyze_sentiment", e)
            return SentimentAnalysis()
        return self._parse_sentiment(data)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_candidates(
        self,
        user_message: str,
        assistant_message: str,
        context: Optional[MemoryContext] = None,
    ) -> list[str]:
        """Ask the model which parts of a turn are worth remembering."""
        if self.llm is None:
            return []
        try:
            data = await self._generate_json(
                "extract_candidates",
                self.domain.extraction_prompt(user_message, assistant_message),
                system_prompt=EXTRACTION_SYSTEM_PROMPT,
            )
        except (ProviderError, ValueError) as e:
            self._report("extract_candidates", e)
            return []

        items = data.get("memories") if isinstance(data, dict) else data
        if not isinstance(items, list):
            self._report("extract_candidates", ValueError(f"Unexpected extraction output: {data!r:.100}"))
            return []

        candidates = []
        for item in items:
            text = item.get("content") if isinstance(item, dict) else item
            if isinstance(text, str) and text.strip() and text.strip() not in candidates:
                candidates.append(text.strip())
        return candidates[: self.domain.max_memories_per_interaction]

    # ------------------------------------------------------------------
    # Similarity and consolidation
    # ------------------------------------------------------------------

    async def _find_similar(
        self,
        content: str,
        existing_memories: list[MemoryRecord],
        similarity_threshold: float,
        query: Optional[list[float]] = None,
    ) -> list[SimilarMemory]:
        normalized = normalize_text(content)
        if query is None:
            query = (await self._embed_batch([content]))[0]
        vectors = await self._ensure_embeddings(existing_memories)

        similar = []
        for memory in existing_memories:
            vector = vectors.get(memory.id)
            if vector is None:
                continue
            if len(vector) != len(query):
                raise DimensionMismatchError(len(query), len(vector))
            score = cosine_similarity(query, vector)
            text_equal = normalize_text(memory.content) == normalized
            if text_equal:
                score = max(score, 1.0)
            if score < similarity_threshold:
                continue
            if text_equal or score >= EXACT_DUPLICATE_SCORE:
                kind = SimilarityType.EXACT_DUPLICATE
                reason = "Identical content" if text_equal else f"Near-identical embedding ({score:.3f})"
            else:
                kind = SimilarityType.SEMANTIC_SIMILARITY
                reason = f"Semantically similar ({score:.3f})"
            similar.append(SimilarMemory(
                memory=memory,
                similarity_score=min(score, 1.0),
                similarity_type=kind,
                reason=reason,
            ))

        similar.sort(key=lambda s: (-s.similarity_score, s.memory.id))
        return similar

    async def detect_similar_content(
        self,
        content: str,
        existing_memories: list[MemoryRecord],
        similarity_threshold: float = 0.8,
    ) -> list[SimilarMemory]:
        """Existing memories at or above the threshold, most similar first."""
        if not existing_memories:
            return []
        try:
            return await self._find_similar(content, existing_memories, similarity_threshold)
        except (ProviderError, ValueError) as e:
            self._report("detect_similar_content", e)
            return []

    async def suggest_consolidation(
        self,
        memories: list[MemoryRecord],
        criteria: Optional[ConsolidationCriteria] = None,
    ) -> list[ConsolidationSuggestion]:
        """
        Group related memories and suggest how to consolidate each group.

        Groups are built greedily over memories sorted by creation time:
        a memory joins a group when its mean similarity to the members
        reaches the threshold and the group stays inside the time window.
        """
        criteria = criteria or ConsolidationCriteria()
        if len(memories) < criteria.min_memories_for_consolidation:
            return []

        try:
            vectors = await self._ensure_embeddings(memories)
        except (ProviderError, ValueError) as e:
            self._report("suggest_consolidation", e)
            return []

        ordered = sorted(memories, key=lambda m: (m.created_at, m.id))
        ids = [m.id for m in ordered]
        matrix = np.stack([np.asarray(vectors[i], dtype=np.float32) for i in ids])
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        unit = matrix / norms
        sims = unit @ unit.T

        assigned = set()
        suggestions = []
        for i, seed in enumerate(ordered):
            if i in assigned:
                continue
            group = [i]
            for j in range(i + 1, len(ordered)):
                if j in assigned:
                    continue
                if ordered[j].created_at - seed.created_at > criteria.max_time_span:
                    break
                if float(np.mean(sims[j, group])) >= criteria.similarity_threshold:
                    group.append(j)

            if len(group) < criteria.min_memories_for_consolidation:
                continue

            pairs = [(a, b) for x, a in enumerate(group) for b in group[x + 1:]]
            mean_sim = float(np.mean([sims[a, b] for a, b in pairs]))
            if mean_sim < criteria.similarity_threshold:
                continue

            assigned.update(group)
            members = [ordered[k] for k in group]
            suggestions.extend(
                self._group_suggestions(members, group, sims, mean_sim, criteria)
            )

        logger.info(f"Consolidation: {len(suggestions)} suggestions from {len(memories)} memories")
        return suggestions

    def _group_suggestions(
        self,
        members: list[MemoryRecord],
        group: list[int],
        sims: np.ndarray,
        mean_sim: float,
        criteria: ConsolidationCriteria,
    ) -> list[ConsolidationSuggestion]:
        member_ids = [m.id for m in members]
        title = self._suggest_title(members)
        if mean_sim >= MERGE_SCORE:
            primary = ConsolidationSuggestion(
                memory_ids=member_ids,
                type=ConsolidationType.MERGE,
                reason=f"{len(members)} near-duplicate memories (mean similarity {mean_sim:.2f})",
                confidence=clamp(mean_sim),
                suggested_title=title,
            )
        else:
            primary = ConsolidationSuggestion(
                memory_ids=member_ids,
                type=ConsolidationType.SUMMARIZE,
                reason=f"{len(members)} related memories (mean similarity {mean_sim:.2f})",
                confidence=clamp(mean_sim),
                suggested_title=title,
            )
        suggestions = [primary]

        # Exact duplicates: keep the most important, newest copy
        duplicates = set()
        for x, a in enumerate(group):
            for y in range(x + 1, len(group)):
                b = group[y]
                first, second = members[x], members[y]
                same_text = normalize_text(first.content) == normalize_text(second.content)
                if same_text or sims[a, b] >= EXACT_DUPLICATE_SCORE:
                    keep = max((first, second), key=lambda m: (m.importance, m.updated_at, m.id))
                    duplicates.add(second.id if keep is first else first.id)
        if duplicates:
            suggestions.append(ConsolidationSuggestion(
                memory_ids=sorted(duplicates),
                type=ConsolidationType.DELETE,
                reason=f"{len(duplicates)} exact duplicate(s)",
                confidence=EXACT_DUPLICATE_SCORE,
                suggested_title=title,
            ))

        low = [m.id for m in members if m.importance <= MemoryImportance.LOW and m.id not in duplicates]
        if low:
            suggestions.append(ConsolidationSuggestion(
                memory_ids=low,
                type=ConsolidationType.ARCHIVE,
                reason=f"{len(low)} low-importance memories in a consolidated group",
                confidence=clamp(mean_sim * 0.8),
                suggested_title=title,
            ))

        return suggestions[: criteria.max_consolidated_memories]

    def _suggest_title(self, members: list[MemoryRecord]) -> str:
        tags = Counter(tag for m in members for tag in m.tags)
        if tags:
            return ", ".join(tag for tag, _ in tags.most_common(3))
        keywords = self._keyword_tags(" ".join(m.content for m in members), 3)
        return ", ".join(sorted(keywords))
