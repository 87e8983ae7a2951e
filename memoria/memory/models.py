"""
Data structures for semantic memory.

A MemoryRecord is the durable unit of recall; everything else here is
either a per-call descriptor (MemoryContext) or a transient result that
is consumed right away (MemoryClassification, SimilarMemory,
ConsolidationSuggestion).
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_memory_id() -> str:
    return uuid.uuid4().hex


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class MemoryType(str, Enum):
    """What kind of information a memory holds."""
    FACT = "Fact"
    PREFERENCE = "Preference"
    CONVERSATION = "Conversation"
    TASK = "Task"
    CONTEXT = "Context"
    INSTRUCTION = "Instruction"
    FEEDBACK = "Feedback"
    QUESTION = "Question"
    ANSWER = "Answer"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> Optional["MemoryType"]:
        """Case-insensitive lookup by value or name; None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace(" ", "_")
        for member in cls:
            if key in (member.value.lower(), member.name.lower()):
                return member
        return None


class MemoryImportance(IntEnum):
    """Ordinal long-term significance of a memory."""
    VERY_LOW = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def threshold(self) -> float:
        """Minimum relevance score that content needs to reach this level."""
        return _IMPORTANCE_THRESHOLDS[self]

    @classmethod
    def from_score(cls, score: float) -> "MemoryImportance":
        """Map a 0-1 score onto the ordinal scale."""
        score = clamp(score)
        result = cls.VERY_LOW
        for level in cls:
            if score >= level.threshold:
                result = level
        return result

    @classmethod
    def parse(cls, value: Any) -> Optional["MemoryImportance"]:
        """Accept a level name ("high", "VeryLow"), an int level or a 0-1 float."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int) and 0 <= value <= 4:
            return cls(value)
        if isinstance(value, float):
            return cls.from_score(value)
        if isinstance(value, str):
            key = value.strip().lower().replace(" ", "").replace("_", "")
            for member in cls:
                if key == member.name.lower().replace("_", ""):
                    return member
            try:
                return cls.from_score(float(key))
            except ValueError:
                return None
        return None


_IMPORTANCE_THRESHOLDS = {
    MemoryImportance.VERY_LOW: 0.0,
    MemoryImportance.LOW: 0.2,
    MemoryImportance.MEDIUM: 0.4,
    MemoryImportance.HIGH: 0.6,
    MemoryImportance.CRITICAL: 0.8,
}


class EntityType(str, Enum):
    PERSON = "Person"
    ORGANIZATION = "Organization"
    LOCATION = "Location"
    DATE = "Date"
    TIME = "Time"
    MONEY = "Money"
    NUMBER = "Number"
    EMAIL = "Email"
    PHONE = "Phone"
    URL = "Url"
    PRODUCT = "Product"
    EVENT = "Event"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "EntityType":
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.value.lower(), member.name.lower()):
                    return member
        return cls.OTHER


class SentimentType(str, Enum):
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"
    MIXED = "Mixed"


class ConsolidationType(str, Enum):
    MERGE = "Merge"
    SUMMARIZE = "Summarize"
    ARCHIVE = "Archive"
    DELETE = "Delete"
    SPLIT = "Split"


class SimilarityType(str, Enum):
    EXACT_DUPLICATE = "ExactDuplicate"
    SEMANTIC_SIMILARITY = "SemanticSimilarity"
    CONTENT_SIMILARITY = "ContentSimilarity"
    TOPIC_SIMILARITY = "TopicSimilarity"
    ENTITY_SIMILARITY = "EntitySimilarity"


@dataclass(frozen=True)
class MemoryScope:
    """
    The (user, session) partition a memory belongs to.

    A scope without a session is user-global.
    """
    user_id: str
    session_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.user_id}/{self.session_id or '*'}"

    def covers(self, other: "MemoryScope") -> bool:
        """
        Read visibility: a session sees its own memories plus the user's
        global ones; a user-only scope sees everything for the user.
        """
        if other.user_id != self.user_id:
            return False
        if self.session_id is None:
            return True
        return other.session_id in (None, self.session_id)

    def contains(self, other: "MemoryScope") -> bool:
        """Ownership, used by clear(): no user-global spill-over into sessions."""
        if other.user_id != self.user_id:
            return False
        return self.session_id is None or other.session_id == self.session_id

    def __str__(self) -> str:
        return self.key


@dataclass
class NamedEntity:
    text: str
    type: EntityType = EntityType.OTHER
    confidence: float = 0.0
    start: int = -1
    end: int = -1

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "type": self.type.value,
            "confidence": self.confidence,
            "start": self.start,
            "end": self.end,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NamedEntity":
        return cls(
            text=str(data.get("text", "")),
            type=EntityType.parse(data.get("type")),
            confidence=clamp(float(data.get("confidence", 0.0) or 0.0)),
            start=int(data.get("start", -1)),
            end=int(data.get("end", -1)),
        )


@dataclass
class SentimentAnalysis:
    """Sentiment scores; positive + negative + neutral always sum to 1."""
    sentiment: SentimentType = SentimentType.NEUTRAL
    confidence: float = 0.0
    positive_score: float = 0.0
    negative_score: float = 0.0
    neutral_score: float = 1.0

    @classmethod
    def from_scores(cls, positive: float, negative: float, neutral: float) -> "SentimentAnalysis":
        """Normalise raw scores and pick the dominant label."""
        positive, negative, neutral = (max(0.0, s) for s in (positive, negative, neutral))
        total = positive + negative + neutral
        if total <= 0:
            return cls()
        positive, negative, neutral = positive / total, negative / total, neutral / total

        ranked = sorted(
            [
                (positive, SentimentType.POSITIVE),
                (negative, SentimentType.NEGATIVE),
                (neutral, SentimentType.NEUTRAL),
            ],
            key=lambda item: item[0],
            reverse=True,
        )
        dominant = ranked[0][1]
        # Strong positive and negative signal together reads as mixed
        if positive >= 0.3 and negative >= 0.3:
            dominant = SentimentType.MIXED

        return cls(
            sentiment=dominant,
            confidence=ranked[0][0],
            positive_score=positive,
            negative_score=negative,
            neutral_score=neutral,
        )


@dataclass
class MemoryRecord:
    """
    A durable unit of recall.

    Stores hand these out as copies; mutating a returned record never
    changes what is stored until it is written back explicitly.
    """
    # Identity
    id: str
    scope: MemoryScope

    # What is remembered
    content: str
    type: MemoryType = MemoryType.OTHER
    importance: MemoryImportance = MemoryImportance.LOW
    relevance: float = 0.0
    category: Optional[str] = None  # Custom domain label, when configured

    # Extracted detail
    tags: set[str] = field(default_factory=set)
    entities: list[NamedEntity] = field(default_factory=list)

    # Vector
    embedding: Optional[list[float]] = None

    # Metadata
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.relevance = clamp(float(self.relevance))
        self.tags = set(self.tags)

    @property
    def user_id(self) -> str:
        return self.scope.user_id

    @property
    def session_id(self) -> Optional[str]:
        return self.scope.session_id

    def copy(self) -> "MemoryRecord":
        return copy.deepcopy(self)

    def to_context_string(self) -> str:
        """Format this memory as one line of LLM context."""
        label = self.category or self.type.value
        tags = f" (tags: {', '.join(sorted(self.tags))})" if self.tags else ""
        return f"- [{label}] {self.content}{tags}"


@dataclass
class MemoryContext:
    """
    Per-call descriptor used to parameterise classification and retrieval.

    Never persisted.
    """
    user_id: str
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    conversation_topic: Optional[str] = None
    role: str = "user"
    previous_messages: list[str] = field(default_factory=list)
    additional_context: dict[str, Any] = field(default_factory=dict)
    was_generated: bool = False

    @property
    def scope(self) -> MemoryScope:
        return MemoryScope(self.user_id, self.session_id)

    @property
    def is_anonymous(self) -> bool:
        return bool(self.user_id) and self.user_id.startswith("anonymous_")


@dataclass
class MemoryClassification:
    type: MemoryType = MemoryType.OTHER
    importance: MemoryImportance = MemoryImportance.LOW
    relevance: float = 0.0
    suggested_tags: set[str] = field(default_factory=set)
    entities: list[NamedEntity] = field(default_factory=list)
    sentiment: SentimentAnalysis = field(default_factory=SentimentAnalysis)
    topic: Optional[str] = None
    category: Optional[str] = None

    def __post_init__(self):
        self.relevance = clamp(float(self.relevance))

    @classmethod
    def default(cls) -> "MemoryClassification":
        """The conservative result used whenever classification fails."""
        return cls()


@dataclass
class UserProfile:
    """Slowly-changing aggregate used only to bias relevance."""
    user_id: str
    interests: list[str] = field(default_factory=list)
    topic_preferences: dict[str, float] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ConsolidationCriteria:
    min_memories_for_consolidation: int = 5
    max_time_span: timedelta = field(default_factory=lambda: timedelta(days=7))
    similarity_threshold: float = 0.7
    max_consolidated_memories: int = 3


@dataclass
class ConsolidationSuggestion:
    """Advisory output; nothing happens until it is explicitly applied."""
    memory_ids: list[str]
    type: ConsolidationType
    reason: str
    confidence: float
    suggested_title: str = ""


@dataclass
class SimilarMemory:
    memory: MemoryRecord
    similarity_score: float
    similarity_type: SimilarityType
    reason: str = ""


@dataclass
class SearchResult:
    """A search result from the vector store."""
    record: MemoryRecord
    similarity: float  # Higher is more similar
    distance: float  # Raw distance metric

    @property
    def is_strong_match(self) -> bool:
        """Is this a strong enough match to mention?"""
        return self.similarity > 0.75

    @property
    def is_moderate_match(self) -> bool:
        """Is this a moderate match worth considering?"""
        return self.similarity > 0.6
