"""
Prompt templates and domain configuration for memory extraction and
classification.

A MemoryDomainConfig lets an agent swap in its own extraction and
classification prompts and its own category labels without touching
the classifier.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Union

from .models import MemoryImportance, MemoryType

logger = logging.getLogger("memoria.memory.prompts")

# (user_message, assistant_message) -> prompt, or a str.format template
ExtractionTemplate = Union[Callable[[str, str], str], str]
# (content) -> prompt, or a str.format template
ClassificationTemplate = Union[Callable[[str], str], str]


EXTRACTION_SYSTEM_PROMPT = (
    "You extract durable memories from conversations. "
    "Respond with ONLY valid JSON, no explanation."
)

CLASSIFICATION_SYSTEM_PROMPT = (
    "You classify memories for a conversational agent. "
    "Respond with ONLY valid JSON, no explanation."
)


def default_extraction_prompt(user_message: str, assistant_message: str, max_memories: int = 5) -> str:
    return f"""Analyze this conversation and extract the information worth remembering about the user, their projects or their context.

CONVERSATION:
User: {user_message}
Assistant: {assistant_message}

Extract things like:
- Facts about the user (name, job, location, relationships)
- Preferences, likes and dislikes
- Decisions, goals and ongoing tasks
- Instructions the user gave about how they want to be helped
- Anything that would be useful in a future conversation

Skip greetings, small talk and anything only relevant to this turn.
Each memory should be a single self-contained sentence. Extract at most {max_memories}.

Respond with ONLY JSON in this format:
{{"memories": [{{"content": "information to remember", "type": "Fact", "importance": 0.8}}]}}
If nothing is worth remembering, respond with: {{"memories": []}}"""


def default_classification_prompt(content: str, categories: Optional[list[str]] = None) -> str:
    labels = categories or [t.value for t in MemoryType]
    labels_str = ", ".join(labels)
    importance_str = ", ".join(level.name for level in MemoryImportance)
    return f"""Classify this memory.

MEMORY: {content}

Respond with ONLY a JSON object with these keys:
- "type": one of [{labels_str}]
- "importance": one of [{importance_str}]
- "relevance": number between 0 and 1, how useful this is for future conversations
- "tags": up to 10 short lowercase keywords
- "entities": list of {{"text": ..., "type": one of [Person, Organization, Location, Date, Time, Money, Number, Email, Phone, Url, Product, Event, Other], "confidence": 0-1}}
- "sentiment": {{"positive": 0-1, "negative": 0-1, "neutral": 0-1}}
- "topic": short topic label"""


def tags_prompt(content: str, max_tags: int) -> str:
    return f"""List up to {max_tags} short lowercase keywords describing this text.

TEXT: {content}

Respond with ONLY a JSON array of strings, like: ["coffee", "morning routine"]"""


def entities_prompt(content: str) -> str:
    return f"""Extract the named entities from this text.

TEXT: {content}

Respond with ONLY a JSON array like:
[{{"text": "Lisbon", "type": "Location", "confidence": 0.9, "start": 10, "end": 16}}]
Valid types: Person, Organization, Location, Date, Time, Money, Number, Email, Phone, Url, Product, Event, Other.
If there are none, respond with: []"""


def sentiment_prompt(content: str) -> str:
    return f"""Rate the sentiment of this text.

TEXT: {content}

Respond with ONLY a JSON object like: {{"positive": 0.1, "negative": 0.0, "neutral": 0.9}}"""


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block from model output."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
        content = content.rsplit("```", 1)[0] if "```" in content else content
        content = content.strip()
    return content


def parse_json_response(content: str) -> Any:
    """
    Parse model output as JSON.

    Raises:
        ValueError: The output is not valid JSON
    """
    if content is None:
        raise ValueError("Empty model response")
    cleaned = strip_code_fences(content)
    if not cleaned:
        raise ValueError("Empty model response")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model response is not valid JSON: {cleaned[:100]}") from e


@dataclass
class MemoryDomainConfig:
    """
    Domain-specific memory behaviour, fixed at construction time.

    Templates may be callables or str.format templates using
    {user_message}/{assistant_message} (extraction) and {content}
    (classification). type_min_importance adds per-type importance
    floors on top of the retention policy's own.
    """
    extraction_template: Optional[ExtractionTemplate] = None
    classification_template: Optional[ClassificationTemplate] = None
    custom_categories: list[str] = field(default_factory=list)
    max_memories_per_interaction: int = 5
    min_importance: MemoryImportance = MemoryImportance.LOW
    type_min_importance: dict[MemoryType, MemoryImportance] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_memories_per_interaction <= 0:
            raise ValueError("max_memories_per_interaction must be greater than 0")

    def extraction_prompt(self, user_message: str, assistant_message: str) -> str:
        template = self.extraction_template
        if template is None:
            return default_extraction_prompt(
                user_message, assistant_message, self.max_memories_per_interaction
            )
        if callable(template):
            return template(user_message, assistant_message)
        return template.format(user_message=user_message, assistant_message=assistant_message)

    def classification_prompt(self, content: str) -> str:
        template = self.classification_template
        if template is None:
            return default_classification_prompt(content, self.custom_categories or None)
        if callable(template):
            return template(content)
        return template.format(content=content)

    def with_categories(self, *categories: str) -> "MemoryDomainConfig":
        if not categories:
            raise ValueError("At least one category must be provided")
        return replace(self, custom_categories=list(categories))

    def with_extraction(self, template: ExtractionTemplate) -> "MemoryDomainConfig":
        return replace(self, extraction_template=template)

    def with_classification(self, template: ClassificationTemplate) -> "MemoryDomainConfig":
        return replace(self, classification_template=template)

    def with_thresholds(
        self,
        max_memories: int = 5,
        min_importance: MemoryImportance = MemoryImportance.LOW,
    ) -> "MemoryDomainConfig":
        return replace(self, max_memories_per_interaction=max_memories, min_importance=min_importance)

    @classmethod
    def clinical(cls) -> "MemoryDomainConfig":
        """Preset for medical assistants: symptoms, medications and allergies matter most."""
        return cls(
            extraction_template=(
                "Extract clinically relevant information from this consultation.\n\n"
                "Patient: {user_message}\nAssistant: {assistant_message}\n\n"
                "Capture symptoms, diagnoses, medications, allergies and treatment history. "
                "Ignore small talk.\n\n"
                'Respond with ONLY JSON: {{"memories": [{{"content": "...", "type": "Fact", "importance": 0.9}}]}}'
            ),
            custom_categories=["Symptom", "Diagnosis", "Medication", "Allergy", "Treatment", "History"],
            max_memories_per_interaction=8,
            min_importance=MemoryImportance.MEDIUM,
            type_min_importance={
                MemoryType.CONVERSATION: MemoryImportance.HIGH,
                MemoryType.QUESTION: MemoryImportance.HIGH,
            },
        )

    @classmethod
    def legal(cls) -> "MemoryDomainConfig":
        """Preset for legal assistants: parties, deadlines and obligations."""
        return cls(
            extraction_template=(
                "Extract legally relevant information from this conversation.\n\n"
                "Client: {user_message}\nAssistant: {assistant_message}\n\n"
                "Capture parties, dates and deadlines, obligations, jurisdictions and case facts.\n\n"
                'Respond with ONLY JSON: {{"memories": [{{"content": "...", "type": "Fact", "importance": 0.8}}]}}'
            ),
            custom_categories=["Party", "Deadline", "Obligation", "Jurisdiction", "CaseFact", "Document"],
            max_memories_per_interaction=6,
            min_importance=MemoryImportance.MEDIUM,
            type_min_importance={MemoryType.CONVERSATION: MemoryImportance.HIGH},
        )
