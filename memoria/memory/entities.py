"""
Local named entity extraction using spaCy.

Used by the classifier when entity extraction should not cost a model
call. spaCy does not tag emails, phone numbers or URLs, so those are
picked up with patterns and merged in.

SETUP REQUIRED:
    pip install 'memoria[nlp]'
    python -m spacy download en_core_web_sm
"""

import logging
import re

from .models import EntityType, NamedEntity

logger = logging.getLogger("memoria.memory.entities")

# spaCy label -> our entity type
SPACY_LABELS = {
    "PERSON": EntityType.PERSON,
    "ORG": EntityType.ORGANIZATION,
    "GPE": EntityType.LOCATION,
    "LOC": EntityType.LOCATION,
    "FAC": EntityType.LOCATION,
    "DATE": EntityType.DATE,
    "TIME": EntityType.TIME,
    "MONEY": EntityType.MONEY,
    "CARDINAL": EntityType.NUMBER,
    "QUANTITY": EntityType.NUMBER,
    "PERCENT": EntityType.NUMBER,
    "PRODUCT": EntityType.PRODUCT,
    "EVENT": EntityType.EVENT,
    "NORP": EntityType.OTHER,
    "WORK_OF_ART": EntityType.OTHER,
    "LAW": EntityType.OTHER,
    "LANGUAGE": EntityType.OTHER,
}

PATTERNS = [
    (EntityType.EMAIL, re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")),
    (EntityType.URL, re.compile(r"\bhttps?://[^\s<>\"']+|\bwww\.[^\s<>\"']+")),
    (EntityType.PHONE, re.compile(r"(?<!\w)\+?\d[\d\s().-]{7,}\d\b")),
]


def extract_pattern_entities(text: str) -> list[NamedEntity]:
    """Emails, URLs and phone numbers found by pattern."""
    entities = []
    for entity_type, pattern in PATTERNS:
        for match in pattern.finditer(text):
            entities.append(NamedEntity(
                text=match.group(0).rstrip(".,;"),
                type=entity_type,
                confidence=0.9,
                start=match.start(),
                end=match.start() + len(match.group(0).rstrip(".,;")),
            ))
    return entities


class SpacyEntityExtractor:
    """
    Extracts entities with a spaCy pipeline.

    The model is loaded lazily on first use.
    """

    def __init__(self, model_name: str = "en_core_web_sm"):
        """
        Args:
            model_name: Name of the spaCy model to load.
                       Run `python -m spacy download en_core_web_sm` first.
        """
        self.model_name = model_name
        self._nlp = None
        logger.info(f"SpacyEntityExtractor initialized with model: {model_name}")

    def _get_nlp(self):
        """Lazy load the spaCy model."""
        if self._nlp is None:
            logger.info(f"Loading spaCy model: {self.model_name}")
            try:
                import spacy
            except ImportError as e:
                raise RuntimeError(
                    "spaCy not installed. Install with: pip install 'memoria[nlp]'"
                ) from e
            try:
                self._nlp = spacy.load(self.model_name)
                logger.info("spaCy model loaded successfully")
            except OSError as e:
                logger.error(
                    f"Failed to load spaCy model. Run: python -m spacy download {self.model_name}"
                )
                raise RuntimeError(
                    f"spaCy model '{self.model_name}' not found. "
                    f"Please run: python -m spacy download {self.model_name}"
                ) from e
        return self._nlp

    def extract(self, text: str) -> list[NamedEntity]:
        """Run NER over text and return deduplicated entities in text order."""
        if not text or not text.strip():
            return []

        doc = self._get_nlp()(text)
        entities = extract_pattern_entities(text)
        taken = [(e.start, e.end) for e in entities]

        for ent in doc.ents:
            # Pattern matches are more precise than NER over the same span
            if any(ent.start_char < end and start < ent.end_char for start, end in taken):
                continue
            entities.append(NamedEntity(
                text=ent.text.strip(),
                type=SPACY_LABELS.get(ent.label_, EntityType.OTHER),
                confidence=0.75,
                start=ent.start_char,
                end=ent.end_char,
            ))

        seen = set()
        unique = []
        for entity in sorted(entities, key=lambda e: e.start):
            key = (entity.text.lower(), entity.type)
            if key in seen or not entity.text:
                continue
            seen.add(key)
            unique.append(entity)
        return unique
