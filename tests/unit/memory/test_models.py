"""
Unit tests for memoria/memory/models.py

Tests enums, scopes and the record dataclasses.
"""

from datetime import datetime, timedelta, timezone

import pytest


class TestMemoryImportance:
    """Tests for MemoryImportance."""

    def test_thresholds(self):
        from memoria.memory.models import MemoryImportance

        assert MemoryImportance.VERY_LOW.threshold == 0.0
        assert MemoryImportance.LOW.threshold == 0.2
        assert MemoryImportance.MEDIUM.threshold == 0.4
        assert MemoryImportance.HIGH.threshold == 0.6
        assert MemoryImportance.CRITICAL.threshold == 0.8

    def test_ordering(self):
        from memoria.memory.models import MemoryImportance

        assert MemoryImportance.VERY_LOW < MemoryImportance.LOW < MemoryImportance.CRITICAL

    @pytest.mark.parametrize("score,expected", [
        (0.0, "VERY_LOW"),
        (0.19, "VERY_LOW"),
        (0.2, "LOW"),
        (0.55, "MEDIUM"),
        (0.6, "HIGH"),
        (0.95, "CRITICAL"),
        (7.0, "CRITICAL"),
    ])
    def test_from_score(self, score, expected):
        from memoria.memory.models import MemoryImportance

        assert MemoryImportance.from_score(score).name == expected

    @pytest.mark.parametrize("value,expected", [
        ("high", "HIGH"),
        ("VeryLow", "VERY_LOW"),
        ("very_low", "VERY_LOW"),
        (3, "HIGH"),
        (0.85, "CRITICAL"),
        ("0.45", "MEDIUM"),
    ])
    def test_parse(self, value, expected):
        from memoria.memory.models import MemoryImportance

        assert MemoryImportance.parse(value).name == expected

    @pytest.mark.parametrize("value", ["urgent", None, True, 9, []])
    def test_parse_unknown(self, value):
        from memoria.memory.models import MemoryImportance

        assert MemoryImportance.parse(value) is None


class TestMemoryType:
    """Tests for MemoryType.parse()."""

    def test_parse_by_value_and_name(self):
        from memoria.memory.models import MemoryType

        assert MemoryType.parse("Preference") is MemoryType.PREFERENCE
        assert MemoryType.parse("preference") is MemoryType.PREFERENCE
        assert MemoryType.parse("INSTRUCTION") is MemoryType.INSTRUCTION

    def test_parse_unknown(self):
        from memoria.memory.models import MemoryType

        assert MemoryType.parse("Gossip") is None
        assert MemoryType.parse(None) is None


class TestMemoryScope:
    """Tests for scope visibility and ownership."""

    def test_session_sees_own_and_global(self):
        from memoria.memory.models import MemoryScope

        session = MemoryScope("alice", "s1")
        assert session.covers(MemoryScope("alice", "s1"))
        assert session.covers(MemoryScope("alice"))
        assert not session.covers(MemoryScope("alice", "s2"))
        assert not session.covers(MemoryScope("bob", "s1"))

    def test_user_scope_sees_everything_for_user(self):
        from memoria.memory.models import MemoryScope

        user = MemoryScope("alice")
        assert user.covers(MemoryScope("alice"))
        assert user.covers(MemoryScope("alice", "s1"))
        assert not user.covers(MemoryScope("bob"))

    def test_session_contains_only_its_own(self):
        from memoria.memory.models import MemoryScope

        session = MemoryScope("alice", "s1")
        assert session.contains(MemoryScope("alice", "s1"))
        assert not session.contains(MemoryScope("alice"))

    def test_user_contains_all_sessions(self):
        from memoria.memory.models import MemoryScope

        user = MemoryScope("alice")
        assert user.contains(MemoryScope("alice", "s1"))
        assert user.contains(MemoryScope("alice"))

    def test_key(self):
        from memoria.memory.models import MemoryScope

        assert MemoryScope("alice", "s1").key == "alice/s1"
        assert MemoryScope("alice").key == "alice/*"
        assert str(MemoryScope("alice")) == "alice/*"

    def test_hashable(self):
        from memoria.memory.models import MemoryScope

        assert len({MemoryScope("a", "s"), MemoryScope("a", "s"), MemoryScope("a")}) == 2


class TestMemoryRecord:
    """Tests for MemoryRecord."""

    def test_relevance_clamped(self):
        from memoria.memory.models import MemoryRecord, MemoryScope

        record = MemoryRecord(id="m1", scope=MemoryScope("alice"), content="x", relevance=3.5)
        assert record.relevance == 1.0

        record = MemoryRecord(id="m2", scope=MemoryScope("alice"), content="x", relevance=-1)
        assert record.relevance == 0.0

    def test_copy_is_independent(self):
        from tests.fixtures import make_record

        record = make_record("I like tea", tags={"tea"})
        clone = record.copy()
        clone.tags.add("drinks")
        clone.embedding[0] = 99.0

        assert record.tags == {"tea"}
        assert record.embedding[0] != 99.0

    def test_to_context_string(self):
        from tests.fixtures import make_record

        record = make_record("I like tea", tags={"tea", "drinks"})
        assert record.to_context_string() == "- [Fact] I like tea (tags: drinks, tea)"

    def test_to_context_string_prefers_category(self):
        from tests.fixtures import make_record

        record = make_record("Takes ibuprofen daily")
        record.category = "Medication"
        assert record.to_context_string() == "- [Medication] Takes ibuprofen daily"

    def test_scope_properties(self):
        from tests.fixtures import make_record

        record = make_record("x", user_id="bob", session_id="s9")
        assert record.user_id == "bob"
        assert record.session_id == "s9"


class TestMemoryContext:
    """Tests for MemoryContext."""

    def test_scope(self):
        from memoria.memory.models import MemoryContext, MemoryScope

        context = MemoryContext(user_id="alice", session_id="s1")
        assert context.scope == MemoryScope("alice", "s1")

    def test_is_anonymous(self):
        from memoria.memory.models import MemoryContext

        assert MemoryContext(user_id="anonymous_1a2b3c4d").is_anonymous
        assert not MemoryContext(user_id="alice").is_anonymous


class TestSentimentAnalysis:
    """Tests for SentimentAnalysis.from_scores()."""

    def test_normalised(self):
        from memoria.memory.models import SentimentAnalysis, SentimentType

        sentiment = SentimentAnalysis.from_scores(2.0, 0.0, 2.0)
        total = sentiment.positive_score + sentiment.negative_score + sentiment.neutral_score
        assert total == pytest.approx(1.0)
        assert sentiment.sentiment in (SentimentType.POSITIVE, SentimentType.NEUTRAL)

    def test_dominant_negative(self):
        from memoria.memory.models import SentimentAnalysis, SentimentType

        sentiment = SentimentAnalysis.from_scores(0.1, 0.8, 0.1)
        assert sentiment.sentiment == SentimentType.NEGATIVE
        assert sentiment.confidence == pytest.approx(0.8)

    def test_mixed(self):
        from memoria.memory.models import SentimentAnalysis, SentimentType

        sentiment = SentimentAnalysis.from_scores(0.45, 0.45, 0.1)
        assert sentiment.sentiment == SentimentType.MIXED

    def test_all_zero_is_neutral(self):
        from memoria.memory.models import SentimentAnalysis, SentimentType

        sentiment = SentimentAnalysis.from_scores(0.0, 0.0, 0.0)
        assert sentiment.sentiment == SentimentType.NEUTRAL


class TestMisc:
    """Tests for small model helpers."""

    def test_classification_default(self):
        from memoria.memory.models import MemoryClassification, MemoryImportance, MemoryType

        default = MemoryClassification.default()
        assert default.type == MemoryType.OTHER
        assert default.importance == MemoryImportance.LOW
        assert default.relevance == 0.0

    def test_consolidation_criteria_defaults(self):
        from memoria.memory.models import ConsolidationCriteria

        criteria = ConsolidationCriteria()
        assert criteria.min_memories_for_consolidation == 5
        assert criteria.max_time_span == timedelta(days=7)
        assert criteria.similarity_threshold == 0.7
        assert criteria.max_consolidated_memories == 3

    def test_search_result_match_strength(self):
        from memoria.memory.models import SearchResult
        from tests.fixtures import make_record

        record = make_record("x")
        assert SearchResult(record, 0.8, 0.2).is_strong_match
        assert SearchResult(record, 0.65, 0.35).is_moderate_match
        assert not SearchResult(record, 0.65, 0.35).is_strong_match

    def test_named_entity_round_trip(self):
        from memoria.memory.models import EntityType, NamedEntity

        entity = NamedEntity(text="Lisbon", type=EntityType.LOCATION, confidence=0.9, start=3, end=9)
        assert NamedEntity.from_dict(entity.to_dict()) == entity

    def test_utcnow_is_aware(self):
        from memoria.memory.models import utcnow

        assert utcnow().tzinfo is not None
        assert abs(utcnow() - datetime.now(timezone.utc)) < timedelta(seconds=5)
