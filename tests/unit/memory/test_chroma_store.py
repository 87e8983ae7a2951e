"""
Unit tests for memoria/memory/chroma_store.py

Runs against a real PersistentClient in a temporary directory.
"""

import pytest

pytest.importorskip("chromadb")


@pytest.fixture
def chroma_store(tmp_path):
    from memoria.memory.chroma_store import ChromaVectorStore

    return ChromaVectorStore(persist_directory=str(tmp_path / "chroma"), collection_name="test_memories")


class TestChromaVectorStore:
    """Tests for ChromaVectorStore."""

    @pytest.mark.asyncio
    async def test_not_initialized(self, chroma_store):
        from memoria.errors import StorageError

        with pytest.raises(StorageError, match="not initialized"):
            await chroma_store.count()

    @pytest.mark.asyncio
    async def test_store_and_search(self, chroma_store, sample_memories):
        await chroma_store.initialize()
        await chroma_store.store_embeddings(sample_memories)

        target = sample_memories[2]
        results = await chroma_store.search_similar(target.embedding, top_k=3)

        assert results[0].record.id == target.id
        assert results[0].record.content == target.content
        assert results[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, chroma_store):
        from memoria.memory.models import EntityType, MemoryImportance, MemoryType, NamedEntity
        from tests.fixtures import make_record

        await chroma_store.initialize()
        record = make_record(
            "Flying to Lisbon in June",
            session_id="s1",
            memory_type=MemoryType.TASK,
            importance=MemoryImportance.HIGH,
            tags={"travel", "lisbon"},
        )
        record.category = "Trip"
        record.entities = [NamedEntity(text="Lisbon", type=EntityType.LOCATION, confidence=0.9)]
        await chroma_store.store_embeddings([record])

        loaded = await chroma_store.get(record.id)

        assert loaded.scope == record.scope
        assert loaded.type == MemoryType.TASK
        assert loaded.importance == MemoryImportance.HIGH
        assert loaded.category == "Trip"
        assert loaded.tags == {"travel", "lisbon"}
        assert loaded.entities[0].text == "Lisbon"
        assert loaded.created_at == record.created_at
        assert loaded.embedding == pytest.approx(record.embedding, abs=1e-6)

    @pytest.mark.asyncio
    async def test_scope_filter(self, chroma_store):
        from memoria.memory.models import MemoryScope
        from tests.fixtures import concept_vector, make_record

        await chroma_store.initialize()
        await chroma_store.store_embeddings([
            make_record("global coffee"),
            make_record("s1 coffee", session_id="s1"),
            make_record("s2 coffee", session_id="s2"),
            make_record("bob coffee", user_id="bob"),
        ])

        results = await chroma_store.search_similar(
            concept_vector("coffee"), top_k=10, scope=MemoryScope("alice", "s1")
        )

        assert sorted(r.record.content for r in results) == ["global coffee", "s1 coffee"]

    @pytest.mark.asyncio
    async def test_clear_and_delete(self, chroma_store):
        from memoria.memory.models import MemoryScope
        from tests.fixtures import make_record

        await chroma_store.initialize()
        keep = make_record("global")
        await chroma_store.store_embeddings([
            keep,
            make_record("s1", session_id="s1"),
        ])

        assert await chroma_store.clear(MemoryScope("alice", "s1")) == 1
        assert await chroma_store.delete([keep.id, "missing"]) == 1
        assert await chroma_store.count() == 0

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, chroma_store, sample_memories):
        from memoria.errors import DimensionMismatchError

        await chroma_store.initialize()
        await chroma_store.store_embeddings(sample_memories)

        with pytest.raises(DimensionMismatchError):
            await chroma_store.search_similar([1.0, 0.0], top_k=1)

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path, sample_memories):
        from memoria.memory.chroma_store import ChromaVectorStore
        from memoria.memory.models import MemoryScope

        path = str(tmp_path / "persisted")
        first = ChromaVectorStore(persist_directory=path)
        await first.initialize()
        await first.store_embeddings(sample_memories)
        await first.close()

        second = ChromaVectorStore(persist_directory=path)
        await second.initialize()

        assert second.dimension == len(sample_memories[0].embedding)
        records = await second.list_memories(MemoryScope("alice"))
        assert [r.id for r in records] == [r.id for r in reversed(sample_memories)]
