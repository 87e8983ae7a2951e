"""
Shared pytest fixtures for memoria tests.

This module provides:
- Deterministic embedding and LLM doubles
- In-memory stores and a ready-to-initialize MemoryManager
- Mock external services (OpenAI, Google Gen AI)
- Sample data and config fixtures
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.fixtures import (
    FakeEmbeddingService,
    ScriptedLLM,
    make_sample_memories,
)


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def spacy_nlp():
    """Session-scoped spaCy model - load once for all tests."""
    spacy = pytest.importorskip("spacy")
    try:
        return spacy.load("en_core_web_sm")
    except OSError:
        pytest.skip("spaCy model 'en_core_web_sm' not installed")


@pytest.fixture
def embeddings() -> FakeEmbeddingService:
    """Concept-axis embedding service."""
    return FakeEmbeddingService()


@pytest.fixture
def llm() -> ScriptedLLM:
    """LLM double with canned answers per prompt kind."""
    return ScriptedLLM()


@pytest.fixture
def fast_retry():
    """Retry policy without backoff delays."""
    from memoria.llm.retry import RetryPolicy

    return RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0, timeout=5.0)


@pytest.fixture
def store():
    """Exact-scan in-memory store (not yet initialized)."""
    from memoria.memory.inmemory_store import InMemoryVectorStore

    return InMemoryVectorStore()


@pytest.fixture
def manager(store, embeddings, llm, fast_retry):
    """MemoryManager over the in-memory store; call initialize() in the test."""
    from memoria.memory.classifier import MemoryClassifier
    from memoria.memory.memory_manager import MemoryManager

    classifier = MemoryClassifier(llm=llm, embeddings=embeddings, retry_policy=fast_retry)
    return MemoryManager(
        vector_store=store,
        embedding_service=embeddings,
        classifier=classifier,
        llm=llm,
        retry_policy=fast_retry,
    )


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_memories():
    """A spread of memories for user alice, each on a different topic."""
    return make_sample_memories()


@pytest.fixture
def sample_config_yaml(tmp_path) -> Path:
    """Create a sample config.yaml file."""
    config_path = tmp_path / "config.yaml"
    config_content = """
llm:
  provider: openai
  openai_model: gpt-4o
  google_model: gemini-2.0-flash
  max_tool_rounds: 3

embedding:
  provider: local
  local_model: all-MiniLM-L6-v2

store:
  backend: hnsw
  metric: cosine

hnsw:
  m: 8
  ef_construction: 100
  ef_search: 32

retention:
  max_memories: 50
  min_importance: MEDIUM
  type_min_importance:
    Preference: HIGH

classifier:
  duplicate_threshold: 0.9
  custom_categories: [Symptom, Medication]

retry:
  attempts: 2
  base_delay: 0.1

app:
  log_level: DEBUG
  context_limit: 3
"""
    config_path.write_text(config_content)
    return config_path


# =============================================================================
# Mock External Services
# =============================================================================


@pytest.fixture
def mock_google_genai():
    """Mock google.genai.Client for Gemini API tests."""
    with patch("google.genai.Client") as mock_client_class:
        mock_client = MagicMock()

        # Create async mock for aio.models.generate_content
        mock_response = MagicMock()
        mock_response.text = "This is a test response from Gemini."
        mock_response.function_calls = None
        mock_response.candidates = [MagicMock(content=MagicMock())]
        mock_response.usage_metadata = MagicMock(
            prompt_token_count=100,
            candidates_token_count=50,
            total_token_count=150,
        )

        mock_aio = MagicMock()
        mock_aio.models.generate_content = AsyncMock(return_value=mock_response)
        mock_client.aio = mock_aio

        mock_client_class.return_value = mock_client
        yield mock_client_class


@pytest.fixture
def mock_openai():
    """Mock AsyncOpenAI for OpenAI API tests."""
    # Patch at the module where it's imported, not where it's defined
    with patch("memoria.llm.openai_client.AsyncOpenAI") as mock_client_class:
        mock_client = MagicMock()

        # Create mock response
        mock_message = MagicMock()
        mock_message.content = "This is a test response from OpenAI."
        mock_message.tool_calls = None

        mock_choice = MagicMock()
        mock_choice.message = mock_message

        mock_response = MagicMock()
        mock_response.choices = [mock_choice]
        mock_response.model = "gpt-4o"
        mock_response.usage = MagicMock(
            prompt_tokens=100,
            completion_tokens=50,
            total_tokens=150,
        )

        mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
        mock_client_class.return_value = mock_client
        yield mock_client_class


@pytest.fixture
def mock_openai_embeddings():
    """Mock AsyncOpenAI for embedding calls."""
    with patch("openai.AsyncOpenAI") as mock_client_class:
        mock_client = MagicMock()

        async def create(model, input, **kwargs):
            texts = input if isinstance(input, list) else [input]
            dim = kwargs.get("dimensions") or 1536
            data = [MagicMock(embedding=[float(i + 1)] * dim, index=i) for i in range(len(texts))]
            return MagicMock(data=data)

        mock_client.embeddings.create = AsyncMock(side_effect=create)
        mock_client_class.return_value = mock_client
        yield mock_client_class


# =============================================================================
# Config Fixtures
# =============================================================================


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key")
    monkeypatch.setenv("GOOGLE_API_KEY", "test-google-key")


@pytest.fixture
def no_env_keys(monkeypatch):
    """Make sure no API keys leak in from the environment or a .env file."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.setattr("memoria.config.load_dotenv", lambda *args, **kwargs: False)
