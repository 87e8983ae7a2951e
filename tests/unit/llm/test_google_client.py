"""
Unit tests for memoria/llm/google_client.py

Tests the Gemini provider against a mocked genai.Client: translation of
OpenAI-style messages and tools on the way in, tool calls on the way out.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from memoria.llm.base import LLMResponse


@pytest.fixture
def provider():
    """GoogleProvider whose genai.Client is never really built."""
    with patch("google.genai.Client"):
        from memoria.llm.google_client import GoogleProvider

        yield GoogleProvider(api_key="test-key")


def _function_call_response(*calls, signatures=None):
    """A Gemini response carrying function calls as (name, args) pairs."""
    function_calls = [SimpleNamespace(name=name, args=args) for name, args in calls]
    signatures = signatures or [None] * len(function_calls)
    parts = [
        SimpleNamespace(function_call=fc, thought_signature=sig)
        for fc, sig in zip(function_calls, signatures)
    ]
    return SimpleNamespace(
        text="",
        function_calls=function_calls,
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))],
        usage_metadata=None,
    )


class TestGoogleProvider:
    """Tests for GoogleProvider basics."""

    def test_identity(self, provider):
        assert provider.provider_name == "Google"
        assert provider.model_name == "gemini-2.0-flash"
        assert provider.is_configured()

    def test_without_key(self):
        from memoria.llm.google_client import GoogleProvider

        provider = GoogleProvider(api_key="")

        assert provider._client is None
        assert provider.is_configured() is False

    @pytest.mark.asyncio
    async def test_generate_without_key_raises(self):
        from memoria.llm.google_client import GoogleProvider

        with pytest.raises(RuntimeError, match="not configured"):
            await GoogleProvider(api_key="").generate(prompt="Test")

    @pytest.mark.asyncio
    async def test_generate(self, mock_google_genai):
        """Test content, usage and raw content are carried over."""
        from memoria.llm.google_client import GoogleProvider

        response = await GoogleProvider(api_key="test-key", model="gemini-2.5-pro").generate(
            prompt="What is 2+2?", temperature=0.5, max_tokens=100
        )

        assert isinstance(response, LLMResponse)
        assert response.content == "This is a test response from Gemini."
        assert response.model == "gemini-2.5-pro"
        assert response.usage == {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}
        assert response.tool_calls is None
        assert response.raw_content is not None

        sent = mock_google_genai.return_value.aio.models.generate_content.call_args.kwargs
        assert sent["model"] == "gemini-2.5-pro"
        assert sent["contents"] == "What is 2+2?"
        assert sent["config"].temperature == 0.5
        assert sent["config"].max_output_tokens == 100
        assert sent["config"].response_mime_type is None

    @pytest.mark.asyncio
    async def test_json_mode(self, mock_google_genai):
        from memoria.llm.google_client import GoogleProvider

        await GoogleProvider(api_key="test-key").generate(prompt="Classify this", json_mode=True)

        sent = mock_google_genai.return_value.aio.models.generate_content.call_args.kwargs
        assert sent["config"].response_mime_type == "application/json"

    @pytest.mark.asyncio
    async def test_function_calls_become_tool_calls(self, mock_google_genai):
        from memoria.llm.base import parse_tool_arguments
        from memoria.llm.google_client import GoogleProvider

        mock_google_genai.return_value.aio.models.generate_content = AsyncMock(
            return_value=_function_call_response(("add_memory", {"content": "Likes tea"}))
        )

        response = await GoogleProvider(api_key="test-key").generate(prompt="Remember I like tea")

        assert response.content == ""
        assert response.usage is None
        call = response.tool_calls[0]
        assert call.id.startswith("call_")
        assert call.function.name == "add_memory"
        assert parse_tool_arguments(call) == {"content": "Likes tea"}

    @pytest.mark.asyncio
    async def test_transient_error_retried_by_caller(self, mock_google_genai):
        from memoria.llm.google_client import GoogleProvider
        from memoria.llm.retry import RetryPolicy, retry_async

        ok = MagicMock(text="Recovered", function_calls=None, candidates=[], usage_metadata=None)
        generate_content = AsyncMock(side_effect=[Exception("503 Service Unavailable"), ok])
        mock_google_genai.return_value.aio.models.generate_content = generate_content
        provider = GoogleProvider(api_key="test-key")

        response = await retry_async("generate", lambda: provider.generate(prompt="Test"), RetryPolicy(base_delay=0.0))

        assert response.content == "Recovered"
        assert response.raw_content is None
        assert generate_content.call_count == 2


class TestToolCallExtraction:
    """Tests for _extract_tool_calls()."""

    def test_no_function_calls(self, provider):
        assert provider._extract_tool_calls(SimpleNamespace(function_calls=None)) is None
        assert provider._extract_tool_calls(SimpleNamespace(function_calls=[])) is None

    def test_ids_are_unique(self, provider):
        response = _function_call_response(("search_memories", {"query": "a"}), ("list_memories", {}))

        calls = provider._extract_tool_calls(response)

        assert [c.function.name for c in calls] == ["search_memories", "list_memories"]
        assert calls[0].id != calls[1].id
        assert calls[1].function.arguments == "{}"

    def test_thought_signatures_follow_their_call(self, provider):
        """Parallel calls: only the first part carries a signature."""
        response = _function_call_response(
            ("search_memories", {"query": "food"}),
            ("search_memories", {"query": "drinks"}),
            signatures=["<sig>", None],
        )

        calls = provider._extract_tool_calls(response)

        assert [c.thought_signature for c in calls] == ["<sig>", None]

    def test_missing_candidates(self, provider):
        response = SimpleNamespace(
            function_calls=[SimpleNamespace(name="list_memories", args=None)],
            candidates=None,
        )

        calls = provider._extract_tool_calls(response)

        assert calls[0].thought_signature is None
        assert calls[0].function.arguments == "{}"


class TestContentTranslation:
    """Tests for _build_contents() and _build_tools()."""

    def test_bare_prompt_passes_through(self, provider):
        contents, system = provider._build_contents("Hello", None, "Be helpful")

        assert contents == "Hello"
        assert system == "Be helpful"

    def test_system_messages_join_the_instruction(self, provider):
        contents, system = provider._build_contents(
            None,
            [
                {"role": "system", "content": "RELEVANT MEMORIES ABOUT THIS USER: likes tea"},
                {"role": "user", "content": "Hello"},
                {"role": "assistant", "content": "Hi there!"},
            ],
            "Be helpful",
        )

        assert system == "Be helpful\n\nRELEVANT MEMORIES ABOUT THIS USER: likes tea"
        assert [c.role for c in contents] == ["user", "model"]
        assert contents[0].parts[0].text == "Hello"

    def test_prompt_after_messages(self, provider):
        contents, system = provider._build_contents("And now?", [{"role": "user", "content": "Before"}], None)

        assert system is None
        assert [c.parts[0].text for c in contents] == ["Before", "And now?"]

    def test_tool_round_kept_as_text(self, provider):
        contents, _ = provider._build_contents(
            None,
            [
                {"role": "user", "content": "What do I like?"},
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [{
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "search_memories", "arguments": '{"query": "likes"}'},
                    }],
                },
                {"role": "tool", "tool_call_id": "call_1", "name": "search_memories", "content": "- coffee"},
            ],
            None,
        )

        assert [c.role for c in contents] == ["user", "model", "user"]
        assert "search_memories" in contents[1].parts[0].text
        assert "- coffee" in contents[2].parts[0].text

    def test_tools_become_function_declarations(self, provider):
        from memoria.tools import MemoryToolRegistry
        from memoria.memory.models import MemoryContext

        definitions = MemoryToolRegistry(MagicMock(), MemoryContext(user_id="alice")).get_definitions()

        tools = provider._build_tools(definitions)

        names = [d.name for d in tools[0].function_declarations]
        assert names == ["search_memories", "list_memories", "add_memory", "update_memory", "delete_memory"]
        assert provider._build_tools(None) is None
        assert provider._build_tools([]) is None
