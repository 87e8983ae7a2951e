"""
Abstract base class for LLM providers.

Defines the interface that all LLM providers must implement,
allowing easy swapping between different AI services.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any


@dataclass
class LLMResponse:
    """Standardized response from LLM providers."""
    content: str
    model: str
    usage: dict[str, int] | None = None
    tool_calls: list[Any] | None = None
    raw_response: Any = None
    raw_content: Any = None  # For Google: preserves Content object with thought_signature

    @property
    def token_count(self) -> int:
        """Return total tokens used if available."""
        if self.usage:
            return self.usage.get("total_tokens", 0)
        return 0


def make_tool_call(
    call_id: str,
    name: str,
    arguments: dict | str,
    thought_signature: Any = None,
) -> SimpleNamespace:
    """
    Build a tool call shaped like OpenAI's (`.id`, `.function.name`,
    `.function.arguments` as a JSON string) for providers that return
    something else.
    """
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
        thought_signature=thought_signature,
    )


def parse_tool_arguments(tool_call: Any) -> dict:
    """Decode a tool call's arguments; malformed JSON yields an empty dict."""
    raw = tool_call.function.arguments
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implement this interface to add support for new LLM services.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the LLM provider."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model being used."""
        pass

    @abstractmethod
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
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt/question (string).
            messages: List of conversation messages (alternate to prompt).
            system_prompt: Optional system prompt to set context.
            temperature: Creativity setting (0.0-1.0).
            max_tokens: Maximum tokens in response.
            tools: Optional list of tool definitions (OpenAI function schema).
            json_mode: Ask the model for a single JSON object.

        Returns:
            LLMResponse containing the generated content.
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider is properly configured with API keys."""
        pass
