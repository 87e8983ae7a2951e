"""
OpenAI LLM Provider Implementation.

Provides integration with OpenAI's chat completions API, including
tool calling and JSON mode for memory classification.
"""

import logging
from typing import Any

from openai import AsyncOpenAI

from .base import LLMProvider, LLMResponse

logger = logging.getLogger("memoria.llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        """
        Initialize the OpenAI provider.

        Args:
            api_key: OpenAI API key.
            model: Model to use (default: gpt-4o-mini).
        """
        self._api_key = api_key
        self._model = model
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "OpenAI"

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the async OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    def _build_messages(
        self,
        prompt: str | None,
        messages: list[dict[str, Any]] | None,
        system_prompt: str | None,
    ) -> list[dict[str, Any]]:
        built: list[dict[str, Any]] = list(messages or [])
        if prompt:
            built.append({"role": "user", "content": prompt})
        # An existing system message wins over the system_prompt argument
        if system_prompt and not any(m.get("role") == "system" for m in built):
            built.insert(0, {"role": "system", "content": system_prompt})
        return built

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
        Generate a response using OpenAI's API.

        Args:
            prompt: The user prompt/question.
            messages: Conversation messages, sent before the prompt.
            system_prompt: Optional system prompt to set context.
            temperature: Creativity setting (0.0-1.0).
            max_tokens: Maximum tokens in response.
            tools: Function tool definitions.
            json_mode: Request a JSON object response.

        Returns:
            LLMResponse containing the generated content.
        """
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._build_messages(prompt, messages, system_prompt),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        logger.debug(f"Sending request to OpenAI ({self._model})")

        try:
            response = await client.chat.completions.create(**kwargs)

            message = response.choices[0].message
            content = message.content or ""
            usage = None
            if response.usage:
                usage = {
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                }

            logger.debug(f"OpenAI response received, tokens used: {usage}")

            return LLMResponse(
                content=content,
                model=response.model,
                usage=usage,
                tool_calls=list(message.tool_calls) if message.tool_calls else None,
                raw_response=response,
            )

        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise
