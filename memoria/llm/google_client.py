"""
Google Gen AI (Gemini) LLM Provider Implementation.

Provides integration with Google's Gen AI SDK. OpenAI-style messages
and tool schemas are translated on the way in, and function calls are
returned in OpenAI's tool call shape on the way out.
"""

import logging
import uuid
from typing import Any

from google import genai
from google.genai import types

from .base import LLMProvider, LLMResponse, make_tool_call

logger = logging.getLogger("memoria.llm.google")


class GoogleProvider(LLMProvider):
    """Google Gen AI provider implementation."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        """
        Initialize the Google Gen AI provider.

        Args:
            api_key: Google API key.
            model: Model to use (default: gemini-2.0-flash).
        """
        self._api_key = api_key
        self._model = model
        self._client = genai.Client(api_key=api_key) if api_key else None

    @property
    def provider_name(self) -> str:
        return "Google"

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return self._client is not None and bool(self._api_key)

    def _build_contents(
        self,
        prompt: str | None,
        messages: list[dict[str, Any]] | None,
        system_prompt: str | None,
    ) -> tuple[Any, str | None]:
        """
        Translate a prompt or OpenAI-style messages into Gemini contents.

        Returns (contents, system_instruction). A bare prompt is passed
        through as a string.
        """
        if not messages:
            return prompt or "", system_prompt

        system_parts = [system_prompt] if system_prompt else []
        contents = []
        for message in messages:
            role = message.get("role", "user")
            text = message.get("content") or ""
            if role == "system":
                system_parts.append(text)
                continue
            if role == "tool":
                text = f"[tool result {message.get('name', '')}] {text}"
                role = "user"
            elif role == "assistant":
                calls = message.get("tool_calls") or []
                if calls:
                    names = ", ".join(c["function"]["name"] for c in calls)
                    text = f"{text}\n[called tools: {names}]".strip()
                role = "model"
            contents.append(types.Content(role=role, parts=[types.Part(text=text)]))

        if prompt:
            contents.append(types.Content(role="user", parts=[types.Part(text=prompt)]))

        system = "\n\n".join(system_parts) if system_parts else None
        return contents, system

    def _build_tools(self, tools: list[dict] | None) -> list[Any] | None:
        if not tools:
            return None
        declarations = []
        for tool in tools:
            fn = tool.get("function", tool)
            declarations.append(types.FunctionDeclaration(
                name=fn["name"],
                description=fn.get("description", ""),
                parameters=fn.get("parameters"),
            ))
        return [types.Tool(function_declarations=declarations)]

    def _extract_tool_calls(self, response: Any) -> list[Any] | None:
        """Convert Gemini function calls to OpenAI-shaped tool calls."""
        function_calls = getattr(response, "function_calls", None)
        if not function_calls:
            return None

        # Gemini attaches thought signatures to the content parts
        signatures = []
        if response.candidates:
            parts = getattr(response.candidates[0].content, "parts", None) or []
            signatures = [
                getattr(part, "thought_signature", None)
                for part in parts
                if getattr(part, "function_call", None) is not None
            ]

        calls = []
        for i, fc in enumerate(function_calls):
            calls.append(make_tool_call(
                call_id=f"call_{uuid.uuid4().hex[:12]}",
                name=fc.name,
                arguments=dict(fc.args or {}),
                thought_signature=signatures[i] if i < len(signatures) else None,
            ))
        return calls

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
        Generate a response using Google's Gen AI API.

        Args:
            prompt: The user prompt/question.
            messages: Conversation messages, translated to Gemini contents.
            system_prompt: Optional system prompt to set context.
            temperature: Creativity setting (0.0-1.0).
            max_tokens: Maximum tokens in response.
            tools: OpenAI-style function tool definitions.
            json_mode: Request a JSON response.

        Returns:
            LLMResponse containing the generated content.
        """
        if self._client is None:
            raise RuntimeError("GoogleProvider is not configured with an API key")

        logger.debug(f"Sending request to Google ({self._model})")

        contents, system = self._build_contents(prompt, messages, system_prompt)
        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=temperature,
            max_output_tokens=max_tokens,
            tools=self._build_tools(tools),
            response_mime_type="application/json" if json_mode else None,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=contents,
                config=config,
            )

            tool_calls = self._extract_tool_calls(response)
            content = "" if tool_calls else (response.text or "")

            # Extract usage metadata if available
            usage = None
            if getattr(response, "usage_metadata", None):
                usage = {
                    "prompt_tokens": response.usage_metadata.prompt_token_count,
                    "completion_tokens": response.usage_metadata.candidates_token_count,
                    "total_tokens": response.usage_metadata.total_token_count,
                }

            logger.debug(f"Google response received, tokens used: {usage}")

            return LLMResponse(
                content=content,
                model=self._model,
                usage=usage,
                tool_calls=tool_calls,
                raw_response=response,
                raw_content=response.candidates[0].content if response.candidates else None,
            )

        except Exception as e:
            logger.error(f"Google API error: {e}")
            raise
