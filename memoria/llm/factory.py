"""
LLM Provider Factory.

Maps the `llm` config section onto a provider instance.
"""

import logging
from typing import TYPE_CHECKING

from .base import LLMProvider
from .openai_client import OpenAIProvider
from .google_client import GoogleProvider

if TYPE_CHECKING:
    from ..config import LLMConfig

logger = logging.getLogger("memoria.llm.factory")

# provider name -> (class, api key field, model field) on LLMConfig
_PROVIDERS: dict[str, tuple[type[LLMProvider], str, str]] = {
    "openai": (OpenAIProvider, "openai_api_key", "openai_model"),
    "google": (GoogleProvider, "google_api_key", "google_model"),
}


def create_llm_provider(settings: "LLMConfig") -> LLMProvider:
    """
    Build the chat model named by settings.provider.

    Raises:
        ValueError: Unknown provider, or its API key is missing
    """
    entry = _PROVIDERS.get(settings.provider)
    if entry is None:
        raise ValueError(
            f"Unsupported LLM provider: {settings.provider} "
            f"(expected one of: {', '.join(_PROVIDERS)})"
        )

    provider_cls, key_field, model_field = entry
    api_key = getattr(settings, key_field)
    if not api_key:
        raise ValueError(f"{key_field.upper()} is required for the {settings.provider} provider")

    model = getattr(settings, model_field)
    logger.info(f"Creating LLM provider: {settings.provider} ({model})")
    return provider_cls(api_key=api_key, model=model)
