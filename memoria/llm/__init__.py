"""
LLM Provider Interface Module.

Provides a unified interface for the model calls the memory engine
needs (OpenAI, Google Gen AI), plus bounded retry around them.
"""

from .base import LLMProvider, LLMResponse, make_tool_call, parse_tool_arguments
from .openai_client import OpenAIProvider
from .google_client import GoogleProvider
from .factory import create_llm_provider
from .retry import RetryPolicy, is_retryable_error, retry_async

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "make_tool_call",
    "parse_tool_arguments",
    "OpenAIProvider",
    "GoogleProvider",
    "create_llm_provider",
    "RetryPolicy",
    "is_retryable_error",
    "retry_async",
]
