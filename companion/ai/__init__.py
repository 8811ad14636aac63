"""
AI Module
=========

Completion clients used to phrase grounded answers.
"""

from .llm_client import (
    LLMClient,
    LLMProvider,
    LLMResponse,
    AnthropicClient,
    OpenAIClient,
    UnconfiguredLLMClient,
    get_llm_client,
)

__all__ = [
    "LLMClient",
    "LLMProvider",
    "LLMResponse",
    "AnthropicClient",
    "OpenAIClient",
    "UnconfiguredLLMClient",
    "get_llm_client",
]
