"""
LLM Client
==========

Completion providers behind one async interface.
Supports OpenAI (default for grounded answers) and Claude (Anthropic).

Provider SDK errors are raised as ProviderUnavailableError so callers can
degrade without knowing which SDK is in use.
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from enum import Enum

import anthropic
import openai

from ..rag.exceptions import ProviderUnavailableError

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class LLMResponse:
    """LLM completion."""
    content: str
    model: str
    provider: LLMProvider
    tokens_input: int
    tokens_output: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


class LLMClient(ABC):
    """Abstract completion client."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a completion."""
        pass


class UnconfiguredLLMClient(LLMClient):
    """
    Stand-in when no completion key is set.

    Every call raises ProviderUnavailableError, so grounded answers still
    retrieve (and report insufficient knowledge) but degrade at completion.
    """

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        raise ProviderUnavailableError("completion", "no completion provider configured")


class AnthropicClient(LLMClient):
    """
    Claude client.

    Models:
    - claude-sonnet-4-20250514 (default)
    - claude-3-haiku-20240307 (fast, cheap)
    """

    # Pricing per 1M tokens (USD)
    PRICING = {
        "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model
        self.timeout = timeout
        self._client: Optional[anthropic.AsyncAnthropic] = None

        if not self.api_key:
            logger.warning("ANTHROPIC_API_KEY not set - completions disabled")

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost in USD."""
        pricing = self.PRICING.get(self.model, {"input": 3.0, "output": 15.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        if not self.api_key:
            raise ProviderUnavailableError("anthropic", "ANTHROPIC_API_KEY required")

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as e:
            raise ProviderUnavailableError("anthropic", str(e), cause=e) from e

        content = response.content[0].text
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.ANTHROPIC,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=self._calculate_cost(input_tokens, output_tokens),
        )


class OpenAIClient(LLMClient):
    """OpenAI chat completions client."""

    PRICING = {
        "gpt-4-turbo": {"input": 10.0, "output": 30.0},
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4-turbo",
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.timeout = timeout
        self._client: Optional[openai.AsyncOpenAI] = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model, {"input": 2.5, "output": 10.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        if not self.api_key:
            raise ProviderUnavailableError("openai", "OPENAI_API_KEY required")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise ProviderUnavailableError("openai", str(e), cause=e) from e

        content = response.choices[0].message.content or ""
        input_tokens = response.usage.prompt_tokens
        output_tokens = response.usage.completion_tokens

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.OPENAI,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=self._calculate_cost(input_tokens, output_tokens),
        )


def get_llm_client(
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> LLMClient:
    """
    Factory for the completion client.

    Priority:
    1. Explicit provider
    2. OPENAI_API_KEY present -> OpenAI
    3. ANTHROPIC_API_KEY present -> Claude

    Raises:
        ValueError: If no provider can be selected
    """
    openai_key = os.getenv("OPENAI_API_KEY")
    anthropic_key = os.getenv("ANTHROPIC_API_KEY")

    if provider == "anthropic" or (not provider and anthropic_key and not openai_key):
        return AnthropicClient(model=model or "claude-sonnet-4-20250514")

    if provider == "openai" or openai_key:
        return OpenAIClient(model=model or "gpt-4-turbo")

    raise ValueError("No LLM API key found. Set OPENAI_API_KEY or ANTHROPIC_API_KEY")
