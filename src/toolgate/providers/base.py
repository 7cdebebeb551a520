"""
Toolgate LLM Provider Base

Abstract interface for LLM providers plus the text-completion contract
the pipeline stages depend on. Stages never talk to a provider SDK
directly; they call ``TextCompletionService.generate_text``.

Key design decisions:
- Async-first (all providers are async)
- Retry with exponential backoff built into the base class
- Provider-agnostic response model (LLMResponse)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Protocol

from pydantic import BaseModel

from toolgate.core.models import Completion
from toolgate.exceptions import ProviderError


class LLMResponse(BaseModel):
    """Unified response from any LLM provider."""
    text: str = ""
    stop_reason: str = "end_turn"
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""
    api_key: str | None = None
    model: str = ""
    base_url: str | None = None
    max_retries: int = 3
    timeout_seconds: float = 30.0
    retry_base_delay: float = 1.0  # 1s, 2s, 4s


class TextCompletionService(Protocol):
    """What Router, ToolSelector, OutcomeSummarizer and FinalComposer call."""

    async def generate_text(
        self,
        prompt: str,
        *,
        request_type: str,
        provider: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int = 1024,
        system: str | None = None,
    ) -> Completion: ...


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Subclasses implement ``_create_message_impl``; ``create_message``
    wraps it with retry and exponential backoff.
    """

    DEFAULT_MODEL = ""

    def __init__(self, config: ProviderConfig | None = None):
        self._config = config or ProviderConfig(model=self.DEFAULT_MODEL)

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def model(self) -> str:
        return self._config.model

    @abstractmethod
    async def _create_message_impl(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        system: str | None,
        temperature: float | None,
    ) -> LLMResponse:
        ...

    async def create_message(
        self,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int = 1024,
        system: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Create a message with automatic retry and exponential backoff.

        Args:
            messages: List of message dicts (role + content).
            max_tokens: Maximum tokens in response.
            system: Optional system prompt.
            temperature: Optional temperature override.
            model: Optional model override for this call only.

        Raises:
            ProviderError: after the last retry fails.
        """
        last_error: Exception | None = None
        for attempt in range(self._config.max_retries):
            try:
                return await self._create_message_impl(
                    messages,
                    model=model or self._config.model,
                    max_tokens=max_tokens,
                    system=system,
                    temperature=temperature,
                )
            except Exception as e:
                last_error = e
                if attempt < self._config.max_retries - 1:
                    await asyncio.sleep(self._config.retry_base_delay * (2 ** attempt))

        raise ProviderError(
            self.name,
            f"failed after {self._config.max_retries} retries: {last_error}",
        ) from last_error
