"""
Toolgate Claude Provider

Wraps the Anthropic SDK (anthropic.AsyncAnthropic) behind the
LLMProvider interface. Falls back to the ANTHROPIC_API_KEY environment
variable when no key is configured.
"""

from __future__ import annotations

from typing import Any

import anthropic

from toolgate.providers.base import LLMProvider, LLMResponse, ProviderConfig


class ClaudeProvider(LLMProvider):
    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(
        self,
        config: ProviderConfig | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        super().__init__(config or ProviderConfig(model=self.DEFAULT_MODEL))
        self._client = client or anthropic.AsyncAnthropic(
            api_key=self._config.api_key or None,
            base_url=self._config.base_url or None,
            timeout=self._config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    async def _create_message_impl(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        system: str | None,
        temperature: float | None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if temperature is not None:
            kwargs["temperature"] = temperature

        response = await self._client.messages.create(**kwargs)
        return self._to_response(response)

    @staticmethod
    def _to_response(response: Any) -> LLMResponse:
        text = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            text=text,
            stop_reason=response.stop_reason or "end_turn",
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
