"""
Toolgate OpenAI Provider

Wraps the OpenAI API behind the LLMProvider interface.

Requires: ``pip install toolgate[openai]``. Set OPENAI_API_KEY.

Also serves OpenAI-compatible gateways (Together, Groq, OpenRouter...)
via ``base_url``.
"""

from __future__ import annotations

from typing import Any

from toolgate.providers.base import LLMProvider, LLMResponse, ProviderConfig


class OpenAIProvider(LLMProvider):
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, config: ProviderConfig | None = None, client: Any = None, name: str = "openai"):
        super().__init__(config or ProviderConfig(model=self.DEFAULT_MODEL))
        self._name = name
        self._client = client or self._create_client()

    @property
    def name(self) -> str:
        return self._name

    def _create_client(self) -> Any:
        """Create OpenAI async client. Imports openai lazily."""
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ImportError(
                "OpenAI provider requires the 'openai' package. Install with: pip install 'toolgate[openai]'"
            ) from e

        kwargs: dict[str, Any] = {"timeout": self._config.timeout_seconds}
        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key
        if self._config.base_url:
            kwargs["base_url"] = self._config.base_url
        return AsyncOpenAI(**kwargs)

    async def _create_message_impl(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        system: str | None,
        temperature: float | None,
    ) -> LLMResponse:
        oai_messages = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        oai_messages.extend({"role": m["role"], "content": str(m.get("content", ""))} for m in messages)

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": oai_messages,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        response = await self._client.chat.completions.create(**kwargs)
        return self._to_response(response)

    @staticmethod
    def _to_response(response: Any) -> LLMResponse:
        choice = response.choices[0] if response.choices else None
        if not choice:
            return LLMResponse(model=response.model or "")

        stop_reason_map = {
            "stop": "end_turn",
            "length": "max_tokens",
            "content_filter": "end_turn",
        }
        usage = response.usage
        return LLMResponse(
            text=choice.message.content or "",
            stop_reason=stop_reason_map.get(choice.finish_reason or "stop", "end_turn"),
            model=response.model or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
