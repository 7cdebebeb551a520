"""
Toolgate Provider Manager

The default TextCompletionService. Holds the registered providers by
name and dispatches each ``generate_text`` call to the provider the
caller resolved. ``vendor/model`` names are sent to the ``vendor``
provider with the vendor prefix stripped.
"""

from __future__ import annotations

import time

from toolgate.core.models import Completion
from toolgate.exceptions import ProviderError
from toolgate.logging import get_logger
from toolgate.providers.base import LLMProvider

logger = get_logger("toolgate.providers")


class ProviderManager:
    def __init__(self, providers: dict[str, LLMProvider] | None = None, default_provider: str = "openai"):
        self._providers: dict[str, LLMProvider] = dict(providers or {})
        self.default_provider = default_provider

    def register(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider

    @property
    def available_providers(self) -> list[str]:
        return list(self._providers)

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
    ) -> Completion:
        name = provider or self.default_provider
        backend = self._providers.get(name)
        if backend is None:
            raise ProviderError(name, "provider is not registered")

        if model and model.lower().startswith(f"{name.lower()}/"):
            model = model.split("/", 1)[1]

        start = time.monotonic()
        response = await backend.create_message(
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            system=system,
            temperature=temperature,
            model=model,
        )
        logger.debug(
            "Completion finished",
            extra={
                "request_type": request_type,
                "provider": name,
                "model": response.model or model,
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
            },
        )
        return Completion(
            text=response.text,
            usage={"input_tokens": response.input_tokens, "output_tokens": response.output_tokens},
            provider=name,
            model=response.model or model or backend.model,
        )
