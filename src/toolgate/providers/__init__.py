"""
Toolgate LLM Provider Abstraction

Providers wrap LLM APIs (Anthropic, OpenAI and OpenAI-compatible
gateways) behind one interface. ProviderManager is the text-completion
service the pipeline calls; ProviderResolver maps model names to
provider names.

Usage:
    from toolgate.providers import create_provider_manager

    manager = create_provider_manager(default_provider="anthropic")
    completion = await manager.generate_text("Hi", request_type="direct", model="claude-sonnet-4-20250514")
"""

from toolgate.providers.base import LLMProvider, LLMResponse, ProviderConfig, TextCompletionService
from toolgate.providers.claude import ClaudeProvider
from toolgate.providers.manager import ProviderManager
from toolgate.providers.resolution import DEFAULT_RULES, ProviderResolver, ResolutionRule

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderConfig",
    "TextCompletionService",
    "ClaudeProvider",
    "ProviderManager",
    "ProviderResolver",
    "ResolutionRule",
    "DEFAULT_RULES",
    "create_provider",
    "create_provider_manager",
]


def create_provider(
    name: str = "anthropic",
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
) -> LLMProvider:
    """Factory function to create an LLM provider by name.

    Args:
        name: "anthropic" (alias "claude"), "openai", or any other name,
              which is treated as an OpenAI-compatible gateway at ``base_url``.
        api_key: Optional API key override.
        model: Optional default model.
        base_url: Endpoint for OpenAI-compatible gateways.
    """
    name_lower = name.lower()

    if name_lower in ("claude", "anthropic"):
        config = ProviderConfig(api_key=api_key, model=model or ClaudeProvider.DEFAULT_MODEL)
        return ClaudeProvider(config)

    from toolgate.providers.openai import OpenAIProvider

    if name_lower == "openai":
        config = ProviderConfig(api_key=api_key, model=model or OpenAIProvider.DEFAULT_MODEL, base_url=base_url)
        return OpenAIProvider(config)
    if base_url:
        config = ProviderConfig(api_key=api_key, model=model or "", base_url=base_url)
        return OpenAIProvider(config, name=name_lower)
    raise ValueError(f"Unknown provider: {name}. Supported: anthropic, openai, or a gateway with base_url")


def create_provider_manager(
    default_provider: str = "openai",
    names: tuple[str, ...] = ("anthropic", "openai"),
) -> ProviderManager:
    """Register every named provider that can be constructed.

    A provider whose SDK is missing or whose client rejects the
    environment (no API key) is skipped with a warning.
    """
    from toolgate.logging import get_logger

    logger = get_logger("toolgate.providers")
    manager = ProviderManager(default_provider=default_provider)
    for name in names:
        try:
            manager.register(name, create_provider(name))
        except Exception as e:
            logger.warning("Provider '%s' unavailable: %s", name, e)
    return manager
