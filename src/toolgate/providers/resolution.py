"""
Model name -> provider resolution.

An ordered rule table keyed by model-name pattern. The first matching
rule names the provider; a rule whose provider is ``None`` takes the
provider from the ``vendor`` group of its pattern (``vendor/model``).
Nothing matching falls back to the default provider.

``validate`` runs once when the pipeline is built, so a default or role
model pointing at an unregistered provider fails before the first turn.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from toolgate.exceptions import ConfigError


@dataclass(frozen=True)
class ResolutionRule:
    pattern: re.Pattern[str]
    provider: str | None = None

    def match(self, model: str) -> str | None:
        m = self.pattern.match(model)
        if not m:
            return None
        if self.provider is not None:
            return self.provider
        return m.group("vendor").lower()


DEFAULT_RULES: tuple[ResolutionRule, ...] = (
    ResolutionRule(re.compile(r"^(gpt-|o1-)"), "openai"),
    ResolutionRule(re.compile(r"^claude-"), "anthropic"),
    ResolutionRule(re.compile(r"^(?P<vendor>[A-Za-z0-9_.-]+)/.+$")),
)


class ProviderResolver:
    def __init__(self, default_provider: str, rules: Iterable[ResolutionRule] = DEFAULT_RULES):
        self.default_provider = default_provider
        self._rules = tuple(rules)

    def resolve(self, model: str | None, preferred_provider: str | None = None) -> str:
        """Provider for ``model``. An explicit preference wins over the table."""
        if preferred_provider:
            return preferred_provider
        if model:
            for rule in self._rules:
                provider = rule.match(model)
                if provider:
                    return provider
        return self.default_provider

    def validate(self, available: Iterable[str], models: Iterable[str] = ()) -> None:
        """Raise ConfigError unless the default provider, and the provider each
        of ``models`` resolves to, are all registered."""
        known = set(available)
        wanted = {self.default_provider} | {self.resolve(m) for m in models if m}
        missing = sorted(wanted - known)
        if missing:
            raise ConfigError(
                f"Provider table references unregistered providers: {', '.join(missing)}",
                details={"missing": missing, "available": sorted(known)},
            )
