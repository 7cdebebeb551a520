"""
Toolgate Configuration

Every knob the pipeline reads lives on ``ToolgateConfig``, which is
passed explicitly into each component's constructor. Values come from
defaults, an optional JSON file, and ``TOOLGATE_*`` environment
variables (in that order of precedence, last wins).

Usage:
    config = ToolgateConfig.load("toolgate.json")
    config = ToolgateConfig.from_env()
    config = ToolgateConfig(limits={"max_steps_per_turn": 3})
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from toolgate.exceptions import ConfigError


class ContextSettings(BaseModel):
    max_summary_length: int = Field(2000, ge=0)
    tool_preview_count: int = Field(10, ge=0)
    history_messages: int = Field(5, ge=0)
    message_max_chars: int = Field(200, ge=1)


class LimitSettings(BaseModel):
    max_steps_per_turn: int = Field(10, ge=0)


class FeatureFlags(BaseModel):
    retry_on_parse_failure: bool = True
    audit_enabled: bool = True
    redact_logs: bool = True


class ModelSettings(BaseModel):
    """Default provider and per-role model names."""
    default_provider: str = "openai"
    router: str = "gpt-4o-mini"
    selector: str = "gpt-4o-mini"
    summarizer: str = "gpt-4o-mini"
    composer: str = "gpt-4o-mini"


class ApprovalSettings(BaseModel):
    timeout_minutes: int = Field(5, ge=1)
    max_words: int = 100
    max_characters: int = 500
    max_lines: int = 15
    approval_keywords: list[str] = Field(
        default_factory=lambda: ["yes", "approve", "go ahead", "do it", "proceed", "ok", "sure"]
    )
    rejection_keywords: list[str] = Field(
        default_factory=lambda: ["no", "reject", "cancel", "stop", "don't", "nope"]
    )


class CacheSettings(BaseModel):
    mcp_ttl_hours: float = 24
    auto_refresh: bool = True


class ToolPermissions(BaseModel):
    """Allow-list of tool ids. Empty means every tool is allowed; ``*`` wildcards match."""
    allowed: list[str] = Field(default_factory=list)


class PolicySettings(BaseModel):
    cache_ttl_seconds: int = 3600


class ToolgateConfig(BaseModel):
    context: ContextSettings = Field(default_factory=ContextSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    models: ModelSettings = Field(default_factory=ModelSettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    tools: ToolPermissions = Field(default_factory=ToolPermissions)
    policy: PolicySettings = Field(default_factory=PolicySettings)

    @classmethod
    def load(cls, path: str | Path, env: dict[str, str] | None = None) -> ToolgateConfig:
        """Load a JSON config file, then apply environment overrides."""
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        return cls.from_env(env, base=data)

    @classmethod
    def from_env(
        cls,
        env: dict[str, str] | None = None,
        base: dict[str, Any] | None = None,
    ) -> ToolgateConfig:
        """Build a config from ``TOOLGATE_<SECTION>__<FIELD>`` variables.

        ``TOOLGATE_LIMITS__MAX_STEPS_PER_TURN=3`` sets ``limits.max_steps_per_turn``.
        List fields take comma-separated values.
        """
        env = os.environ if env is None else env
        data: dict[str, Any] = json.loads(json.dumps(base or {}))

        for key, raw in env.items():
            if not key.startswith("TOOLGATE_") or "__" not in key:
                continue
            section, _, name = key[len("TOOLGATE_"):].lower().partition("__")
            if section not in cls.model_fields:
                continue
            section_model = cls.model_fields[section].annotation
            field = section_model.model_fields.get(name)
            if field is None:
                continue
            value: Any = raw
            if field.annotation == list[str]:
                value = [v.strip() for v in raw.split(",") if v.strip()]
            data.setdefault(section, {})[name] = value

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
