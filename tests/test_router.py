"""Tests for the Router stage."""

import logging

import pytest

from toolgate.config import FeatureFlags, ModelSettings, ToolgateConfig
from toolgate.core.models import AgentPrefs, ContextBundle
from toolgate.exceptions import MalformedOutputError
from toolgate.orchestration._json import RETRY_INSTRUCTION
from toolgate.orchestration.router import Router, parse_router_decision


def _context(**prefs) -> ContextBundle:
    return ContextBundle(user_message="list my repos", agent_prefs=AgentPrefs(**prefs))


class TestParse:
    def test_valid(self):
        decision = parse_router_decision('{"needs_tools": true, "high_level_goal": "g", "rationale": "r"}')
        assert decision.needs_tools
        assert decision.high_level_goal == "g"

    def test_code_fences_stripped(self):
        assert not parse_router_decision('```json\n{"needs_tools": false}\n```').needs_tools

    @pytest.mark.parametrize("text", ['{"needs_tools": "yes"}', "{}", "[]", "not json"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_router_decision(text)


class TestDecide:
    async def test_decision(self, service):
        service.script("tool_routing", {"needs_tools": True, "high_level_goal": "List repos", "rationale": "API"})
        decision = await Router(service).decide(_context())
        assert decision.needs_tools
        assert decision.high_level_goal == "List repos"

        [call] = service.calls
        assert call["temperature"] == 0.1
        assert call["model"] == "gpt-4o-mini"
        assert call["provider"] == "openai"
        assert "list my repos" in call["prompt"]

    async def test_retry_once_on_bad_json(self, service, caplog):
        service.script("tool_routing", "Sure! I think tools are needed.", {"needs_tools": False})
        with caplog.at_level(logging.WARNING, logger="toolgate"):
            decision = await Router(service).decide(_context())
        assert not decision.needs_tools
        assert len(service.calls) == 2
        assert service.calls[1]["prompt"].endswith(RETRY_INSTRUCTION)
        assert sum("retrying" in r.getMessage() for r in caplog.records) == 1

    async def test_second_failure_raises(self, service):
        service.script("tool_routing", "nope", "still nope")
        with pytest.raises(MalformedOutputError, match="after retry"):
            await Router(service).decide(_context())

    async def test_no_retry_when_disabled(self, service):
        service.script("tool_routing", "nope")
        config = ToolgateConfig(features=FeatureFlags(retry_on_parse_failure=False))
        with pytest.raises(MalformedOutputError):
            await Router(service, config).decide(_context())
        assert len(service.calls) == 1


class TestModelSelection:
    def test_config_default(self):
        config = ToolgateConfig(models=ModelSettings(router="claude-3-5-haiku-latest"))
        assert Router(None, config).resolve_model(_context()) == ("anthropic", "claude-3-5-haiku-latest")

    def test_session_preferences_win(self):
        provider, model = Router(None).resolve_model(
            _context(model_provider="groq", model_name="llama-3.1-70b")
        )
        assert (provider, model) == ("groq", "llama-3.1-70b")

    def test_session_model_resolves_provider(self):
        assert Router(None).resolve_model(_context(model_name="claude-sonnet-4-20250514"))[0] == "anthropic"
