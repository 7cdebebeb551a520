"""Tests for ToolgateConfig and the exception hierarchy."""

import json

import pytest

from toolgate.config import ToolgateConfig
from toolgate.exceptions import (
    ApprovalError,
    ApprovalNotFoundError,
    ConfigError,
    InvalidApprovalStateError,
    MalformedOutputError,
    PipelineError,
    ProviderError,
    ToolExecutionError,
    ToolgateError,
)


class TestDefaults:
    def test_defaults(self):
        config = ToolgateConfig()
        assert config.context.max_summary_length == 2000
        assert config.context.tool_preview_count == 10
        assert config.limits.max_steps_per_turn == 10
        assert config.features.retry_on_parse_failure is True
        assert config.features.audit_enabled is True
        assert config.features.redact_logs is True
        assert config.approval.timeout_minutes == 5
        assert config.tools.allowed == []

    def test_nested_override(self):
        config = ToolgateConfig(limits={"max_steps_per_turn": 3})
        assert config.limits.max_steps_per_turn == 3


class TestFromEnv:
    def test_scalar_override(self):
        config = ToolgateConfig.from_env({"TOOLGATE_LIMITS__MAX_STEPS_PER_TURN": "3"})
        assert config.limits.max_steps_per_turn == 3

    def test_bool_override(self):
        config = ToolgateConfig.from_env({"TOOLGATE_FEATURES__AUDIT_ENABLED": "false"})
        assert config.features.audit_enabled is False

    def test_list_override(self):
        config = ToolgateConfig.from_env({"TOOLGATE_TOOLS__ALLOWED": "fs.*, http.fetch"})
        assert config.tools.allowed == ["fs.*", "http.fetch"]

    def test_unknown_keys_ignored(self):
        config = ToolgateConfig.from_env({
            "TOOLGATE_NOPE__X": "1",
            "TOOLGATE_LIMITS__NOPE": "1",
            "OTHER_VAR": "1",
        })
        assert config == ToolgateConfig()

    def test_invalid_value_raises(self):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            ToolgateConfig.from_env({"TOOLGATE_LIMITS__MAX_STEPS_PER_TURN": "-1"})


class TestLoad:
    def test_load_file_then_env(self, tmp_path):
        path = tmp_path / "toolgate.json"
        path.write_text(json.dumps({"models": {"router": "claude-3-5-haiku"}, "limits": {"max_steps_per_turn": 4}}))
        config = ToolgateConfig.load(path, env={"TOOLGATE_LIMITS__MAX_STEPS_PER_TURN": "2"})
        assert config.models.router == "claude-3-5-haiku"
        assert config.limits.max_steps_per_turn == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read config file"):
            ToolgateConfig.load(tmp_path / "missing.json", env={})

    def test_bad_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            ToolgateConfig.load(path, env={})


class TestExceptions:
    def test_base_error(self):
        err = ToolgateError("something went wrong")
        assert str(err) == "something went wrong"
        assert err.details == {}

    def test_hierarchy(self):
        for cls in (ConfigError, MalformedOutputError, ProviderError, ToolExecutionError,
                    ApprovalError, PipelineError):
            assert issubclass(cls, ToolgateError)
        assert issubclass(ApprovalNotFoundError, ApprovalError)
        assert issubclass(InvalidApprovalStateError, ApprovalError)

    def test_malformed_output_keeps_raw(self):
        err = MalformedOutputError("Router", "invalid JSON", raw="not json")
        assert err.component == "Router"
        assert err.raw == "not json"
        assert "Router" in str(err)
        assert err.details["raw"] == "not json"

    def test_provider_error(self):
        err = ProviderError("anthropic", "rate limited")
        assert err.provider_name == "anthropic"
        assert "anthropic" in str(err)

    def test_invalid_state(self):
        err = InvalidApprovalStateError("apr-1", "approved", "reject")
        assert str(err) == "Cannot reject request in status: approved"
        assert err.status == "approved"
