"""Tests for the ToolSelector stage and its post-processing passes."""

import json
import logging

import pytest

from toolgate.config import CacheSettings, ToolgateConfig, ToolPermissions
from toolgate.core.models import ContextBundle, PlanStep, ToolPlan, ToolSource
from toolgate.exceptions import MalformedOutputError
from toolgate.orchestration._json import RETRY_INSTRUCTION
from toolgate.orchestration.selector import MULTI_TOOL_WRAPPER, PermissionGate, ToolSelector, parse_tool_plan
from conftest import make_tool

CONTEXT = ContextBundle(user_message="what's in /workspace/project?")

PLAN = {
    "selected_tool_ids": ["test.echo"],
    "plan_steps": [{"tool_id": "test.echo", "args": {"path": "/workspace/project"}, "why": "look"}],
    "inputs_needed": [],
}


class _Source:
    name = "fake-mcp"

    def __init__(self):
        self.calls = 0

    async def list_tools(self):
        self.calls += 1
        return [make_tool("mcp.search")]


class TestParse:
    def test_valid(self):
        plan = parse_tool_plan(json.dumps(PLAN))
        assert plan.selected_tool_ids == ["test.echo"]
        assert plan.plan_steps[0].args == {"path": "/workspace/project"}
        assert plan.plan_steps[0].why == "look"

    def test_selected_ids_derived_from_steps(self):
        plan = parse_tool_plan(json.dumps({"plan_steps": [
            {"tool_id": "b"}, {"tool_id": "a"}, {"tool_id": "b"},
        ]}))
        assert plan.selected_tool_ids == ["b", "a"]

    def test_empty_plan(self):
        plan = parse_tool_plan("{}")
        assert plan.plan_steps == []
        assert plan.selected_tool_ids == []

    @pytest.mark.parametrize("text", [
        '{"plan_steps": "fs.read"}',
        '{"plan_steps": ["fs.read"]}',
        '{"plan_steps": [{"tool_id": "fs.read", "args": [1]}]}',
        "Here is the plan: fs.read",
    ])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_tool_plan(text)


class TestSelect:
    async def test_plan(self, service, registry):
        service.script("tool_selection", PLAN)
        plan = await ToolSelector(service, registry).select_tools("Inspect the project", CONTEXT)
        assert plan.selected_tool_ids == ["test.echo"]

        [call] = service.calls
        assert call["temperature"] == 0.2
        assert "Inspect the project" in call["prompt"]
        assert '"test.echo"' in call["prompt"]

    async def test_retry_after_non_json(self, service, registry, caplog):
        service.script("tool_selection", "I would use the echo tool.", PLAN)
        with caplog.at_level(logging.WARNING, logger="toolgate"):
            plan = await ToolSelector(service, registry).select_tools("goal", CONTEXT)
        assert [s.tool_id for s in plan.plan_steps] == ["test.echo"]
        assert len(service.calls) == 2
        assert service.calls[1]["prompt"].endswith(RETRY_INSTRUCTION)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert warnings[0].component == "ToolSelector"

    async def test_second_failure_raises(self, service, registry):
        service.script("tool_selection", "no", "still no")
        with pytest.raises(MalformedOutputError):
            await ToolSelector(service, registry).select_tools("goal", CONTEXT)

    async def test_arguments_kept_verbatim(self, service, registry):
        args = {"path": "~/notes", "nested": {"k": [1, 2]}}
        service.script("tool_selection", {"plan_steps": [{"tool_id": "test.echo", "args": args}]})
        plan = await ToolSelector(service, registry).select_tools("goal", CONTEXT)
        assert plan.plan_steps[0].args == args


class TestCandidates:
    async def test_disabled_wrapper_and_external_excluded(self, registry):
        registry.register(make_tool(MULTI_TOOL_WRAPPER))
        registry.register(make_tool("test.off", enabled=False))
        registry.register(make_tool("mcp.search", source=ToolSource.MCP))
        selector = ToolSelector(None, registry, ToolgateConfig(cache=CacheSettings(auto_refresh=False)))
        slugs = [c["slug"] for c in await selector.candidate_tools()]
        assert slugs == ["test.echo", "test.fail"]

    async def test_stale_external_cache_refreshed(self, registry):
        source = _Source()
        registry.add_external_source(source)
        selector = ToolSelector(None, registry)
        await selector.candidate_tools()
        await selector.candidate_tools()
        assert source.calls == 1
        assert registry.exists("mcp.search")

    async def test_refresh_disabled(self, registry):
        source = _Source()
        registry.add_external_source(source)
        selector = ToolSelector(None, registry, ToolgateConfig(cache=CacheSettings(auto_refresh=False)))
        await selector.candidate_tools()
        assert source.calls == 0


class TestPermissions:
    def _plan(self, *tool_ids):
        plan = ToolPlan(plan_steps=[PlanStep(tool_id=t) for t in tool_ids])
        plan.recompute_selected()
        return plan

    def test_empty_allow_list_keeps_everything(self):
        plan = PermissionGate().filter(self._plan("fs.read", "shell"))
        assert plan.selected_tool_ids == ["fs.read", "shell"]

    def test_wildcard_filter(self, caplog):
        with caplog.at_level(logging.WARNING, logger="toolgate"):
            plan = PermissionGate(["fs.*"]).filter(self._plan("fs.read", "shell", "fs.list"))
        assert [s.tool_id for s in plan.plan_steps] == ["fs.read", "fs.list"]
        assert plan.selected_tool_ids == ["fs.read", "fs.list"]
        assert any(getattr(r, "tool_id", None) == "shell" for r in caplog.records)

    async def test_selector_applies_config(self, service, registry):
        service.script("tool_selection", {"plan_steps": [
            {"tool_id": "test.echo", "args": {}}, {"tool_id": "test.fail", "args": {}},
        ]})
        config = ToolgateConfig(tools=ToolPermissions(allowed=["test.echo"]))
        plan = await ToolSelector(service, registry, config).select_tools("goal", CONTEXT)
        assert plan.selected_tool_ids == ["test.echo"]
