"""
Toolgate Tool Selector

Turns the router's goal into an ordered ToolPlan.

Candidates are the enabled builtin tools, minus the generic multi-tool
wrapper. External (MCP-style) tool lists are refreshed first when the
cache is older than ``cache.mcp_ttl_hours``.

Post-processing:
    1. Permission filter against ``tools.allowed`` (``*`` wildcards).
       An empty allow-list lets every step through.
    2. Argument back-fill. Arguments are kept exactly as the model
       produced them.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from toolgate.config import ToolgateConfig
from toolgate.core.models import ContextBundle, PlanStep, ToolPlan, ToolSource
from toolgate.logging import get_logger
from toolgate.orchestration._json import complete_json, parse_json_object
from toolgate.orchestration.prompts import SELECTOR_PROMPT, SELECTOR_SYSTEM
from toolgate.providers.base import TextCompletionService
from toolgate.providers.resolution import ProviderResolver
from toolgate.security.policy import matches_pattern
from toolgate.tools.registry import ToolRegistry

logger = get_logger("toolgate.orchestration.selector")

MULTI_TOOL_WRAPPER = "mcp.call"


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def parse_tool_plan(text: str) -> ToolPlan:
    data = parse_json_object(text)
    raw_steps = data.get("plan_steps", [])
    if not isinstance(raw_steps, list):
        raise ValueError("plan_steps must be a list")

    steps = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            raise ValueError("each plan step must be an object")
        args = raw.get("args") or {}
        if not isinstance(args, dict):
            raise ValueError(f"args of step {raw.get('tool_id')!r} must be an object")
        steps.append(PlanStep(
            tool_id=str(raw.get("tool_id") or ""),
            args=args,
            why=str(raw.get("why") or ""),
        ))

    plan = ToolPlan(
        selected_tool_ids=_str_list(data.get("selected_tool_ids")),
        plan_steps=steps,
        inputs_needed=_str_list(data.get("inputs_needed")),
    )
    if not plan.selected_tool_ids:
        plan.recompute_selected()
    return plan


class PermissionGate:
    """Allow-list of tool ids. Empty means everything is allowed."""

    def __init__(self, allowed: Iterable[str] = ()) -> None:
        self._allowed = list(allowed)

    def is_allowed(self, tool_id: str) -> bool:
        if not self._allowed:
            return True
        return any(matches_pattern(tool_id, pattern) for pattern in self._allowed)

    def filter(self, plan: ToolPlan) -> ToolPlan:
        if not self._allowed:
            return plan
        kept = []
        for step in plan.plan_steps:
            if self.is_allowed(step.tool_id):
                kept.append(step)
            else:
                logger.warning("Tool filtered by permission", extra={"tool_id": step.tool_id})
        plan.plan_steps = kept
        plan.selected_tool_ids = [t for t in plan.selected_tool_ids if self.is_allowed(t)]
        return plan


class ToolSelector:
    def __init__(
        self,
        service: TextCompletionService,
        registry: ToolRegistry,
        config: ToolgateConfig | None = None,
        resolver: ProviderResolver | None = None,
        excluded: Iterable[str] = (MULTI_TOOL_WRAPPER,),
    ) -> None:
        self._service = service
        self._registry = registry
        self._config = config or ToolgateConfig()
        self._resolver = resolver or ProviderResolver(self._config.models.default_provider)
        self._excluded = frozenset(excluded)
        self._permissions = PermissionGate(self._config.tools.allowed)

    async def select_tools(self, goal: str, context: ContextBundle) -> ToolPlan:
        candidates = await self.candidate_tools()
        prompt = SELECTOR_PROMPT.format(
            high_level_goal=goal,
            tools=json.dumps(candidates, indent=2, default=str),
        )
        model = self._config.models.selector
        plan, _ = await complete_json(
            self._service,
            prompt,
            parse_tool_plan,
            component="ToolSelector",
            retry=self._config.features.retry_on_parse_failure,
            request_type="tool_selection",
            provider=self._resolver.resolve(model),
            model=model,
            temperature=0.2,
            max_tokens=1000,
            system=SELECTOR_SYSTEM,
        )

        plan = self._permissions.filter(plan)
        plan = self.fill_missing_args(plan, context)

        logger.info(
            "Tool plan created",
            extra={"selected_tools": plan.selected_tool_ids, "step_count": len(plan.plan_steps)},
        )
        return plan

    async def candidate_tools(self) -> list[dict[str, Any]]:
        await self._refresh_external_cache()
        return [
            d.to_prompt_format()
            for d in self._registry.definitions(enabled_only=True, source=ToolSource.BUILTIN)
            if d.slug not in self._excluded
        ]

    def fill_missing_args(self, plan: ToolPlan, context: ContextBundle) -> ToolPlan:
        return plan

    async def _refresh_external_cache(self) -> None:
        cache = self._config.cache
        if not cache.auto_refresh:
            return
        if self._registry.is_external_cache_stale(cache.mcp_ttl_hours):
            logger.info(
                "External tool cache is stale, refreshing",
                extra={"ttl_hours": cache.mcp_ttl_hours,
                       "oldest_sync": self._registry.oldest_external_sync()},
            )
            await self._registry.refresh_external()
