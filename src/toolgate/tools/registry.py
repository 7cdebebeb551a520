"""
Toolgate Tool Registry

Explicit map of tool slug -> tool, built at startup. The runner only
uses ``exists``/``get``; the context broker and selector read tool
definitions through ``all``/``definitions``.

Tools come from two places: builtins registered in code, and external
(MCP-style) tool servers whose tool lists are cached here with a sync
timestamp and refreshed when older than the configured TTL.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from toolgate.core.models import Operation, OperationType, ToolSource
from toolgate.logging import get_logger

logger = get_logger("toolgate.tools")

ToolHandler = Callable[[dict[str, Any], dict[str, Any]], Any | Awaitable[Any]]
OperationBuilder = Callable[[str, dict[str, Any]], Operation]


class ToolDefinition(BaseModel):
    """What the model sees about a tool."""
    model_config = ConfigDict(populate_by_name=True)

    slug: str
    description: str = ""
    capabilities: list[str] = Field(default_factory=list)
    config_schema: dict[str, Any] = Field(default_factory=dict, alias="schema")
    source: ToolSource = ToolSource.BUILTIN
    enabled: bool = True
    synced_at: datetime | None = None

    def to_prompt_format(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "description": self.description,
            "capabilities": self.capabilities,
            "schema": self.config_schema,
        }


def tool_call_operation(slug: str, args: dict[str, Any]) -> Operation:
    return Operation(
        type=OperationType.TOOL_CALL,
        tool_id=slug,
        parameters=args,
        summary=f"Run tool {slug}",
    )


class FunctionTool:
    """A tool backed by a plain function, sync or async.

    The handler receives ``(args, context)`` and returns
    ``{"success": bool, "result": ..., "error": ...}``.
    """

    def __init__(
        self,
        slug: str,
        handler: ToolHandler,
        *,
        description: str = "",
        capabilities: list[str] | None = None,
        schema: dict[str, Any] | None = None,
        source: ToolSource = ToolSource.BUILTIN,
        enabled: bool = True,
        operation_builder: OperationBuilder | None = None,
    ) -> None:
        self.slug = slug
        self.handler = handler
        self.definition = ToolDefinition(
            slug=slug,
            description=description,
            capabilities=capabilities or [],
            schema=schema or {},
            source=source,
            enabled=enabled,
        )
        self._operation_builder = operation_builder or tool_call_operation

    def is_enabled(self) -> bool:
        return self.definition.enabled

    def set_enabled(self, enabled: bool) -> None:
        self.definition.enabled = enabled

    def capabilities(self) -> list[str]:
        return list(self.definition.capabilities)

    def get_config_schema(self) -> dict[str, Any]:
        return dict(self.definition.config_schema)

    def to_operation(self, args: dict[str, Any]) -> Operation:
        """The operation the risk gate scores before this tool runs."""
        return self._operation_builder(self.slug, args)

    async def call(self, args: dict[str, Any], context: dict[str, Any]) -> Any:
        result = self.handler(args, context)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class ExternalToolSource(Protocol):
    """An external tool server (MCP-style)."""

    name: str

    async def list_tools(self) -> list[FunctionTool]: ...


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, FunctionTool] = {}
        self._sources: list[ExternalToolSource] = []

    def register(self, tool: FunctionTool, *, replace: bool = False) -> None:
        """Register a tool. Raises ValueError on a duplicate slug unless ``replace``."""
        if tool.slug in self._tools and not replace:
            raise ValueError(f"Tool '{tool.slug}' is already registered")
        self._tools[tool.slug] = tool

    def exists(self, slug: str) -> bool:
        return slug in self._tools

    def get(self, slug: str) -> FunctionTool | None:
        return self._tools.get(slug)

    def all(self) -> list[FunctionTool]:
        """Every tool, in registration order."""
        return list(self._tools.values())

    def definitions(
        self,
        *,
        enabled_only: bool = True,
        source: ToolSource | None = None,
    ) -> list[ToolDefinition]:
        return [
            t.definition for t in self._tools.values()
            if (not enabled_only or t.is_enabled())
            and (source is None or t.definition.source == source)
        ]

    # ─── External tool cache ─────────────────────────────────

    def add_external_source(self, source: ExternalToolSource) -> None:
        self._sources.append(source)

    def oldest_external_sync(self) -> datetime | None:
        synced = [
            t.definition.synced_at for t in self._tools.values()
            if t.definition.source == ToolSource.MCP and t.definition.synced_at is not None
        ]
        return min(synced) if synced else None

    def is_external_cache_stale(self, ttl_hours: float, now: datetime | None = None) -> bool:
        if not self._sources:
            return False
        oldest = self.oldest_external_sync()
        now = now or datetime.now(UTC)
        return oldest is None or oldest < now - timedelta(hours=ttl_hours)

    async def refresh_external(self) -> int:
        """Re-fetch every external source's tool list. Returns the number of tools synced."""
        synced_at = datetime.now(UTC)
        count = 0
        for source in self._sources:
            try:
                tools = await source.list_tools()
            except Exception as e:
                logger.warning("External tool refresh failed: %s", e, extra={"source": source.name})
                continue
            for tool in tools:
                tool.definition.source = ToolSource.MCP
                tool.definition.synced_at = synced_at
                self.register(tool, replace=True)
                count += 1
        logger.info("External tool cache refreshed", extra={"tool_count": count})
        return count

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, slug: str) -> bool:
        return slug in self._tools
