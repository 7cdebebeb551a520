"""
Toolgate Built-in Tools

Registered by ``register_all_builtins``. Each tool describes its calls
to the risk gate as the operation kind it really performs. Every call
builds fresh tool objects, so enabling or disabling a tool in one
registry leaves other registries alone.
"""

from toolgate.tools.builtin.file_ops import (
    file_delete_tool,
    file_list_tool,
    file_read_tool,
    file_write_tool,
)
from toolgate.tools.builtin.http_client import http_fetch_tool
from toolgate.tools.builtin.shell import shell_tool
from toolgate.tools.registry import FunctionTool, ToolRegistry

BUILTIN_TOOL_FACTORIES = (
    file_read_tool,
    file_list_tool,
    file_write_tool,
    file_delete_tool,
    http_fetch_tool,
    shell_tool,
)


def builtin_tools() -> list[FunctionTool]:
    return [factory() for factory in BUILTIN_TOOL_FACTORIES]


def register_all_builtins(registry: ToolRegistry) -> None:
    """Register a fresh instance of every built-in tool with the given registry."""
    for tool in builtin_tools():
        registry.register(tool)
