"""
Toolgate Tools

- ToolRegistry: explicit slug -> tool map, plus the external tool cache
- FunctionTool: a tool backed by a sync or async function
- ToolDefinition: what the model sees about a tool
- Built-in tools: fs.read, fs.list, fs.write, fs.delete, http.fetch, shell
"""

from toolgate.tools.registry import (
    ExternalToolSource,
    FunctionTool,
    ToolDefinition,
    ToolRegistry,
    tool_call_operation,
)

__all__ = [
    "ExternalToolSource",
    "FunctionTool",
    "ToolDefinition",
    "ToolRegistry",
    "tool_call_operation",
]
