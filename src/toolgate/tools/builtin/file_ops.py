"""File tools: fs.read, fs.write, fs.list, fs.delete.

Path restrictions are not enforced here. Each call is described to the
risk gate as a file operation, so path policies and the sensitive-path
table apply before the handler runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from toolgate.core.models import Operation, OperationType
from toolgate.tools.registry import FunctionTool

MAX_READ_BYTES = 1_048_576


def _file_operation(kind: str) -> Any:
    def build(slug: str, args: dict[str, Any]) -> Operation:
        path = str(args.get("path", ""))
        return Operation(
            type=OperationType.FILE_OPERATION,
            tool_id=slug,
            parameters=args,
            path=path,
            operation=kind,
            summary=f"{kind.capitalize()} {path}",
            full_content=args.get("content") if kind == "write" else None,
            title=f"{slug}: {path}",
        )
    return build


def _file_read(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    p = Path(args["path"])
    max_lines = int(args.get("max_lines", 200))
    if not p.is_file():
        return {"success": False, "result": None, "error": f"Not a file: {p}"}
    if p.stat().st_size > MAX_READ_BYTES:
        return {"success": False, "result": None, "error": f"File too large ({p.stat().st_size} bytes)"}

    lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
    content = "\n".join(lines[:max_lines])
    return {
        "success": True,
        "result": {"path": str(p), "content": content, "truncated": len(lines) > max_lines},
        "error": None,
    }


def _file_write(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    p = Path(args["path"])
    content = str(args.get("content", ""))
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    return {"success": True, "result": {"path": str(p), "bytes": len(content.encode())}, "error": None}


def _file_list(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    p = Path(args.get("path", "."))
    if not p.is_dir():
        return {"success": False, "result": None, "error": f"Not a directory: {p}"}
    entries = sorted(
        ({"name": c.name, "type": "dir" if c.is_dir() else "file"} for c in p.iterdir()),
        key=lambda e: e["name"],
    )
    return {"success": True, "result": {"path": str(p), "entries": entries}, "error": None}


def _file_delete(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    p = Path(args["path"])
    if not p.is_file():
        return {"success": False, "result": None, "error": f"Not a file: {p}"}
    p.unlink()
    return {"success": True, "result": {"path": str(p), "deleted": True}, "error": None}


_PATH_SCHEMA = {"path": {"type": "string", "description": "Absolute path"}}


def file_read_tool() -> FunctionTool:
    return FunctionTool(
        "fs.read",
        _file_read,
        description="Read a text file. Returns up to max_lines lines.",
        capabilities=["filesystem", "read"],
        schema={
            "type": "object",
            "properties": {**_PATH_SCHEMA, "max_lines": {"type": "integer", "default": 200}},
            "required": ["path"],
        },
        operation_builder=_file_operation("read"),
    )


def file_write_tool() -> FunctionTool:
    return FunctionTool(
        "fs.write",
        _file_write,
        description="Create or overwrite a text file.",
        capabilities=["filesystem", "write"],
        schema={
            "type": "object",
            "properties": {**_PATH_SCHEMA, "content": {"type": "string"}},
            "required": ["path", "content"],
        },
        operation_builder=_file_operation("write"),
    )


def file_list_tool() -> FunctionTool:
    return FunctionTool(
        "fs.list",
        _file_list,
        description="List the entries of a directory.",
        capabilities=["filesystem", "read"],
        schema={"type": "object", "properties": _PATH_SCHEMA, "required": ["path"]},
        operation_builder=_file_operation("read"),
    )


def file_delete_tool() -> FunctionTool:
    return FunctionTool(
        "fs.delete",
        _file_delete,
        description="Delete a single file.",
        capabilities=["filesystem", "delete"],
        schema={"type": "object", "properties": _PATH_SCHEMA, "required": ["path"]},
        operation_builder=_file_operation("delete"),
    )
