"""Shell tool: runs one command line in a subprocess.

The risk gate sees the call as a shell command, so command policies and
the dangerous-pattern table (rm -rf, sudo, pipe-to-shell...) apply.
"""

from __future__ import annotations

import asyncio
from typing import Any

from toolgate.core.models import Operation, OperationType
from toolgate.tools.registry import FunctionTool

TIMEOUT_SECONDS = 30.0
MAX_OUTPUT_BYTES = 65536


def _command_operation(slug: str, args: dict[str, Any]) -> Operation:
    command = str(args.get("command", ""))
    return Operation(
        type=OperationType.COMMAND,
        tool_id=slug,
        parameters=args,
        command=command,
        working_dir=args.get("cwd"),
        summary=f"Run `{command}`",
    )


async def _run_shell(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    proc = await asyncio.create_subprocess_shell(
        str(args["command"]),
        cwd=args.get("cwd"),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=TIMEOUT_SECONDS)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        return {"success": False, "result": None, "error": f"Timed out after {TIMEOUT_SECONDS}s"}

    output = stdout[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
    errors = stderr[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")
    return {
        "success": proc.returncode == 0,
        "result": {"exit_code": proc.returncode, "stdout": output, "stderr": errors},
        "error": None if proc.returncode == 0 else f"Exit code {proc.returncode}",
    }


def shell_tool() -> FunctionTool:
    return FunctionTool(
        "shell",
        _run_shell,
        description="Run a shell command and return its exit code, stdout and stderr.",
        capabilities=["shell", "execute"],
        schema={
            "type": "object",
            "properties": {
                "command": {"type": "string"},
                "cwd": {"type": "string", "description": "Working directory"},
            },
            "required": ["command"],
        },
        operation_builder=_command_operation,
    )
