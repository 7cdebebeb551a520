"""HTTP tool: http.fetch.

Described to the risk gate as a network operation, so domain policies,
the SSRF check and the method/body/auth heuristics apply.
"""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from toolgate.core.models import Operation, OperationType
from toolgate.tools.registry import FunctionTool

MAX_BODY_CHARS = 32768


def _network_operation(slug: str, args: dict[str, Any]) -> Operation:
    url = str(args.get("url", ""))
    method = str(args.get("method", "GET")).upper()
    return Operation(
        type=OperationType.NETWORK,
        tool_id=slug,
        parameters=args,
        url=url,
        method=method,
        headers=dict(args.get("headers") or {}),
        has_body=bool(args.get("body")),
        summary=f"{method} {url}",
    )


async def _http_fetch(args: dict[str, Any], context: dict[str, Any]) -> dict[str, Any]:
    url = str(args["url"])
    method = str(args.get("method", "GET")).upper()
    headers = {"User-Agent": "toolgate/0.4", **(args.get("headers") or {})}
    body = args.get("body")

    def _do_request() -> dict[str, Any]:
        data = str(body).encode("utf-8") if body else None
        req = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(req, timeout=15) as resp:  # noqa: S310
                content = resp.read().decode("utf-8", errors="replace")
                return {
                    "success": True,
                    "result": {"status": resp.status, "body": content[:MAX_BODY_CHARS]},
                    "error": None,
                }
        except HTTPError as e:
            return {
                "success": False,
                "result": {"status": e.code, "body": e.read().decode("utf-8", errors="replace")[:2000]},
                "error": f"HTTP {e.code}: {e.reason}",
            }
        except URLError as e:
            return {"success": False, "result": None, "error": f"Connection error: {e.reason}"}

    return await asyncio.get_running_loop().run_in_executor(None, _do_request)


def http_fetch_tool() -> FunctionTool:
    return FunctionTool(
        "http.fetch",
        _http_fetch,
        description="Send an HTTP request and return the status code and response body.",
        capabilities=["network", "read"],
        schema={
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "method": {"type": "string", "enum": ["GET", "POST", "PUT", "PATCH", "DELETE"], "default": "GET"},
                "headers": {"type": "object"},
                "body": {"type": "string"},
            },
            "required": ["url"],
        },
        operation_builder=_network_operation,
    )
