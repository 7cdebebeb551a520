"""
Toolgate Custom Exceptions

All Toolgate-specific exceptions inherit from ToolgateError.

Exception hierarchy:
    ToolgateError
    +-- ConfigError                   (invalid configuration or provider table)
    +-- MalformedOutputError          (model output is not the JSON we asked for)
    +-- ProviderError                 (text completion failure)
    +-- ToolExecutionError            (tool invocation failure)
    +-- ApprovalError
    |   +-- ApprovalNotFoundError     (unknown approval request id)
    |   +-- InvalidApprovalStateError (request is in the wrong status)
    +-- PipelineError                 (turn orchestration error)
"""

from __future__ import annotations


class ToolgateError(Exception):
    """Base exception for all Toolgate errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConfigError(ToolgateError):
    """Raised when configuration is invalid."""


class MalformedOutputError(ToolgateError):
    """Raised when a model response cannot be parsed into the expected JSON shape.

    Carries the raw text so callers can log it.
    """

    def __init__(self, component: str, message: str, raw: str = "", details: dict | None = None):
        super().__init__(
            f"{component}: {message}",
            details={"component": component, "raw": raw[:500], **(details or {})},
        )
        self.component = component
        self.raw = raw


class ProviderError(ToolgateError):
    """Raised when a text completion provider fails."""

    def __init__(self, provider_name: str, message: str, details: dict | None = None):
        super().__init__(
            f"Provider '{provider_name}' error: {message}",
            details={"provider_name": provider_name, **(details or {})},
        )
        self.provider_name = provider_name


class ToolExecutionError(ToolgateError):
    """Raised when a tool execution fails."""

    def __init__(self, tool_id: str, message: str, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_id}' execution failed: {message}",
            details={"tool_id": tool_id, **(details or {})},
        )
        self.tool_id = tool_id


class ApprovalError(ToolgateError):
    """Base exception for approval request errors."""


class ApprovalNotFoundError(ApprovalError):
    def __init__(self, request_id: str):
        super().__init__(
            f"Approval request not found: {request_id}",
            details={"request_id": request_id},
        )
        self.request_id = request_id


class InvalidApprovalStateError(ApprovalError):
    """Raised when a request is not in the status an action needs.

    Approving and rejecting need ``pending``; executing needs
    ``approved``. Indicates a race between two clients or a stale one.
    """

    def __init__(self, request_id: str, status: str, verb: str = "approve"):
        super().__init__(
            f"Cannot {verb} request in status: {status}",
            details={"request_id": request_id, "status": status},
        )
        self.request_id = request_id
        self.status = status


class PipelineError(ToolgateError):
    """Raised for turn orchestration errors."""

    def __init__(self, pipeline_id: str, message: str, details: dict | None = None):
        super().__init__(
            f"Pipeline '{pipeline_id}' error: {message}",
            details={"pipeline_id": pipeline_id, **(details or {})},
        )
        self.pipeline_id = pipeline_id
