"""
Toolgate Dry-Run Simulator

Predicts what an operation would do without doing it. Policy is always
checked first: a denied operation returns immediately with a BLOCKED
warning and no risk assessment. Otherwise the operation is scored and
its side effects are predicted.

``would_execute`` is True only when the risk action is auto_approve.
"""

from __future__ import annotations

import os
import re
from typing import Any

from toolgate.core.models import (
    Operation,
    OperationType,
    PolicyDecision,
    PredictedChange,
    RiskAction,
    RiskAssessment,
    SimulationResult,
)
from toolgate.security.policy import PolicyRegistry
from toolgate.security.risk import RiskScorer, domain_from_url

SANITIZED = "***REDACTED***"
SENSITIVE_PARAMETER_KEYS = frozenset(
    {"password", "secret", "token", "api_key", "private_key", "apiKey"}
)

COMMAND_EFFECTS: dict[str, tuple[str, str]] = {
    "rm": ("file_delete", "Would delete files"),
    "mkdir": ("directory_create", "Would create directory"),
    "touch": ("file_create", "Would create/update file"),
    "git": ("vcs_operation", "Would modify version control"),
    "npm": ("package_operation", "Would modify packages"),
    "composer": ("package_operation", "Would modify packages"),
}

_REDIRECTION = re.compile(r">\s*([^\s]+)")


def sanitize_parameters(parameters: dict[str, Any]) -> dict[str, Any]:
    return {
        k: SANITIZED if k in SENSITIVE_PARAMETER_KEYS else v
        for k, v in parameters.items()
    }


class DryRunSimulator:
    def __init__(self, policy_registry: PolicyRegistry, risk_scorer: RiskScorer) -> None:
        self._policies = policy_registry
        self._scorer = risk_scorer

    @property
    def policy_registry(self) -> PolicyRegistry:
        return self._policies

    def simulate_tool_call(self, tool_id: str, parameters: dict | None = None) -> SimulationResult:
        parameters = parameters or {}
        decision = self._policies.is_tool_allowed(tool_id)
        base = {"kind": OperationType.TOOL_CALL, "tool_id": tool_id,
                "parameters": sanitize_parameters(parameters)}
        if not decision.allowed:
            return self._blocked(decision, **base)

        risk = self._scorer.score_tool_call(tool_id, parameters)
        return self._finish(decision, risk, self._predict_tool_changes(tool_id, parameters), **base)

    def simulate_command(self, command: str, workdir: str | None = None) -> SimulationResult:
        decision = self._policies.is_command_allowed(command)
        base = {"kind": OperationType.COMMAND, "command": command}
        if not decision.allowed:
            return self._blocked(decision, **base)

        risk = self._scorer.score_command(command, workdir)
        return self._finish(decision, risk, self._predict_command_changes(command), **base)

    def simulate_file_operation(
        self,
        path: str,
        operation: str = "read",
        file_count: int = 1,
        size: int | None = None,
    ) -> SimulationResult:
        decision = self._policies.is_path_allowed(path, operation)
        base = {"kind": OperationType.FILE_OPERATION, "path": path, "operation": operation}
        if not decision.allowed:
            return self._blocked(decision, **base)

        risk = self._scorer.score_file_operation(path, operation, file_count)
        changes = self._predict_file_changes(path, operation, size)
        return self._finish(decision, risk, changes, **base)

    def simulate_network_operation(
        self,
        url: str,
        method: str = "GET",
        has_body: bool = False,
        headers: dict[str, str] | None = None,
        body_size: int | None = None,
    ) -> SimulationResult:
        domain = domain_from_url(url)
        method = method.upper()
        decision = self._policies.is_domain_allowed(domain)
        base = {"kind": OperationType.NETWORK, "url": url, "domain": domain, "method": method}
        if not decision.allowed:
            return self._blocked(decision, **base)

        risk = self._scorer.score_network_operation(domain, method, has_body, headers)
        changes = [PredictedChange(
            type="network_request",
            target=url,
            description=f"Would send {method} request to {url}",
            details={"method": method},
        )]
        if has_body:
            changes.append(PredictedChange(
                type="data_upload",
                description="Would upload data to remote server",
                details={"size_estimate": body_size},
            ))
        return self._finish(decision, risk, changes, **base)

    def simulate(self, operation: Operation) -> SimulationResult:
        """Dispatch on the operation's declared type."""
        if operation.type == OperationType.TOOL_CALL:
            return self.simulate_tool_call(operation.tool_id or "", operation.parameters)
        if operation.type == OperationType.COMMAND:
            return self.simulate_command(operation.command or "", operation.working_dir)
        if operation.type == OperationType.FILE_OPERATION:
            return self.simulate_file_operation(
                operation.path or "", operation.operation or "read", operation.file_count
            )
        return self.simulate_network_operation(
            operation.url or operation.domain or "",
            operation.method,
            operation.has_body,
            operation.headers,
        )

    # ─── Internals ───────────────────────────────────────────

    @staticmethod
    def _blocked(decision: PolicyDecision, **fields: Any) -> SimulationResult:
        return SimulationResult(
            policy_check=decision,
            would_execute=False,
            warnings=[f"BLOCKED: {decision.reason}"],
            **fields,
        )

    @staticmethod
    def _finish(
        decision: PolicyDecision,
        risk: RiskAssessment,
        changes: list[PredictedChange],
        **fields: Any,
    ) -> SimulationResult:
        warnings = []
        if risk.requires_approval:
            warnings.append(f"REQUIRES APPROVAL: Risk score {risk.score} ({risk.level.value})")
        return SimulationResult(
            policy_check=decision,
            risk_assessment=risk,
            predicted_changes=changes,
            would_execute=risk.action == RiskAction.AUTO_APPROVE,
            warnings=warnings,
            **fields,
        )

    @staticmethod
    def _predict_tool_changes(tool_id: str, parameters: dict) -> list[PredictedChange]:
        changes = []
        target = str(parameters.get("path", "unknown"))
        if tool_id.startswith("fs.write"):
            changes.append(PredictedChange(
                type="file_write", target=target, description="Would create or modify file"
            ))
        if tool_id.startswith("fs.delete"):
            changes.append(PredictedChange(
                type="file_delete", target=target, description="Would delete file"
            ))
        if "shell" in tool_id:
            changes.append(PredictedChange(
                type="shell_execution",
                target=parameters.get("command"),
                description="Would execute shell command",
            ))
        if tool_id.startswith("http"):
            url = parameters.get("url")
            method = str(parameters.get("method", "GET")).upper()
            changes.append(PredictedChange(
                type="network_request",
                target=url,
                description=f"Would send {method} request to {url or 'unknown'}",
            ))
        return changes

    @staticmethod
    def _predict_command_changes(command: str) -> list[PredictedChange]:
        changes = []
        parts = command.strip().split()
        binary = parts[0] if parts else ""
        if binary in COMMAND_EFFECTS:
            change_type, description = COMMAND_EFFECTS[binary]
            changes.append(PredictedChange(type=change_type, description=description))

        match = _REDIRECTION.search(command)
        if match:
            changes.append(PredictedChange(
                type="file_write",
                target=match.group(1),
                description="Would write to file via redirection",
            ))
        return changes

    @staticmethod
    def _predict_file_changes(path: str, operation: str, size: int | None) -> list[PredictedChange]:
        exists = os.path.exists(path)
        if operation == "write":
            return [PredictedChange(
                type="file_modify" if exists else "file_create",
                target=path,
                description="Would modify existing file" if exists else "Would create new file",
                details={"size_estimate": size},
            )]
        if operation == "delete":
            if not exists:
                return []
            return [PredictedChange(
                type="file_delete",
                target=path,
                description="Would delete file",
                details={"current_size": os.path.getsize(path) if os.path.isfile(path) else None},
            )]
        if operation == "read":
            return [PredictedChange(
                type="file_read",
                target=path,
                description="Would read file contents",
                details={"exists": exists},
            )]
        return []
