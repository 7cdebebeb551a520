"""
Toolgate Risk Scorer

Additive, explainable risk scores (0-100) for prospective operations.
Each scoring function starts from the baseline weight table, adds the
policy risk weight of the subject, then applies heuristics for its
operation kind. Every contribution is recorded as a factor string
such as ``"Shell execution: +35"``.

Score -> level:   <=25 low, <=50 medium, <=75 high, else critical
Score -> action:  ascending threshold table (0, 26, 51, 76)
requires_approval is exactly ``score >= 26``.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from collections.abc import Callable, Sequence
from urllib.parse import urlparse

from toolgate.core.models import (
    BatchRiskAssessment,
    Operation,
    OperationType,
    PolicyType,
    RiskAction,
    RiskAssessment,
    RiskLevel,
)
from toolgate.security.policy import PolicyRegistry

BASE_WEIGHTS = {
    "read_operation": 1,
    "write_operation": 10,
    "delete_operation": 25,
    "network_egress": 15,
    "shell_execution": 35,
    "privileged_operation": 50,
    "system_modification": 40,
    "data_exfiltration_risk": 30,
}

APPROVAL_THRESHOLD = 26

THRESHOLDS: list[tuple[int, RiskAction]] = [
    (0, RiskAction.AUTO_APPROVE),
    (26, RiskAction.REQUIRE_APPROVAL),
    (51, RiskAction.REQUIRE_APPROVAL),
    (76, RiskAction.REQUIRE_APPROVAL_WITH_JUSTIFICATION),
]

DANGEROUS_COMMAND_PATTERNS: list[tuple[re.Pattern[str], int, str]] = [
    (re.compile(r"rm\s+-rf", re.I), 40, "Recursive force delete"),
    (re.compile(r"sudo", re.I), 50, "Privileged execution"),
    (re.compile(r"chmod\s+777", re.I), 30, "Insecure permissions"),
    (re.compile(r"(wget|curl).*\|.*sh", re.I), 45, "Pipe to shell"),
    (re.compile(r"dd\s+if=", re.I), 50, "Disk manipulation"),
    (re.compile(r"mkfs", re.I), 50, "Filesystem creation"),
    (re.compile(r">\s*/dev/sd[a-z]", re.I), 50, "Direct disk write"),
    (re.compile(r"mysql.*--password", re.I), 30, "Password in command"),
]

_CHAINING = re.compile(r"[|&;]")

FILE_OPERATION_WEIGHTS = {
    "read": BASE_WEIGHTS["read_operation"],
    "write": BASE_WEIGHTS["write_operation"],
    "delete": BASE_WEIGHTS["delete_operation"],
    "execute": BASE_WEIGHTS["shell_execution"],
}

SENSITIVE_PATHS: list[tuple[str, int, str]] = [
    (".ssh/", 40, "SSH keys"),
    (".env", 35, "Environment secrets"),
    (".aws/credentials", 40, "AWS credentials"),
    ("/etc/passwd", 45, "System password file"),
    ("/etc/shadow", 50, "System shadow file"),
    (".git/", 15, "Git repository data"),
]

SENSITIVE_PARAMETERS = ("password", "secret", "token", "api_key", "private_key")
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})


def risk_level_for(score: int) -> RiskLevel:
    if score <= 25:
        return RiskLevel.LOW
    if score <= 50:
        return RiskLevel.MEDIUM
    if score <= 75:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def action_for(score: int) -> RiskAction:
    action = RiskAction.AUTO_APPROVE
    for threshold, threshold_action in THRESHOLDS:
        if score >= threshold:
            action = threshold_action
    return action


def _assessment(score: int, factors: list[str]) -> RiskAssessment:
    score = max(0, min(int(score), 100))
    return RiskAssessment(
        score=score,
        level=risk_level_for(score),
        action=action_for(score),
        factors=factors,
        requires_approval=score >= APPROVAL_THRESHOLD,
    )


def domain_from_url(url: str) -> str:
    """Host part of a URL, or the input itself when it has no scheme."""
    parsed = urlparse(url if "//" in url else f"//{url}")
    return (parsed.hostname or url).lower()


class RiskScorer:
    """Computes RiskAssessments from policy weights plus heuristics.

    ``resolver`` turns a hostname into an IP string; it is only used by
    the private-address check and defaults to ``socket.gethostbyname``.
    """

    def __init__(
        self,
        policy_registry: PolicyRegistry,
        resolver: Callable[[str], str] | None = None,
    ) -> None:
        self._policies = policy_registry
        self._resolve = resolver or socket.gethostbyname

    def score_tool_call(self, tool_id: str, parameters: dict | None = None) -> RiskAssessment:
        score = 0
        factors: list[str] = []

        tool_risk = self._policies.get_risk_weight(PolicyType.TOOL, tool_id)
        if tool_risk > 0:
            score += tool_risk
            factors.append(f"Tool base risk: +{tool_risk}")

        checks = [
            (tool_id.startswith("shell"), "shell_execution", "Shell execution"),
            ("delete" in tool_id or "remove" in tool_id, "delete_operation", "Delete operation"),
            ("write" in tool_id or "create" in tool_id, "write_operation", "Write operation"),
            (any(w in tool_id for w in ("http", "fetch", "request")), "network_egress", "Network egress"),
            ("read" in tool_id, "read_operation", "Read operation"),
        ]
        for matched, weight_key, label in checks:
            if matched:
                score += BASE_WEIGHTS[weight_key]
                factors.append(f"{label}: +{BASE_WEIGHTS[weight_key]}")

        param_score, param_factors = self._analyze_parameters(parameters or {})
        score += param_score
        factors.extend(param_factors)

        return _assessment(score, factors)

    def score_command(self, command: str, workdir: str | None = None) -> RiskAssessment:
        score = 0
        factors: list[str] = []

        command_risk = self._policies.get_risk_weight(PolicyType.COMMAND, command)
        if command_risk > 0:
            score += command_risk
            factors.append(f"Command base risk: +{command_risk}")

        score += BASE_WEIGHTS["shell_execution"]
        factors.append(f"Shell execution: +{BASE_WEIGHTS['shell_execution']}")

        for pattern, weight, reason in DANGEROUS_COMMAND_PATTERNS:
            if pattern.search(command):
                score += weight
                factors.append(f"{reason}: +{weight}")

        if _CHAINING.search(command):
            score += 5
            factors.append("Command chaining: +5")

        if workdir and not self._policies.is_path_allowed(workdir).allowed:
            score += 20
            factors.append("Working in restricted directory: +20")

        return _assessment(score, factors)

    def score_file_operation(
        self,
        path: str,
        operation: str = "read",
        file_count: int = 1,
    ) -> RiskAssessment:
        score = 0
        factors: list[str] = []

        if not self._policies.is_path_allowed(path, operation).allowed:
            score += 30
            factors.append("Restricted path access: +30")

        op_weight = FILE_OPERATION_WEIGHTS.get(operation, 0)
        if op_weight > 0:
            score += op_weight
            factors.append(f"{operation.capitalize()} operation: +{op_weight}")

        for fragment, weight, reason in SENSITIVE_PATHS:
            if fragment in path:
                score += weight
                factors.append(f"{reason}: +{weight}")

        if file_count > 10:
            bulk = min(20, file_count // 5)
            score += bulk
            factors.append(f"Bulk operation ({file_count} files): +{bulk}")

        return _assessment(score, factors)

    def score_network_operation(
        self,
        domain: str,
        method: str = "GET",
        has_body: bool = False,
        headers: dict[str, str] | None = None,
    ) -> RiskAssessment:
        score = BASE_WEIGHTS["network_egress"]
        factors = [f"Network egress: +{BASE_WEIGHTS['network_egress']}"]

        if not self._policies.is_domain_allowed(domain).allowed:
            score += 25
            factors.append("Restricted domain: +25")

        if self.is_private_address(domain):
            weight = BASE_WEIGHTS["data_exfiltration_risk"]
            score += weight
            factors.append(f"Private IP/SSRF risk: +{weight}")

        if method.upper() in MUTATING_METHODS:
            score += 5
            factors.append("Mutating HTTP method: +5")

        if has_body:
            score += 10
            factors.append("Data upload: +10")

        if headers and any(k.lower() == "authorization" for k in headers):
            score += 5
            factors.append("Contains auth token: +5")

        return _assessment(score, factors)

    def score_operation(self, operation: Operation) -> RiskAssessment:
        """Dispatch on the operation's declared type."""
        if operation.type == OperationType.TOOL_CALL:
            return self.score_tool_call(operation.tool_id or "", operation.parameters)
        if operation.type == OperationType.COMMAND:
            return self.score_command(operation.command or "", operation.working_dir)
        if operation.type == OperationType.FILE_OPERATION:
            return self.score_file_operation(
                operation.path or "", operation.operation or "read", operation.file_count
            )
        domain = operation.domain or domain_from_url(operation.url or "")
        return self.score_network_operation(
            domain, operation.method, operation.has_body, operation.headers
        )

    def score_operation_batch(self, assessments: Sequence[RiskAssessment]) -> BatchRiskAssessment:
        """Average score across already-scored operations; level is the highest seen."""
        if not assessments:
            return BatchRiskAssessment(
                score=0,
                level=RiskLevel.LOW,
                action=RiskAction.AUTO_APPROVE,
                operation_count=0,
            )

        average = sum(a.score for a in assessments) // len(assessments)
        level = max((a.level for a in assessments), key=lambda lvl: lvl.rank)
        factors = [f for a in assessments for f in a.factors]
        return BatchRiskAssessment(
            score=average,
            level=level,
            action=action_for(average),
            factors=factors,
            requires_approval=average >= APPROVAL_THRESHOLD,
            operation_count=len(assessments),
        )

    def is_private_address(self, domain: str) -> bool:
        """SSRF heuristic: loopback, private or reserved target."""
        if domain in ("localhost", "127.0.0.1", "::1"):
            return True
        try:
            ip = ipaddress.ip_address(domain)
        except ValueError:
            try:
                resolved = self._resolve(domain)
            except (OSError, UnicodeError):
                return False
            if not resolved or resolved == domain:
                return False
            try:
                ip = ipaddress.ip_address(resolved)
            except ValueError:
                return False
        return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local

    @staticmethod
    def _analyze_parameters(parameters: dict) -> tuple[int, list[str]]:
        score = 0
        factors: list[str] = []

        for key in SENSITIVE_PARAMETERS:
            if key in parameters:
                score += 10
                factors.append(f"Sensitive parameter ({key}): +10")

        if "sudo" in parameters or "privileged" in parameters:
            weight = BASE_WEIGHTS["privileged_operation"]
            score += weight
            factors.append(f"Privileged mode: +{weight}")

        if "force" in parameters or "recursive" in parameters:
            score += 15
            factors.append("Force/recursive flag: +15")

        return score, factors
