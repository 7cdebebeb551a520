"""
Toolgate Policy Registry

Deny-by-default allow/deny rules for tools, shell commands, filesystem
paths and network domains. Each check returns a PolicyDecision; the
first active policy of the matching type (ascending priority) whose
pattern matches wins. Nothing matching means deny.

Pattern forms:
- exact:        ``git`` matches ``git``
- path prefix:  ``/workspace/*`` matches ``/workspace`` and ``/workspace/a/b.txt``
- wildcard:     ``*.github.com`` matches ``api.github.com`` (case-insensitive)

Policy lists are cached per type for ``cache_ttl_seconds``. Every
administrative write goes through ``add_policy``/``remove_policy``/
``replace_policies`` and clears the cache.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from functools import lru_cache
from typing import Protocol

from toolgate.core.models import PolicyAction, PolicyDecision, PolicyType, SecurityPolicy
from toolgate.logging import get_logger

logger = get_logger("toolgate.security.policy")

DEFAULT_DENY_PRIORITY = 999

_CATEGORY = {
    PolicyType.TOOL: None,
    PolicyType.COMMAND: "shell",
    PolicyType.PATH: "filesystem",
    PolicyType.DOMAIN: "network",
}


class PolicyStore(Protocol):
    """Where policies are persisted. The registry is the only reader."""

    def list_policies(self) -> list[SecurityPolicy]: ...

    def save_policy(self, policy: SecurityPolicy) -> None: ...

    def delete_policy(self, policy_id: str) -> bool: ...


class InMemoryPolicyStore:
    def __init__(self, policies: Iterable[SecurityPolicy] = ()) -> None:
        self._policies: dict[str, SecurityPolicy] = {p.id: p for p in policies}

    def list_policies(self) -> list[SecurityPolicy]:
        return list(self._policies.values())

    def save_policy(self, policy: SecurityPolicy) -> None:
        self._policies[policy.id] = policy

    def delete_policy(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None


# ─── Pattern Matching ────────────────────────────────────────

@lru_cache(maxsize=512)
def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern).replace(r"\*", ".*")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def matches_pattern(subject: str, pattern: str) -> bool:
    """Check ``subject`` against one policy pattern."""
    if subject == pattern:
        return True

    if pattern.endswith("/*"):
        prefix = pattern[:-2].rstrip("/")
        if subject == prefix or subject.startswith(prefix + "/"):
            return True

    if "*" in pattern:
        return _wildcard_regex(pattern).match(subject) is not None

    return False


def normalize_path(path: str) -> str:
    """Expand ``~`` and resolve symlinks when the path exists."""
    expanded = os.path.expanduser(path)
    if os.path.exists(expanded):
        return os.path.realpath(expanded)
    return expanded


# ─── Registry ────────────────────────────────────────────────

class PolicyRegistry:
    """Evaluates security policies with a per-type TTL cache."""

    def __init__(
        self,
        store: PolicyStore | None = None,
        cache_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store if store is not None else InMemoryPolicyStore(default_policies())
        self._ttl = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[PolicyType, tuple[float, list[SecurityPolicy]]] = {}

    # ── checks ──

    def is_tool_allowed(self, tool_id: str) -> PolicyDecision:
        return self._evaluate(PolicyType.TOOL, tool_id)

    def is_command_allowed(self, command: str) -> PolicyDecision:
        """Evaluate the base command (first word); arguments are ignored."""
        parts = command.strip().split()
        base = parts[0] if parts else ""
        return self._evaluate(PolicyType.COMMAND, base)

    def is_path_allowed(self, path: str, operation: str = "read") -> PolicyDecision:
        """Evaluate a normalized filesystem path.

        ``operation`` is accepted for context; policies do not distinguish
        read from write.
        """
        return self._evaluate(PolicyType.PATH, normalize_path(path))

    def is_domain_allowed(self, domain: str) -> PolicyDecision:
        return self._evaluate(PolicyType.DOMAIN, domain.lower())

    def check(self, policy_type: PolicyType, subject: str) -> PolicyDecision:
        dispatch = {
            PolicyType.TOOL: self.is_tool_allowed,
            PolicyType.COMMAND: self.is_command_allowed,
            PolicyType.PATH: self.is_path_allowed,
            PolicyType.DOMAIN: self.is_domain_allowed,
        }
        return dispatch[policy_type](subject)

    def get_risk_weight(self, policy_type: PolicyType, subject: str) -> int:
        """Risk weight of the rule that decides ``subject`` (0 when nothing matches)."""
        return self.check(policy_type, subject).risk_weight

    # ── policy set ──

    def get_policies_by_type(self, policy_type: PolicyType) -> list[SecurityPolicy]:
        """Active policies of one type in ascending priority. Cached."""
        now = self._clock()
        cached = self._cache.get(policy_type)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]

        policies = sorted(
            (p for p in self._store.list_policies()
             if p.is_active and p.policy_type == policy_type),
            key=lambda p: p.priority,
        )
        self._cache[policy_type] = (now, policies)
        return policies

    def get_all_policies(self) -> list[SecurityPolicy]:
        return sorted(
            (p for p in self._store.list_policies() if p.is_active),
            key=lambda p: (p.policy_type.value, p.priority),
        )

    def add_policy(self, policy: SecurityPolicy) -> SecurityPolicy:
        self._store.save_policy(policy)
        self.clear_cache()
        logger.info(
            "Policy saved",
            extra={"policy_id": policy.id, "policy_type": policy.policy_type.value,
                   "pattern": policy.pattern, "policy_action": policy.action.value},
        )
        return policy

    def remove_policy(self, policy_id: str) -> bool:
        removed = self._store.delete_policy(policy_id)
        self.clear_cache()
        return removed

    def replace_policies(self, policies: Iterable[SecurityPolicy]) -> None:
        for existing in self._store.list_policies():
            self._store.delete_policy(existing.id)
        for policy in policies:
            self._store.save_policy(policy)
        self.clear_cache()

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Policy cache cleared")

    def get_stats(self) -> dict:
        policies = self._store.list_policies()
        return {
            "total": len(policies),
            "active": sum(1 for p in policies if p.is_active),
            "by_type": dict(Counter(p.policy_type.value for p in policies)),
            "by_action": dict(Counter(p.action.value for p in policies)),
            "cached_types": sorted(t.value for t in self._cache),
        }

    def export(self) -> str:
        """Export active policies as a JSON document grouped by type."""
        grouped: dict[str, list[dict]] = {}
        for policy in self.get_all_policies():
            grouped.setdefault(policy.policy_type.value, []).append(
                policy.model_dump(mode="json", exclude={"id", "policy_type", "is_active"})
            )
        return json.dumps(
            {"version": "1.0", "updated_at": datetime.now(UTC).isoformat(), "policies": grouped},
            indent=2,
        )

    # ── internals ──

    def _evaluate(self, policy_type: PolicyType, subject: str) -> PolicyDecision:
        category = _CATEGORY[policy_type]
        for policy in self.get_policies_by_type(policy_type):
            if category and policy.category not in (None, category):
                continue
            pattern = policy.pattern
            if policy_type == PolicyType.PATH:
                pattern = os.path.expanduser(pattern)
            if not matches_pattern(subject, pattern):
                continue

            allowed = policy.action == PolicyAction.ALLOW
            decision = PolicyDecision(
                allowed=allowed,
                reason="Matched allow rule" if allowed else "Matched deny rule",
                matched_rule=policy.pattern,
                priority=policy.priority,
                policy_id=policy.id,
                risk_weight=policy.risk_weight,
            )
            self._log_decision(policy_type, subject, decision)
            return decision

        decision = PolicyDecision(
            allowed=False,
            reason="No matching policy (default deny)",
            matched_rule=None,
            priority=DEFAULT_DENY_PRIORITY,
            policy_id=None,
            risk_weight=0,
        )
        self._log_decision(policy_type, subject, decision)
        return decision

    @staticmethod
    def _log_decision(policy_type: PolicyType, subject: str, decision: PolicyDecision) -> None:
        extra = {
            "policy_type": policy_type.value,
            "subject": subject,
            "matched_rule": decision.matched_rule,
            "priority": decision.priority,
        }
        if decision.allowed:
            logger.debug("Policy allowed", extra=extra)
        else:
            logger.warning("Policy denied: %s", decision.reason, extra=extra)


# ─── Seed Set ────────────────────────────────────────────────

def default_policies() -> list[SecurityPolicy]:
    """Baseline policy set: common developer tooling allowed, system areas denied."""

    def rule(
        policy_type: PolicyType,
        pattern: str,
        action: PolicyAction,
        priority: int,
        description: str,
        risk_weight: int = 0,
    ) -> SecurityPolicy:
        return SecurityPolicy(
            id=f"default-{policy_type.value}-{action.value}-{pattern}",
            policy_type=policy_type,
            category=_CATEGORY[policy_type],
            pattern=pattern,
            action=action,
            priority=priority,
            risk_weight=risk_weight,
            description=description,
        )

    allow, deny = PolicyAction.ALLOW, PolicyAction.DENY
    tool, command, path, domain = PolicyType.TOOL, PolicyType.COMMAND, PolicyType.PATH, PolicyType.DOMAIN

    return [
        rule(tool, "admin.*", deny, 50, "Administrative tools"),
        rule(tool, "shell", allow, 100, "Shell execution tool"),
        rule(tool, "fs.*", allow, 100, "Filesystem tools"),
        rule(tool, "http.*", allow, 100, "HTTP tools"),
        rule(tool, "mcp.*", allow, 100, "External tool servers"),

        rule(command, "rm", deny, 50, "File deletion", risk_weight=25),
        rule(command, "dd", deny, 50, "Raw disk access", risk_weight=50),
        rule(command, "mkfs", deny, 50, "Filesystem formatting", risk_weight=50),
        rule(command, "sudo", deny, 50, "Privilege escalation", risk_weight=50),
        rule(command, "su", deny, 50, "User switching", risk_weight=50),
        rule(command, "ls", allow, 100, "List directory"),
        rule(command, "pwd", allow, 100, "Print working directory"),
        rule(command, "echo", allow, 100, "Echo text"),
        rule(command, "cat", allow, 100, "Read file"),
        rule(command, "grep", allow, 100, "Search text"),
        rule(command, "find", allow, 100, "Find files"),
        rule(command, "git", allow, 100, "Version control", risk_weight=5),
        rule(command, "npm", allow, 100, "Node package manager", risk_weight=10),
        rule(command, "composer", allow, 100, "PHP package manager", risk_weight=10),
        rule(command, "php", allow, 100, "PHP interpreter", risk_weight=15),

        rule(path, "/etc/*", deny, 50, "System configuration"),
        rule(path, "/var/*", deny, 50, "System state"),
        rule(path, "~/.ssh/*", deny, 50, "SSH keys"),
        rule(path, "/System/*", deny, 50, "macOS system files"),
        rule(path, "/workspace/*", allow, 100, "Project workspace"),
        rule(path, "/tmp/*", allow, 100, "Temporary files"),

        rule(domain, "localhost", deny, 50, "Loopback host"),
        rule(domain, "*.local", deny, 50, "mDNS hosts"),
        rule(domain, "*.internal", deny, 50, "Internal hosts"),
        rule(domain, "*.github.com", allow, 100, "GitHub"),
        rule(domain, "*.githubusercontent.com", allow, 100, "GitHub content"),
        rule(domain, "api.openai.com", allow, 100, "OpenAI API"),
        rule(domain, "api.anthropic.com", allow, 100, "Anthropic API"),
    ]
