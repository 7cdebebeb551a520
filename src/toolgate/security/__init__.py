"""
Toolgate Security

- PolicyRegistry: allow/deny rules for tools, commands, paths and domains
- RiskScorer: 0-100 additive risk score per prospective operation
- DryRunSimulator: predicted effect of an operation, without running it
- ApprovalManager: approval requests and the risk gate
- Redactor: secret/PII scrubbing for prompts, logs and audit records
"""

from __future__ import annotations

from typing import Any

from toolgate.config import ToolgateConfig
from toolgate.security.approval import ApprovalManager, ApprovalStore, ContentStore
from toolgate.security.dry_run import DryRunSimulator
from toolgate.security.policy import (
    InMemoryPolicyStore,
    PolicyRegistry,
    PolicyStore,
    default_policies,
    matches_pattern,
)
from toolgate.security.redaction import REDACTED, Redactor
from toolgate.security.risk import APPROVAL_THRESHOLD, RiskScorer

__all__ = [
    "APPROVAL_THRESHOLD",
    "ApprovalManager",
    "DryRunSimulator",
    "InMemoryPolicyStore",
    "PolicyRegistry",
    "PolicyStore",
    "REDACTED",
    "Redactor",
    "RiskScorer",
    "create_approval_manager",
    "default_policies",
    "matches_pattern",
]


def create_approval_manager(
    config: ToolgateConfig | None = None,
    *,
    policy_store: PolicyStore | None = None,
    store: ApprovalStore | None = None,
    content_store: ContentStore | None = None,
    audit_log: Any = None,
) -> ApprovalManager:
    """Wire policy registry, risk scorer, dry-run simulator and approval manager."""
    config = config or ToolgateConfig()
    policies = PolicyRegistry(policy_store, cache_ttl_seconds=config.policy.cache_ttl_seconds)
    scorer = RiskScorer(policies)
    simulator = DryRunSimulator(policies, scorer)
    return ApprovalManager(
        scorer,
        simulator,
        store=store,
        content_store=content_store,
        audit_log=audit_log,
        settings=config.approval,
    )
