"""Tests for the PolicyRegistry.

Covers pattern matching, precedence, default deny, caching and the
administrative write path.
"""

import json

from toolgate.core.models import PolicyAction, PolicyType, SecurityPolicy
from toolgate.security.policy import (
    DEFAULT_DENY_PRIORITY,
    InMemoryPolicyStore,
    PolicyRegistry,
    default_policies,
    matches_pattern,
)


def _policy(policy_type, pattern, action, priority=100, **kwargs):
    return SecurityPolicy(
        policy_type=policy_type, pattern=pattern, action=action, priority=priority, **kwargs
    )


class TestMatchesPattern:
    def test_exact(self):
        assert matches_pattern("git", "git")
        assert not matches_pattern("gitk", "git")

    def test_path_prefix(self):
        assert matches_pattern("/workspace/a/b.txt", "/workspace/*")
        assert matches_pattern("/workspace", "/workspace/*")
        assert not matches_pattern("/workspaces/x", "/workspace/*")

    def test_wildcard(self):
        assert matches_pattern("api.github.com", "*.github.com")
        assert not matches_pattern("github.com.evil.io", "*.github.com")

    def test_wildcard_is_case_insensitive(self):
        assert matches_pattern("API.GitHub.com", "*.github.com")


class TestEvaluation:
    def test_default_deny(self):
        registry = PolicyRegistry(InMemoryPolicyStore())
        decision = registry.is_tool_allowed("anything")
        assert not decision.allowed
        assert decision.matched_rule is None
        assert decision.priority == DEFAULT_DENY_PRIORITY
        assert not decision.explicitly_denied

    def test_lower_priority_wins(self):
        registry = PolicyRegistry(InMemoryPolicyStore([
            _policy(PolicyType.TOOL, "fs.*", PolicyAction.ALLOW, priority=100),
            _policy(PolicyType.TOOL, "fs.delete", PolicyAction.DENY, priority=10),
        ]))
        assert registry.is_tool_allowed("fs.read").allowed
        decision = registry.is_tool_allowed("fs.delete")
        assert not decision.allowed
        assert decision.explicitly_denied
        assert decision.matched_rule == "fs.delete"
        assert decision.priority == 10

    def test_inactive_policy_ignored(self):
        registry = PolicyRegistry(InMemoryPolicyStore([
            _policy(PolicyType.TOOL, "fs.read", PolicyAction.ALLOW, is_active=False),
        ]))
        assert not registry.is_tool_allowed("fs.read").allowed

    def test_command_uses_base_word(self, policy_registry):
        assert policy_registry.is_command_allowed("git status --short").allowed
        decision = policy_registry.is_command_allowed("rm -rf /tmp/x")
        assert not decision.allowed
        assert decision.matched_rule == "rm"

    def test_category_mismatch_skipped(self):
        registry = PolicyRegistry(InMemoryPolicyStore([
            _policy(PolicyType.COMMAND, "ls", PolicyAction.ALLOW, category="network"),
        ]))
        assert not registry.is_command_allowed("ls").allowed

    def test_category_none_applies(self):
        registry = PolicyRegistry(InMemoryPolicyStore([
            _policy(PolicyType.COMMAND, "ls", PolicyAction.ALLOW, category=None),
        ]))
        assert registry.is_command_allowed("ls").allowed

    def test_domain_lowercased(self, policy_registry):
        assert policy_registry.is_domain_allowed("API.GITHUB.COM").allowed

    def test_domain_denies(self, policy_registry):
        assert not policy_registry.is_domain_allowed("localhost").allowed
        assert not policy_registry.is_domain_allowed("printer.local").allowed

    def test_path_tilde_patterns(self, policy_registry, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        decision = policy_registry.is_path_allowed("~/.ssh/id_rsa")
        assert not decision.allowed
        assert decision.matched_rule == "~/.ssh/*"

    def test_path_denied(self, policy_registry):
        decision = policy_registry.is_path_allowed("/etc/passwd")
        assert decision.explicitly_denied

    def test_path_allowed(self, policy_registry):
        assert policy_registry.is_path_allowed("/workspace/project/README.md").allowed

    def test_risk_weight(self, policy_registry):
        assert policy_registry.get_risk_weight(PolicyType.COMMAND, "rm -rf /") == 25
        assert policy_registry.get_risk_weight(PolicyType.COMMAND, "ls") == 0
        assert policy_registry.get_risk_weight(PolicyType.COMMAND, "unknown") == 0

    def test_check_dispatch(self, policy_registry):
        assert policy_registry.check(PolicyType.TOOL, "shell").allowed
        assert not policy_registry.check(PolicyType.TOOL, "admin.reset").allowed


class TestCache:
    def test_cached_until_ttl(self):
        now = [0.0]
        store = InMemoryPolicyStore()
        registry = PolicyRegistry(store, cache_ttl_seconds=60, clock=lambda: now[0])
        assert not registry.is_tool_allowed("fs.read").allowed

        # Written behind the registry's back: invisible until the TTL expires
        store.save_policy(_policy(PolicyType.TOOL, "fs.read", PolicyAction.ALLOW))
        assert not registry.is_tool_allowed("fs.read").allowed

        now[0] = 61.0
        assert registry.is_tool_allowed("fs.read").allowed

    def test_add_policy_clears_cache(self):
        registry = PolicyRegistry(InMemoryPolicyStore())
        assert not registry.is_tool_allowed("fs.read").allowed
        registry.add_policy(_policy(PolicyType.TOOL, "fs.read", PolicyAction.ALLOW))
        assert registry.is_tool_allowed("fs.read").allowed

    def test_remove_policy_clears_cache(self):
        policy = _policy(PolicyType.TOOL, "fs.read", PolicyAction.ALLOW)
        registry = PolicyRegistry(InMemoryPolicyStore([policy]))
        assert registry.is_tool_allowed("fs.read").allowed
        assert registry.remove_policy(policy.id)
        assert not registry.is_tool_allowed("fs.read").allowed
        assert not registry.remove_policy(policy.id)

    def test_replace_policies(self, policy_registry):
        policy_registry.replace_policies([_policy(PolicyType.TOOL, "only.this", PolicyAction.ALLOW)])
        assert policy_registry.is_tool_allowed("only.this").allowed
        assert not policy_registry.is_tool_allowed("shell").allowed
        assert len(policy_registry.get_all_policies()) == 1


class TestIntrospection:
    def test_policies_by_type_sorted(self, policy_registry):
        commands = policy_registry.get_policies_by_type(PolicyType.COMMAND)
        priorities = [p.priority for p in commands]
        assert priorities == sorted(priorities)
        assert all(p.policy_type == PolicyType.COMMAND for p in commands)

    def test_stats(self, policy_registry):
        policy_registry.is_tool_allowed("shell")
        stats = policy_registry.get_stats()
        assert stats["total"] == len(default_policies())
        assert stats["by_type"]["command"] > 0
        assert "tool" in stats["cached_types"]

    def test_export(self, policy_registry):
        data = json.loads(policy_registry.export())
        assert data["version"] == "1.0"
        assert {"tool", "command", "path", "domain"} <= set(data["policies"])
        assert "id" not in data["policies"]["tool"][0]

    def test_default_ids_are_stable(self):
        assert [p.id for p in default_policies()] == [p.id for p in default_policies()]
