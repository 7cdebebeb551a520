"""Shared test fixtures for the Toolgate test suite."""

import json
import os

import pytest

from toolgate.config import ToolgateConfig
from toolgate.core.models import (
    Completion,
    PolicyAction,
    PolicyType,
    SecurityPolicy,
)
from toolgate.exceptions import ProviderError
from toolgate.security.approval import ApprovalManager
from toolgate.security.dry_run import DryRunSimulator
from toolgate.security.policy import InMemoryPolicyStore, PolicyRegistry, default_policies
from toolgate.security.risk import RiskScorer
from toolgate.tools.registry import FunctionTool, ToolRegistry


class FakeCompletionService:
    """Scripted TextCompletionService.

    Responses are queued per request_type. A dict is sent back as JSON,
    a string as-is, an exception is raised.
    """

    def __init__(self, **scripts):
        self.calls: list[dict] = []
        self._scripts: dict[str, list] = {k: list(v) for k, v in scripts.items()}

    def script(self, request_type: str, *responses) -> "FakeCompletionService":
        self._scripts.setdefault(request_type, []).extend(responses)
        return self

    def calls_for(self, request_type: str) -> list[dict]:
        return [c for c in self.calls if c["request_type"] == request_type]

    async def generate_text(
        self,
        prompt,
        *,
        request_type,
        provider=None,
        model=None,
        temperature=None,
        max_tokens=1024,
        system=None,
    ):
        self.calls.append({
            "prompt": prompt,
            "request_type": request_type,
            "provider": provider,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "system": system,
        })
        queue = self._scripts.get(request_type)
        if not queue:
            raise ProviderError("fake", f"no scripted response for {request_type}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return Completion(text=text, provider=provider or "fake", model=model or "fake-model")


def public_ip(host: str) -> str:
    return "140.82.112.3"


def make_tool(slug, handler=None, **kwargs) -> FunctionTool:
    kwargs.setdefault("description", f"Test tool: {slug}")
    return FunctionTool(
        slug,
        handler or (lambda args, ctx: {"success": True, "result": {"echo": args}, "error": None}),
        **kwargs,
    )


def build_approvals(policies=None, **kwargs) -> ApprovalManager:
    """ApprovalManager over an in-memory policy set, with DNS stubbed out."""
    store = InMemoryPolicyStore(default_policies() if policies is None else policies)
    registry = PolicyRegistry(store)
    scorer = RiskScorer(registry, resolver=public_ip)
    return ApprovalManager(scorer, DryRunSimulator(registry, scorer), **kwargs)


def allow_path(path, priority=10) -> SecurityPolicy:
    return SecurityPolicy(
        policy_type=PolicyType.PATH,
        category="filesystem",
        pattern=os.path.realpath(str(path)) + "/*",
        action=PolicyAction.ALLOW,
        priority=priority,
    )


@pytest.fixture
def service():
    return FakeCompletionService()


@pytest.fixture
def config():
    return ToolgateConfig()


@pytest.fixture
def policy_registry():
    return PolicyRegistry(InMemoryPolicyStore(default_policies()))


@pytest.fixture
def scorer(policy_registry):
    return RiskScorer(policy_registry, resolver=public_ip)


@pytest.fixture
def simulator(policy_registry, scorer):
    return DryRunSimulator(policy_registry, scorer)


@pytest.fixture
def approvals():
    return build_approvals()


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(make_tool("test.echo"))
    reg.register(make_tool("test.fail", lambda args, ctx: {"success": False, "result": None, "error": "boom"}))
    return reg


def allow_tool(pattern, priority=10) -> SecurityPolicy:
    return SecurityPolicy(
        policy_type=PolicyType.TOOL,
        pattern=pattern,
        action=PolicyAction.ALLOW,
        priority=priority,
    )


@pytest.fixture
def tool_approvals():
    """Default policies plus an allow rule for the ``test.*`` tools."""
    return build_approvals(default_policies() + [allow_tool("test.*")])
