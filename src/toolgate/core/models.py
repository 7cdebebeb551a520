"""
Toolgate Core Data Models

All shared types used across the package. This module is the foundation
that every other component imports from; it has no internal
dependencies beyond pydantic.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


# ─── Enums ───────────────────────────────────────────────────

class PolicyType(str, Enum):
    """Subject kind a security policy applies to."""
    TOOL = "tool"
    COMMAND = "command"
    PATH = "path"
    DOMAIN = "domain"


class PolicyAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class RiskLevel(str, Enum):
    """Risk bucket derived from a 0-100 score."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2, RiskLevel.CRITICAL: 3}


class RiskAction(str, Enum):
    """What the risk gate does with an operation."""
    AUTO_APPROVE = "auto_approve"
    REQUIRE_APPROVAL = "require_approval"
    REQUIRE_APPROVAL_WITH_JUSTIFICATION = "require_approval_with_justification"


class ApprovalStatus(str, Enum):
    """Lifecycle: PENDING -> APPROVED -> EXECUTED, or PENDING -> REJECTED | TIMEOUT."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    EXECUTED = "executed"


class OperationType(str, Enum):
    TOOL_CALL = "tool_call"
    COMMAND = "command"
    FILE_OPERATION = "file_operation"
    NETWORK = "network"


class ToolSource(str, Enum):
    """Where a tool definition came from."""
    BUILTIN = "builtin"
    MCP = "mcp"


class GateDecision(str, Enum):
    """Outcome of passing one operation through the risk gate."""
    EXECUTE = "execute"
    APPROVAL_REQUIRED = "approval_required"
    BLOCKED = "blocked"


class EventType(str, Enum):
    """Discriminator of pipeline stream events."""
    PIPELINE_START = "pipeline_start"
    CONTEXT_ASSEMBLED = "context_assembled"
    ROUTER_DECISION = "router_decision"
    TOOL_PLAN = "tool_plan"
    TOOL_RESULT = "tool_result"
    EXECUTION_COMPLETE = "execution_complete"
    SUMMARIZING = "summarizing"
    SUMMARY = "summary"
    COMPOSING = "composing"
    FINAL_MESSAGE = "final_message"
    ERROR = "error"
    DONE = "done"


# ─── Turn Context ────────────────────────────────────────────

class ConversationMessage(BaseModel):
    role: str
    content: str
    created_at: datetime = Field(default_factory=_now)


class AgentPrefs(BaseModel):
    """Session-scoped model/provider overrides."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_provider: str | None = None
    model_name: str | None = None


class ToolPreview(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    slug: str
    capabilities: list[str] = Field(default_factory=list)
    config_schema: dict[str, Any] = Field(default_factory=dict, alias="schema")


class ContextBundle(BaseModel):
    """Everything the decision stages know about one turn. Built once."""
    model_config = ConfigDict(frozen=True)

    user_message: str
    conversation_summary: str = ""
    agent_prefs: AgentPrefs = Field(default_factory=AgentPrefs)
    tool_registry_preview: list[ToolPreview] = Field(default_factory=list)
    session_id: str | None = None


# ─── Decisions & Plans ───────────────────────────────────────

class RouterDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    needs_tools: bool
    high_level_goal: str = ""
    rationale: str = ""


class PlanStep(BaseModel):
    tool_id: str = ""
    args: dict[str, Any] = Field(default_factory=dict)
    why: str = ""


class ToolPlan(BaseModel):
    """Ordered tool invocations. Mutated by post-processing passes only."""
    selected_tool_ids: list[str] = Field(default_factory=list)
    plan_steps: list[PlanStep] = Field(default_factory=list)
    inputs_needed: list[str] = Field(default_factory=list)

    def recompute_selected(self) -> None:
        """Rebuild selected_tool_ids from the remaining steps, keeping first-seen order."""
        seen: list[str] = []
        for step in self.plan_steps:
            if step.tool_id and step.tool_id not in seen:
                seen.append(step.tool_id)
        self.selected_tool_ids = seen


# ─── Execution ───────────────────────────────────────────────

class ToolResult(BaseModel):
    """Outcome of one plan step."""
    model_config = ConfigDict(frozen=True)

    tool_id: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    elapsed_ms: float = 0.0
    success: bool = False
    approval_request_id: str | None = None


class ExecutionTrace(BaseModel):
    """Append-only record of one runner invocation."""
    correlation_id: str = Field(default_factory=lambda: f"tr-{uuid.uuid4().hex[:12]}")
    steps: list[ToolResult] = Field(default_factory=list)
    total_elapsed_ms: float = 0.0

    def append(self, result: ToolResult) -> None:
        self.steps.append(result)
        self.total_elapsed_ms += result.elapsed_ms

    @property
    def succeeded(self) -> int:
        return sum(1 for s in self.steps if s.success)

    @property
    def failed(self) -> int:
        return len(self.steps) - self.succeeded


class OutcomeSummary(BaseModel):
    short_summary: str = ""
    key_facts: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class Completion(BaseModel):
    """Text returned by the completion service, with the provider/model that produced it."""
    text: str
    usage: dict[str, int] = Field(default_factory=dict)
    provider: str = ""
    model: str = ""


# ─── Security ────────────────────────────────────────────────

class SecurityPolicy(BaseModel):
    id: str = Field(default_factory=lambda: f"pol-{uuid.uuid4().hex[:8]}")
    policy_type: PolicyType
    category: str | None = None
    pattern: str
    action: PolicyAction
    priority: int = 100
    risk_weight: int = 0
    description: str = ""
    is_active: bool = True


class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str
    matched_rule: str | None = None
    priority: int = 999
    policy_id: str | None = None
    risk_weight: int = 0

    @property
    def explicitly_denied(self) -> bool:
        """True when a deny rule matched, as opposed to the default deny."""
        return not self.allowed and self.matched_rule is not None


class RiskAssessment(BaseModel):
    score: int = Field(..., ge=0, le=100)
    level: RiskLevel
    action: RiskAction
    factors: list[str] = Field(default_factory=list)
    requires_approval: bool = False


class BatchRiskAssessment(RiskAssessment):
    operation_count: int = 0


class Operation(BaseModel):
    """Snapshot of a prospective operation, as submitted to the risk gate."""
    type: OperationType
    summary: str = ""
    tool_id: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    command: str | None = None
    working_dir: str | None = None
    path: str | None = None
    operation: str | None = None
    file_count: int = 1
    url: str | None = None
    domain: str | None = None
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    has_body: bool = False
    full_content: str | None = None
    fragment_type: str = "text"
    title: str | None = None
    tags: list[str] = Field(default_factory=list)


class PredictedChange(BaseModel):
    type: str
    description: str
    target: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SimulationResult(BaseModel):
    """Predicted effect of an operation that was not executed."""
    kind: OperationType
    tool_id: str | None = None
    command: str | None = None
    path: str | None = None
    operation: str | None = None
    url: str | None = None
    domain: str | None = None
    method: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    would_execute: bool = False
    policy_check: PolicyDecision
    risk_assessment: RiskAssessment | None = None
    predicted_changes: list[PredictedChange] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    simulated_at: datetime = Field(default_factory=_now)

    @property
    def blocked(self) -> bool:
        return not self.policy_check.allowed


class ContentMetrics(BaseModel):
    words: int = 0
    characters: int = 0
    lines: int = 0
    read_time_minutes: int = 1


class ApprovalRequest(BaseModel):
    id: str = Field(default_factory=lambda: f"apr-{uuid.uuid4().hex[:12]}")
    conversation_id: str
    message_id: str | None = None
    operation_type: OperationType
    operation_summary: str = ""
    operation: Operation
    dry_run_result: SimulationResult | None = None
    risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    risk_factors: list[str] = Field(default_factory=list)
    status: ApprovalStatus = ApprovalStatus.PENDING
    fragment_id: str | None = None
    use_modal: bool = False
    content_metrics: ContentMetrics | None = None
    created_at: datetime = Field(default_factory=_now)
    timeout_at: datetime
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_method: str | None = None
    resolution_message: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return self.is_pending and now >= self.timeout_at


class GateOutcome(BaseModel):
    decision: GateDecision
    reason: str = ""
    request: ApprovalRequest | None = None
    simulation: SimulationResult | None = None


# ─── Stream ──────────────────────────────────────────────────

class PipelineEvent(BaseModel):
    """One event of the turn stream. Payload fields sit beside ``type``."""
    model_config = ConfigDict(extra="allow")

    type: EventType

    @property
    def payload(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class TurnResult(BaseModel):
    """Non-streaming result of one turn."""
    pipeline_id: str
    message: str | None = None
    used_tools: bool = False
    provider: str | None = None
    model: str | None = None
    correlation_id: str | None = None
    error: str | None = None
    events: list[PipelineEvent] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None
