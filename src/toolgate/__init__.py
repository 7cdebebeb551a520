"""
Toolgate: Tool-Aware Orchestration with Risk-Gated Execution

Usage:
    from toolgate import Toolgate

    gate = Toolgate()
    result = await gate.run_turn("sess-1", "List the files in /workspace/project")
    print(result.message)

    # Persist approvals, policies and the audit chain:
    gate = Toolgate(db_url="toolgate.db")

    # Stream events of a turn:
    async for event in gate.stream_turn("sess-1", "Fetch https://api.github.com/zen"):
        print(event.to_dict())
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from toolgate.audit.trace_logger import AuditLog
from toolgate.config import ToolgateConfig
from toolgate.core.models import (
    ApprovalRequest,
    ContextBundle,
    EventType,
    ExecutionTrace,
    OutcomeSummary,
    PipelineEvent,
    RiskAssessment,
    RouterDecision,
    SimulationResult,
    ToolPlan,
    ToolResult,
    TurnResult,
)
from toolgate.exceptions import ToolgateError
from toolgate.logging import get_logger
from toolgate.orchestration import ToolAwarePipeline
from toolgate.providers import create_provider_manager
from toolgate.providers.base import TextCompletionService
from toolgate.security import ApprovalManager, PolicyRegistry, create_approval_manager, default_policies
from toolgate.storage.db import connect
from toolgate.storage.memory import InMemoryConversationStore
from toolgate.storage.repository import ApprovalRepository, AuditRepository, PolicyRepository
from toolgate.tools.builtin import register_all_builtins
from toolgate.tools.registry import ToolRegistry

__version__ = "0.4.0"

__all__ = [
    # Main API
    "Toolgate",
    "__version__",
    # Config
    "ToolgateConfig",
    # Models
    "ApprovalRequest",
    "ContextBundle",
    "EventType",
    "ExecutionTrace",
    "OutcomeSummary",
    "PipelineEvent",
    "RiskAssessment",
    "RouterDecision",
    "SimulationResult",
    "ToolPlan",
    "ToolResult",
    "TurnResult",
    # Components
    "ApprovalManager",
    "AuditLog",
    "PolicyRegistry",
    "ToolAwarePipeline",
    "ToolRegistry",
    "ToolgateError",
]

logger = get_logger("toolgate")


class Toolgate:
    """Main Toolgate entry point: one object wiring every component.

    Components:
    1. ToolRegistry with the builtin tools
    2. PolicyRegistry -> RiskScorer -> DryRunSimulator -> ApprovalManager
    3. AuditLog (hash-chained, redacted)
    4. ToolAwarePipeline over the text completion service
    """

    def __init__(
        self,
        config: ToolgateConfig | None = None,
        *,
        service: TextCompletionService | None = None,
        db_url: str | None = None,
        registry: ToolRegistry | None = None,
        conversations: InMemoryConversationStore | None = None,
        builtin_tools: bool = True,
    ):
        """Initialize Toolgate.

        Args:
            config: Configuration. Defaults to ``ToolgateConfig.from_env()``.
            service: Text completion service. Defaults to a ProviderManager
                     over every provider whose SDK and API key are available.
            db_url: SQLite path or PostgreSQL URL. None keeps everything in memory.
            registry: Tool registry. Defaults to an empty one.
            conversations: Conversation store. Defaults to an in-memory store
                           that records every turn.
            builtin_tools: If True, registers fs.*, http.fetch and shell.

        Raises:
            ConfigError: if a configured model resolves to a provider the
                         completion service does not have.
        """
        self.config = config or ToolgateConfig.from_env()

        approval_store = policy_store = audit_repository = None
        self._conn = None
        if db_url:
            conn = self._conn = connect(db_url)
            approval_store = ApprovalRepository(conn=conn)
            policy_store = PolicyRepository(conn=conn)
            seeded = policy_store.seed(default_policies())
            if seeded:
                logger.info("Seeded default security policies", extra={"count": seeded})
            audit_repository = AuditRepository(conn=conn)

        self.audit_log = AuditLog(audit_repository, redact=self.config.features.redact_logs)
        self.approvals = create_approval_manager(
            self.config,
            policy_store=policy_store,
            store=approval_store,
            content_store=approval_store,
            audit_log=self.audit_log if self.config.features.audit_enabled else None,
        )

        self.registry = registry if registry is not None else ToolRegistry()
        if builtin_tools:
            register_all_builtins(self.registry)

        self.service = service or create_provider_manager(self.config.models.default_provider)
        self.conversations = conversations if conversations is not None else InMemoryConversationStore()
        self.pipeline = ToolAwarePipeline.build(
            self.service,
            self.registry,
            config=self.config,
            conversations=self.conversations,
            approvals=self.approvals,
            audit_log=self.audit_log,
        )

    @property
    def policies(self) -> PolicyRegistry:
        return self.approvals.simulator.policy_registry

    async def stream_turn(
        self,
        session_id: str,
        user_message: str,
        *,
        message_id: str | None = None,
    ) -> AsyncIterator[PipelineEvent]:
        """Stream one turn and record it in the conversation store."""
        reply = None
        async for event in self.pipeline.execute_streaming(
            session_id, user_message, conversation_id=session_id, message_id=message_id
        ):
            if event.type == EventType.FINAL_MESSAGE:
                reply = event.payload.get("message")
            yield event

        self.conversations.add_message(session_id, "user", user_message)
        if reply:
            self.conversations.add_message(session_id, "assistant", reply)

    async def run_turn(
        self,
        session_id: str,
        user_message: str,
        *,
        message_id: str | None = None,
    ) -> TurnResult:
        """Non-streaming turn."""
        result = await self.pipeline.execute(
            session_id, user_message, conversation_id=session_id, message_id=message_id
        )
        self.conversations.add_message(session_id, "user", user_message)
        if result.message:
            self.conversations.add_message(session_id, "assistant", result.message)
        return result

    async def run_approved(self, request_id: str) -> ToolResult:
        """Execute the tool call of an approved request."""
        return await self.pipeline.runner.run_approved(request_id)

    def close(self) -> None:
        """Close the database connection, if any."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
