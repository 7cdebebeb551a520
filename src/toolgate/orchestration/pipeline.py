"""
Toolgate Tool-Aware Pipeline

Runs one user turn end to end:

    start -> context_assembled -> routed
      routed -> direct_compose -> done                      (no tools needed)
      routed -> planned -> direct_compose -> done           (empty plan)
      routed -> planned -> executing -> summarizing -> composing -> done
    any state -> error -> done

The turn runs as a producer task. Every state transition is checked
against TRANSITIONS and pushes its event onto an ``asyncio.Queue`` of
size 1, so the producer waits at each event until the consumer (a CLI
printer, an HTTP response) has taken it.

Every turn ends in exactly one terminal pair: ``final_message`` then
``done``, or ``error`` then ``done``. Errors are reported with a
generic message; details only go to the log.

Usage:
    pipeline = ToolAwarePipeline.build(service, registry, config=config)
    async for event in pipeline.execute_streaming("sess-1", "List /workspace"):
        print(event.to_dict())

    result = await pipeline.execute("sess-1", "What is a risk gate?")
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from toolgate.audit.trace_logger import AuditLog
from toolgate.config import ToolgateConfig
from toolgate.core.models import (
    ContextBundle,
    EventType,
    ExecutionTrace,
    OutcomeSummary,
    PipelineEvent,
    RouterDecision,
    ToolPlan,
    TurnResult,
)
from toolgate.exceptions import PipelineError
from toolgate.logging import get_logger
from toolgate.orchestration.composer import FinalComposer
from toolgate.orchestration.context import ContextBroker, ConversationStore
from toolgate.orchestration.router import Router
from toolgate.orchestration.runner import ToolRunner
from toolgate.orchestration.selector import ToolSelector
from toolgate.orchestration.summarizer import OutcomeSummarizer
from toolgate.providers.base import TextCompletionService
from toolgate.providers.resolution import ProviderResolver
from toolgate.security import create_approval_manager
from toolgate.security.approval import ApprovalManager
from toolgate.security.redaction import Redactor
from toolgate.tools.registry import ToolRegistry

logger = get_logger("toolgate.orchestration.pipeline")

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request."
AUDIT_EVENT_TYPE = "tool_aware_turn"


class PipelineState(str, Enum):
    START = "start"
    CONTEXT_ASSEMBLED = "context_assembled"
    ROUTED = "routed"
    PLANNED = "planned"
    DIRECT_COMPOSE = "direct_compose"
    EXECUTING = "executing"
    SUMMARIZING = "summarizing"
    COMPOSING = "composing"
    ERROR = "error"
    DONE = "done"


TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.START: frozenset({PipelineState.CONTEXT_ASSEMBLED}),
    PipelineState.CONTEXT_ASSEMBLED: frozenset({PipelineState.ROUTED}),
    PipelineState.ROUTED: frozenset({PipelineState.DIRECT_COMPOSE, PipelineState.PLANNED}),
    PipelineState.PLANNED: frozenset({PipelineState.DIRECT_COMPOSE, PipelineState.EXECUTING}),
    PipelineState.DIRECT_COMPOSE: frozenset({PipelineState.DONE}),
    PipelineState.EXECUTING: frozenset({PipelineState.SUMMARIZING}),
    PipelineState.SUMMARIZING: frozenset({PipelineState.COMPOSING}),
    PipelineState.COMPOSING: frozenset({PipelineState.DONE}),
    PipelineState.ERROR: frozenset({PipelineState.DONE}),
    PipelineState.DONE: frozenset(),
}


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    if target == PipelineState.ERROR:
        return current not in (PipelineState.ERROR, PipelineState.DONE)
    return target in TRANSITIONS[current]


class TurnRun:
    """State and event channel of one turn."""

    def __init__(self, pipeline_id: str, channel: asyncio.Queue[PipelineEvent]) -> None:
        self.pipeline_id = pipeline_id
        self.state = PipelineState.START
        self.final_sent = False
        self._channel = channel
        self.started = time.monotonic()

    def transition(self, target: PipelineState) -> None:
        if not can_transition(self.state, target):
            raise PipelineError(
                self.pipeline_id, f"Invalid transition {self.state.value} -> {target.value}"
            )
        logger.debug(
            "Pipeline transition",
            extra={"pipeline_id": self.pipeline_id, "from_state": self.state.value,
                   "to_state": target.value},
        )
        self.state = target

    async def emit(self, event_type: EventType, **payload: Any) -> None:
        await self.relay(PipelineEvent(type=event_type, **payload))

    async def relay(self, event: PipelineEvent) -> None:
        if event.type == EventType.FINAL_MESSAGE:
            self.final_sent = True
        await self._channel.put(event)

    @property
    def elapsed_ms(self) -> float:
        return round((time.monotonic() - self.started) * 1000, 2)


class ToolAwarePipeline:
    def __init__(
        self,
        context_broker: ContextBroker,
        router: Router,
        selector: ToolSelector,
        runner: ToolRunner,
        summarizer: OutcomeSummarizer,
        composer: FinalComposer,
        config: ToolgateConfig | None = None,
        audit_log: AuditLog | None = None,
        redactor: Redactor | None = None,
    ) -> None:
        self._broker = context_broker
        self._router = router
        self._selector = selector
        self._runner = runner
        self._summarizer = summarizer
        self._composer = composer
        self._config = config or ToolgateConfig()
        self._redactor = redactor or Redactor()
        self._audit = audit_log if audit_log is not None else AuditLog(
            redactor=self._redactor, redact=self._config.features.redact_logs
        )

    @classmethod
    def build(
        cls,
        service: TextCompletionService,
        registry: ToolRegistry,
        *,
        config: ToolgateConfig | None = None,
        conversations: ConversationStore | None = None,
        approvals: ApprovalManager | None = None,
        audit_log: AuditLog | None = None,
        resolver: ProviderResolver | None = None,
    ) -> ToolAwarePipeline:
        """Wire every stage from one config, completion service and tool registry.

        Without ``approvals`` the runner gates on the default policy set.
        When ``service`` lists its providers (``available_providers``), the
        resolver is validated against them and ConfigError is raised here.
        """
        config = config or ToolgateConfig()
        resolver = resolver or ProviderResolver(config.models.default_provider)
        available = getattr(service, "available_providers", None)
        if available is not None:
            models = config.models
            resolver.validate(available, [models.router, models.selector, models.summarizer, models.composer])
        approvals = approvals if approvals is not None else create_approval_manager(config)
        redactor = Redactor()
        return cls(
            ContextBroker(registry, conversations, config.context),
            Router(service, config, resolver),
            ToolSelector(service, registry, config, resolver),
            ToolRunner(registry, config, approvals),
            OutcomeSummarizer(service, config, resolver, redactor),
            FinalComposer(service, config, resolver),
            config=config,
            audit_log=audit_log,
            redactor=redactor,
        )

    @property
    def audit_log(self) -> AuditLog:
        return self._audit

    @property
    def runner(self) -> ToolRunner:
        return self._runner

    # ─── Entry points ────────────────────────────────────────

    async def execute_streaming(
        self,
        session_id: str | None,
        user_message: str,
        *,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> AsyncIterator[PipelineEvent]:
        """Yield the events of one turn, ending with ``done``."""
        channel: asyncio.Queue[PipelineEvent] = asyncio.Queue(maxsize=1)
        run = TurnRun(str(uuid.uuid4()), channel)
        producer = asyncio.create_task(
            self._produce(run, session_id, user_message, conversation_id, message_id)
        )
        try:
            while True:
                event = await channel.get()
                yield event
                if event.type == EventType.DONE:
                    break
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

    async def execute(
        self,
        session_id: str | None,
        user_message: str,
        *,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> TurnResult:
        """Run a turn and collect its events into a TurnResult."""
        events: list[PipelineEvent] = []
        pipeline_id = ""
        message = provider = model = correlation_id = error = None
        used_tools = False

        async for event in self.execute_streaming(
            session_id, user_message, conversation_id=conversation_id, message_id=message_id
        ):
            events.append(event)
            payload = event.payload
            if event.type == EventType.PIPELINE_START:
                pipeline_id = payload["pipeline_id"]
            elif event.type == EventType.FINAL_MESSAGE:
                message = payload.get("message")
                used_tools = bool(payload.get("used_tools"))
                provider = payload.get("provider")
                model = payload.get("model")
                correlation_id = payload.get("correlation_id")
            elif event.type == EventType.ERROR:
                error = payload.get("error")

        return TurnResult(
            pipeline_id=pipeline_id,
            message=message,
            used_tools=used_tools,
            provider=provider,
            model=model,
            correlation_id=correlation_id,
            error=error,
            events=events,
        )

    # ─── Producer ────────────────────────────────────────────

    async def _produce(
        self,
        run: TurnRun,
        session_id: str | None,
        user_message: str,
        conversation_id: str | None,
        message_id: str | None,
    ) -> None:
        logger.info(
            "Tool-aware pipeline started",
            extra={"pipeline_id": run.pipeline_id, "session_id": session_id,
                   "user_message_length": len(user_message)},
        )
        try:
            await self._run_turn(run, session_id, user_message, conversation_id, message_id)
        except Exception as e:
            logger.error(
                "Pipeline failed: %s", e,
                extra={"pipeline_id": run.pipeline_id, "state": run.state.value,
                       "total_time_ms": run.elapsed_ms},
                exc_info=True,
            )
            if not run.final_sent:
                run.state = PipelineState.ERROR
                await run.emit(
                    EventType.ERROR,
                    pipeline_id=run.pipeline_id,
                    error=GENERIC_ERROR_MESSAGE,
                    error_kind=type(e).__name__,
                )
            run.state = PipelineState.DONE
            await run.emit(EventType.DONE, pipeline_id=run.pipeline_id)

    async def _run_turn(
        self,
        run: TurnRun,
        session_id: str | None,
        user_message: str,
        conversation_id: str | None,
        message_id: str | None,
    ) -> None:
        await run.emit(EventType.PIPELINE_START, pipeline_id=run.pipeline_id, session_id=session_id)

        context = self._broker.assemble(session_id, user_message)
        run.transition(PipelineState.CONTEXT_ASSEMBLED)
        await run.emit(
            EventType.CONTEXT_ASSEMBLED,
            summary_length=len(context.conversation_summary),
            tool_count=len(context.tool_registry_preview),
        )

        decision = await self._router.decide(context)
        run.transition(PipelineState.ROUTED)
        await run.emit(
            EventType.ROUTER_DECISION,
            needs_tools=decision.needs_tools,
            goal=decision.high_level_goal,
            rationale=decision.rationale,
        )
        logger.info(
            "Router decision",
            extra={"pipeline_id": run.pipeline_id, "needs_tools": decision.needs_tools,
                   "goal": decision.high_level_goal},
        )

        if not decision.needs_tools:
            await self._compose_direct(run, context, decision, None)
            return

        plan = await self._selector.select_tools(decision.high_level_goal, context)
        run.transition(PipelineState.PLANNED)
        await run.emit(
            EventType.TOOL_PLAN,
            selected_tools=plan.selected_tool_ids,
            step_count=len(plan.plan_steps),
            inputs_needed=plan.inputs_needed,
        )

        if not plan.plan_steps:
            logger.warning(
                "Tool plan has no steps",
                extra={"pipeline_id": run.pipeline_id, "inputs_needed": plan.inputs_needed},
            )
            await self._compose_direct(run, context, decision, plan)
            return

        run.transition(PipelineState.EXECUTING)
        trace: ExecutionTrace | None = None
        async for event in self._runner.execute_streaming(
            plan, session_id, conversation_id or session_id, message_id
        ):
            if event.type == EventType.EXECUTION_COMPLETE:
                trace = event.payload["trace"]
            await run.relay(event)
        if trace is None:
            raise PipelineError(run.pipeline_id, "Tool runner finished without a trace")

        run.transition(PipelineState.SUMMARIZING)
        await run.emit(EventType.SUMMARIZING)
        summary = await self._summarizer.summarize(trace)
        await run.emit(EventType.SUMMARY, summary=summary)

        run.transition(PipelineState.COMPOSING)
        await run.emit(EventType.COMPOSING)
        message = await self._composer.compose(context, summary, trace.correlation_id)
        provider, model = self._composer.resolve_model(context)

        await run.emit(
            EventType.FINAL_MESSAGE,
            message=message,
            used_tools=True,
            provider=provider,
            model=model,
            correlation_id=trace.correlation_id,
            total_time_ms=run.elapsed_ms,
        )
        logger.info(
            "Pipeline completed (with tools)",
            extra={"pipeline_id": run.pipeline_id, "correlation_id": trace.correlation_id,
                   "total_time_ms": run.elapsed_ms, "tool_time_ms": round(trace.total_elapsed_ms, 2)},
        )
        self._write_audit(run, context, decision, plan, trace, summary)

        run.transition(PipelineState.DONE)
        await run.emit(EventType.DONE, pipeline_id=run.pipeline_id)

    async def _compose_direct(
        self,
        run: TurnRun,
        context: ContextBundle,
        decision: RouterDecision,
        plan: ToolPlan | None,
    ) -> None:
        run.transition(PipelineState.DIRECT_COMPOSE)
        message = await self._composer.compose(context, None, None)
        provider, model = self._composer.resolve_model(context)
        await run.emit(
            EventType.FINAL_MESSAGE,
            message=message,
            used_tools=False,
            provider=provider,
            model=model,
            total_time_ms=run.elapsed_ms,
        )
        logger.info(
            "Pipeline completed (no tools)",
            extra={"pipeline_id": run.pipeline_id, "total_time_ms": run.elapsed_ms},
        )
        self._write_audit(run, context, decision, plan, None, None)

        run.transition(PipelineState.DONE)
        await run.emit(EventType.DONE, pipeline_id=run.pipeline_id)

    # ─── Audit ───────────────────────────────────────────────

    def _write_audit(
        self,
        run: TurnRun,
        context: ContextBundle,
        decision: RouterDecision,
        plan: ToolPlan | None,
        trace: ExecutionTrace | None,
        summary: OutcomeSummary | None,
    ) -> None:
        if not self._config.features.audit_enabled:
            return

        correlation_id = trace.correlation_id if trace else None
        try:
            self._append_audit(run, context, decision, plan, trace, summary, correlation_id)
        except Exception:
            logger.exception("Audit write failed", extra={"pipeline_id": run.pipeline_id})

    def _append_audit(
        self,
        run: TurnRun,
        context: ContextBundle,
        decision: RouterDecision,
        plan: ToolPlan | None,
        trace: ExecutionTrace | None,
        summary: OutcomeSummary | None,
        correlation_id: str | None,
    ) -> None:
        record = {
            "pipeline_id": run.pipeline_id,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "context": {
                "user_message": context.user_message,
                "conversation_summary_length": len(context.conversation_summary),
                "tool_preview_count": len(context.tool_registry_preview),
            },
            "decision": decision.model_dump(),
            "plan": plan.model_dump() if plan else None,
            "trace": trace.model_dump(mode="json") if trace else None,
            "summary": summary.model_dump() if summary else None,
        }
        if self._config.features.redact_logs:
            record = self._redactor.redact_json(record)

        self._audit.append(
            AUDIT_EVENT_TYPE,
            record,
            pipeline_id=run.pipeline_id,
            correlation_id=correlation_id,
            conversation_id=context.session_id,
        )
