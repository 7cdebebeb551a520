"""
Toolgate Tool Runner

Executes a ToolPlan's steps one at a time, in plan order, into an
ExecutionTrace.

- At most ``limits.max_steps_per_turn`` steps run; the rest are skipped
  with a warning.
- Steps without a tool_id are skipped with an error log.
- Missing or disabled tools fail closed.
- Exceptions raised by a tool, or while gating it, become failed
  ToolResults; the plan goes on.

Every step passes the risk gate of the ApprovalManager before it runs
(a runner built without one gates on the default policy set). A
blocked step becomes a failed result. A step that needs approval is not
executed: its result carries the approval request id and the plan stops
there, so a turn leaves at most one pending request behind.
``run_approved`` executes that step, once, after a human approved it.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from typing import Any

from toolgate.config import ToolgateConfig
from toolgate.core.models import (
    ApprovalStatus,
    EventType,
    ExecutionTrace,
    GateDecision,
    PipelineEvent,
    ToolPlan,
    ToolResult,
)
from toolgate.exceptions import InvalidApprovalStateError, ToolExecutionError
from toolgate.logging import get_logger
from toolgate.security import create_approval_manager
from toolgate.security.approval import ApprovalManager
from toolgate.tools.registry import FunctionTool, ToolRegistry

logger = get_logger("toolgate.orchestration.runner")


class ToolRunner:
    def __init__(
        self,
        registry: ToolRegistry,
        config: ToolgateConfig | None = None,
        approvals: ApprovalManager | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry
        self._config = config or ToolgateConfig()
        self._approvals = approvals if approvals is not None else create_approval_manager(self._config)
        self._clock = clock

    @property
    def approvals(self) -> ApprovalManager:
        return self._approvals

    async def execute(
        self,
        plan: ToolPlan,
        session_id: str | None = None,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> ExecutionTrace:
        trace = ExecutionTrace()
        async for _ in self._run_steps(plan, trace, session_id, conversation_id, message_id):
            pass
        return trace

    async def execute_streaming(
        self,
        plan: ToolPlan,
        session_id: str | None = None,
        conversation_id: str | None = None,
        message_id: str | None = None,
    ) -> AsyncIterator[PipelineEvent]:
        """Yield one ``tool_result`` event per step, then ``execution_complete``."""
        trace = ExecutionTrace()
        async for index, result in self._run_steps(plan, trace, session_id, conversation_id, message_id):
            yield PipelineEvent(
                type=EventType.TOOL_RESULT,
                correlation_id=trace.correlation_id,
                step_index=index,
                tool_id=result.tool_id,
                result=result,
            )
        yield PipelineEvent(
            type=EventType.EXECUTION_COMPLETE,
            correlation_id=trace.correlation_id,
            trace=trace,
        )

    async def run_approved(
        self,
        request_id: str,
        session_id: str | None = None,
        message_id: str | None = None,
    ) -> ToolResult:
        """Execute the tool call of an approved request, without gating it again.

        The request moves to ``executed`` before the tool runs, so it runs
        at most once. A missing or disabled tool raises ToolExecutionError
        and leaves the request approved.
        """
        request = self._approvals.get_request(request_id)
        if request.status != ApprovalStatus.APPROVED:
            raise InvalidApprovalStateError(request_id, request.status.value, "execute")

        tool_id = request.operation.tool_id or ""
        tool = self._registry.get(tool_id)
        if tool is None:
            raise ToolExecutionError(tool_id, "Tool not found")
        if not tool.is_enabled():
            raise ToolExecutionError(tool_id, "Tool is disabled")

        self._approvals.mark_executed(request_id)
        context = self._tool_context(
            f"apr:{request_id}", session_id, request.conversation_id, message_id or request.message_id
        )
        result = await self._invoke(tool, dict(request.operation.parameters), context)
        return result.model_copy(update={"approval_request_id": request_id})

    # ─── Internals ───────────────────────────────────────────

    async def _run_steps(
        self,
        plan: ToolPlan,
        trace: ExecutionTrace,
        session_id: str | None,
        conversation_id: str | None,
        message_id: str | None,
    ) -> AsyncIterator[tuple[int, ToolResult]]:
        max_steps = self._config.limits.max_steps_per_turn
        logger.info(
            "Starting tool execution",
            extra={"correlation_id": trace.correlation_id, "plan_steps": len(plan.plan_steps),
                   "session_id": session_id},
        )

        executed = 0
        for step in plan.plan_steps:
            if executed >= max_steps:
                logger.warning(
                    "Max step limit reached",
                    extra={"correlation_id": trace.correlation_id, "limit": max_steps},
                )
                break
            if not step.tool_id:
                logger.error(
                    "Tool step missing tool_id",
                    extra={"correlation_id": trace.correlation_id, "step": step.model_dump()},
                )
                continue

            context = self._tool_context(trace.correlation_id, session_id, conversation_id, message_id)
            result = await self._execute_step(step.tool_id, step.args, context)
            trace.append(result)
            yield executed, result
            executed += 1

            if result.approval_request_id is not None:
                logger.info(
                    "Plan halted pending approval",
                    extra={"correlation_id": trace.correlation_id,
                           "approval_id": result.approval_request_id,
                           "remaining_steps": len(plan.plan_steps) - executed},
                )
                break

        logger.info(
            "Tool execution completed",
            extra={"correlation_id": trace.correlation_id, "steps_executed": executed,
                   "total_time_ms": round(trace.total_elapsed_ms, 2), "has_errors": trace.failed > 0},
        )

    async def _execute_step(self, tool_id: str, args: dict[str, Any], context: dict[str, Any]) -> ToolResult:
        start = self._clock()
        tool = self._registry.get(tool_id) if self._registry.exists(tool_id) else None
        if tool is None:
            return self._failed(tool_id, args, f"Tool not found: {tool_id}", start, context)
        if not tool.is_enabled():
            return self._failed(tool_id, args, f"Tool is disabled: {tool_id}", start, context)

        try:
            outcome = self._approvals.gate(
                tool.to_operation(args),
                context.get("conversation_id") or context.get("session_id") or context["correlation_id"],
                context.get("message_id"),
            )
        except Exception as e:
            return self._failed(tool_id, args, f"Risk gate failed: {e}", start, context)

        if outcome.decision == GateDecision.BLOCKED:
            return self._failed(tool_id, args, f"Blocked by policy: {outcome.reason}", start, context)
        if outcome.decision == GateDecision.APPROVAL_REQUIRED:
            request = outcome.request
            logger.info(
                "Step requires approval",
                extra={"correlation_id": context["correlation_id"], "tool_id": tool_id,
                       "approval_id": request.id, "risk_score": request.risk_score},
            )
            return ToolResult(
                tool_id=tool_id,
                args=args,
                result=self._approvals.format_for_chat(request),
                error=f"Approval required: {outcome.reason}",
                elapsed_ms=(self._clock() - start) * 1000,
                success=False,
                approval_request_id=request.id,
            )

        return await self._invoke(tool, args, context, start)

    async def _invoke(
        self,
        tool: FunctionTool,
        args: dict[str, Any],
        context: dict[str, Any],
        start: float | None = None,
    ) -> ToolResult:
        start = self._clock() if start is None else start
        logger.info(
            "Executing tool",
            extra={"correlation_id": context["correlation_id"], "tool_id": tool.slug,
                   "session_id": context.get("session_id")},
        )
        try:
            response = await tool.call(args, context)
        except Exception as e:
            return self._failed(tool.slug, args, str(e), start, context)

        elapsed_ms = (self._clock() - start) * 1000
        if isinstance(response, dict):
            success = bool(response.get("success", False))
            result = response.get("result")
            if result is None:
                result = response
            error = response.get("error")
        else:
            success, result, error = True, response, None

        logger.info(
            "Tool execution result",
            extra={"correlation_id": context["correlation_id"], "tool_id": tool.slug,
                   "success": success, "elapsed_ms": round(elapsed_ms, 2)},
        )
        return ToolResult(
            tool_id=tool.slug,
            args=args,
            result=result,
            error=None if error is None else str(error),
            elapsed_ms=elapsed_ms,
            success=success,
        )

    def _failed(
        self,
        tool_id: str,
        args: dict[str, Any],
        error: str,
        start: float,
        context: dict[str, Any],
    ) -> ToolResult:
        elapsed_ms = (self._clock() - start) * 1000
        logger.error(
            "Tool execution failed",
            extra={"correlation_id": context["correlation_id"], "tool_id": tool_id,
                   "error": error, "elapsed_ms": round(elapsed_ms, 2)},
        )
        return ToolResult(
            tool_id=tool_id, args=args, result=None, error=error, elapsed_ms=elapsed_ms, success=False
        )

    @staticmethod
    def _tool_context(
        correlation_id: str,
        session_id: str | None,
        conversation_id: str | None,
        message_id: str | None,
    ) -> dict[str, Any]:
        context: dict[str, Any] = {"correlation_id": correlation_id}
        if session_id is not None:
            context["session_id"] = session_id
        if conversation_id is not None:
            context["conversation_id"] = conversation_id
        if message_id is not None:
            context["message_id"] = message_id
        return context
