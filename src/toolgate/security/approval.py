"""
Toolgate Approval Manager

Turns risky operations into approval requests and tracks their
lifecycle:

    pending -> approved -> executed
    pending -> rejected | timeout

At most one request per conversation is pending: creating a new one
times out the others. Timeouts are resolved lazily, when a request is
read or superseded; nothing polls ``timeout_at``.

Every status change is a compare-and-set on the store
(``UPDATE ... WHERE status = <expected>``), so a second approver racing
the first gets InvalidApprovalStateError, and an approved request can
be claimed for execution only once.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from toolgate.config import ApprovalSettings
from toolgate.core.models import (
    ApprovalRequest,
    ApprovalStatus,
    ContentMetrics,
    GateDecision,
    GateOutcome,
    Operation,
    OperationType,
    RiskAction,
    RiskAssessment,
    RiskLevel,
    SimulationResult,
)
from toolgate.exceptions import ApprovalNotFoundError, InvalidApprovalStateError
from toolgate.logging import get_logger
from toolgate.security.dry_run import DryRunSimulator
from toolgate.security.risk import RiskScorer
from toolgate.storage.memory import InMemoryApprovalStore, InMemoryContentStore

logger = get_logger("toolgate.security.approval")

READING_SPEED_WPM = 200
_WORD = re.compile(r"[A-Za-z'-]+")
_APPROVED = (ApprovalStatus.APPROVED, ApprovalStatus.EXECUTED)


class ApprovalStore(Protocol):
    def save(self, request: ApprovalRequest) -> None: ...

    def get(self, request_id: str) -> ApprovalRequest | None: ...

    def list_by_conversation(
        self, conversation_id: str, status: ApprovalStatus | None = None
    ) -> list[ApprovalRequest]: ...

    def transition(
        self,
        request_id: str,
        status: ApprovalStatus,
        *,
        expected: ApprovalStatus = ApprovalStatus.PENDING,
        **fields: Any,
    ) -> bool: ...


class ContentStore(Protocol):
    def save_fragment(
        self,
        content: str,
        *,
        title: str,
        fragment_type: str = "text",
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str: ...

    def get_fragment(self, fragment_id: str) -> dict[str, Any] | None: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ApprovalManager:
    def __init__(
        self,
        scorer: RiskScorer,
        simulator: DryRunSimulator,
        store: ApprovalStore | None = None,
        content_store: ContentStore | None = None,
        audit_log: Any = None,
        settings: ApprovalSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._scorer = scorer
        self._simulator = simulator
        self._store = store if store is not None else InMemoryApprovalStore()
        self._content = content_store if content_store is not None else InMemoryContentStore()
        self._audit = audit_log
        self._settings = settings or ApprovalSettings()
        self._clock = clock

    @property
    def scorer(self) -> RiskScorer:
        return self._scorer

    @property
    def simulator(self) -> DryRunSimulator:
        return self._simulator

    # ─── Creation ────────────────────────────────────────────

    def create_approval_request(
        self,
        operation: Operation,
        conversation_id: str,
        message_id: str | None = None,
        *,
        force: bool = False,
        simulation: SimulationResult | None = None,
    ) -> ApprovalRequest | None:
        """Create a pending request for ``operation``, or return None if it is auto-approved.

        ``force`` skips the auto-approve fast path (used for subjects no
        policy covers). ``simulation`` is reused instead of running the
        dry run again.
        """
        risk = self._calculate_risk(operation)

        if risk.action == RiskAction.AUTO_APPROVE and not force:
            logger.info(
                "Operation auto-approved",
                extra={"operation_type": operation.type.value, "risk_score": risk.score},
            )
            return None

        dry_run = simulation if simulation is not None else self._run_dry_run(operation)
        self._timeout_pending(conversation_id)

        metrics, use_modal = self.measure_content(operation)
        fragment_id = None
        if use_modal:
            fragment_id = self._content.save_fragment(
                operation.full_content or operation.summary,
                title=operation.title or operation.summary,
                fragment_type=operation.fragment_type,
                tags=["approval-request", "security", *operation.tags],
                metadata={
                    "risk_score": risk.score,
                    "risk_level": risk.level.value,
                    "operation_type": operation.type.value,
                    "word_count": metrics.words,
                    "read_time_minutes": metrics.read_time_minutes,
                },
            )
            logger.info(
                "Created fragment for approval request",
                extra={"fragment_id": fragment_id, "word_count": metrics.words},
            )

        now = self._clock()
        request = ApprovalRequest(
            conversation_id=conversation_id,
            message_id=message_id,
            operation_type=operation.type,
            operation_summary=operation.summary,
            operation=operation,
            dry_run_result=dry_run,
            risk_score=risk.score,
            risk_level=risk.level,
            risk_factors=risk.factors,
            fragment_id=fragment_id,
            use_modal=use_modal,
            content_metrics=metrics,
            created_at=now,
            timeout_at=now + timedelta(minutes=self._settings.timeout_minutes),
        )
        self._store.save(request)

        logger.info(
            "Approval request created",
            extra={"approval_id": request.id, "conversation_id": conversation_id,
                   "risk_score": risk.score, "risk_level": risk.level.value,
                   "use_modal": use_modal},
        )
        return request

    def gate(
        self,
        operation: Operation,
        conversation_id: str,
        message_id: str | None = None,
    ) -> GateOutcome:
        """Decide whether ``operation`` may run right now.

        The tool's own policy is checked first, then the policy of the
        command, path or domain it touches. An explicit deny rule on
        either blocks it. A subject no rule covers always needs approval.
        Otherwise the risk score decides.
        """
        tool_check = None
        if operation.tool_id and operation.type != OperationType.TOOL_CALL:
            tool_check = self._simulator.policy_registry.is_tool_allowed(operation.tool_id)
            if tool_check.explicitly_denied:
                logger.warning(
                    "Tool denied by policy",
                    extra={"tool_id": operation.tool_id, "rule": tool_check.matched_rule},
                )
                return GateOutcome(decision=GateDecision.BLOCKED, reason=tool_check.reason)

        simulation = self._simulator.simulate(operation)
        if simulation.policy_check.explicitly_denied:
            return GateOutcome(
                decision=GateDecision.BLOCKED,
                reason=simulation.policy_check.reason,
                simulation=simulation,
            )

        request = self.create_approval_request(
            operation,
            conversation_id,
            message_id,
            force=simulation.blocked or (tool_check is not None and not tool_check.allowed),
            simulation=simulation,
        )
        if request is None:
            return GateOutcome(decision=GateDecision.EXECUTE, reason="auto_approve", simulation=simulation)
        return GateOutcome(
            decision=GateDecision.APPROVAL_REQUIRED,
            reason=f"Risk score {request.risk_score} ({request.risk_level.value})",
            request=request,
            simulation=simulation,
        )

    # ─── Resolution ──────────────────────────────────────────

    def approve_request(
        self,
        request_id: str,
        actor: str,
        method: str = "button_click",
        message: str | None = None,
    ) -> ApprovalRequest:
        return self._resolve(request_id, ApprovalStatus.APPROVED, actor, method, message)

    def reject_request(
        self,
        request_id: str,
        actor: str,
        method: str = "button_click",
        message: str | None = None,
    ) -> ApprovalRequest:
        return self._resolve(request_id, ApprovalStatus.REJECTED, actor, method, message)

    def _resolve(
        self,
        request_id: str,
        status: ApprovalStatus,
        actor: str,
        method: str,
        message: str | None,
    ) -> ApprovalRequest:
        verb = "approve" if status == ApprovalStatus.APPROVED else "reject"
        request = self.get_request(request_id)
        if not request.is_pending:
            raise InvalidApprovalStateError(request_id, request.status.value, verb)

        resolved_at = self._clock()
        changed = self._store.transition(
            request_id,
            status,
            resolved_by=actor,
            resolved_at=resolved_at,
            resolution_method=method,
            resolution_message=message,
        )
        if not changed:
            current = self._store.get(request_id)
            raise InvalidApprovalStateError(
                request_id, current.status.value if current else "missing", verb
            )

        resolved = self.get_request(request_id)
        event = "approval_granted" if status == ApprovalStatus.APPROVED else "approval_denied"
        if self._audit is not None:
            self._audit.append(
                event,
                {
                    "approval_id": request_id,
                    "actor": actor,
                    "operation_type": resolved.operation_type.value,
                    "operation_summary": resolved.operation_summary,
                    "risk_score": resolved.risk_score,
                    "method": method,
                    "reason": message,
                },
                conversation_id=resolved.conversation_id,
            )
        logger.info(
            "Approval %s", "granted" if status == ApprovalStatus.APPROVED else "rejected",
            extra={"approval_id": request_id, "actor": actor, "method": method},
        )
        return resolved

    def mark_executed(self, request_id: str) -> ApprovalRequest:
        """Claim an approved request for execution. Succeeds once per request."""
        self.get_request(request_id)
        changed = self._store.transition(
            request_id, ApprovalStatus.EXECUTED, expected=ApprovalStatus.APPROVED
        )
        if not changed:
            current = self._store.get(request_id)
            raise InvalidApprovalStateError(
                request_id, current.status.value if current else "missing", "execute"
            )
        logger.info("Approved operation executing", extra={"approval_id": request_id})
        return self.get_request(request_id)

    # ─── Queries ─────────────────────────────────────────────

    def get_request(self, request_id: str) -> ApprovalRequest:
        """Fetch a request, resolving it to ``timeout`` first if it expired."""
        request = self._store.get(request_id)
        if request is None:
            raise ApprovalNotFoundError(request_id)
        if request.is_expired(self._clock()):
            self._store.transition(request_id, ApprovalStatus.TIMEOUT)
            request = self._store.get(request_id) or request
        return request

    def get_pending_for_conversation(self, conversation_id: str) -> list[ApprovalRequest]:
        """Pending requests, newest first. Expired ones are timed out on the way."""
        now = self._clock()
        pending = []
        for request in self._store.list_by_conversation(conversation_id, ApprovalStatus.PENDING):
            if request.is_expired(now):
                self._store.transition(request.id, ApprovalStatus.TIMEOUT)
                continue
            pending.append(request)
        return pending

    def detect_approval_in_message(self, message: str) -> str | None:
        """Return ``"approve"``, ``"reject"`` or None when intent is unclear.

        Rejection keywords are checked first. Keywords match whole words.
        """
        text = message.lower()
        for keyword in self._settings.rejection_keywords:
            if self._contains_keyword(text, keyword):
                return "reject"
        for keyword in self._settings.approval_keywords:
            if self._contains_keyword(text, keyword):
                return "approve"
        return None

    def format_for_chat(self, request: ApprovalRequest) -> dict[str, Any]:
        """Payload the chat UI renders as an approval card."""
        metrics, use_modal = self.measure_content(request.operation)
        fragment = self._content.get_fragment(request.fragment_id) if request.fragment_id else None
        resolved_at = request.resolved_at.isoformat() if request.resolved_at else None
        return {
            "approval_request": {
                "id": request.id,
                "operationType": request.operation_type.value,
                "operationSummary": request.operation_summary,
                "riskScore": request.risk_score,
                "riskLevel": request.risk_level.value,
                "riskFactors": request.risk_factors,
                "status": request.status.value,
                "approvedAt": resolved_at if request.status in _APPROVED else None,
                "rejectedAt": resolved_at if request.status == ApprovalStatus.REJECTED else None,
                "timeoutAt": request.timeout_at.isoformat(),
                "useModal": use_modal,
                "fragmentId": request.fragment_id,
                "fragmentTitle": fragment["title"] if fragment else None,
                "fragmentContent": fragment["message"] if fragment else None,
                "wordCount": metrics.words,
                "readTimeMinutes": metrics.read_time_minutes,
            }
        }

    def measure_content(self, operation: Operation) -> tuple[ContentMetrics, bool]:
        content = operation.full_content or operation.summary or ""
        words = len(_WORD.findall(content))
        metrics = ContentMetrics(
            words=words,
            characters=len(content),
            lines=content.count("\n") + 1,
            read_time_minutes=max(1, math.ceil(words / READING_SPEED_WPM)),
        )
        use_modal = (
            metrics.words > self._settings.max_words
            or metrics.characters > self._settings.max_characters
            or metrics.lines > self._settings.max_lines
        )
        return metrics, use_modal

    # ─── Internals ───────────────────────────────────────────

    def _timeout_pending(self, conversation_id: str) -> None:
        old = self._store.list_by_conversation(conversation_id, ApprovalStatus.PENDING)
        timed_out = sum(
            1 for request in old if self._store.transition(request.id, ApprovalStatus.TIMEOUT)
        )
        if timed_out:
            logger.info(
                "Auto-timed out old pending approvals",
                extra={"conversation_id": conversation_id, "count": timed_out},
            )

    def _run_dry_run(self, operation: Operation) -> SimulationResult | None:
        try:
            return self._simulator.simulate(operation)
        except Exception as e:
            logger.error(
                "Dry-run simulation failed: %s", e,
                extra={"operation_type": operation.type.value},
            )
            return None

    def _calculate_risk(self, operation: Operation) -> RiskAssessment:
        try:
            return self._scorer.score_operation(operation)
        except Exception as e:
            logger.error(
                "Risk calculation failed: %s", e,
                extra={"operation_type": operation.type.value},
            )
            return RiskAssessment(
                score=75,
                level=RiskLevel.HIGH,
                action=RiskAction.REQUIRE_APPROVAL,
                factors=["Risk calculation error - defaulting to high"],
                requires_approval=True,
            )

    @staticmethod
    def _contains_keyword(text: str, keyword: str) -> bool:
        return re.search(rf"(?<![\w']){re.escape(keyword.lower())}(?![\w'])", text) is not None
