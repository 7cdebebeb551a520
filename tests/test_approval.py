"""Tests for the ApprovalManager.

Covers request creation, the risk gate, the pending -> approved -> executed
| rejected | timeout lifecycle, modal content and chat keyword detection.
"""

from datetime import UTC, datetime, timedelta

import pytest

from toolgate.audit.trace_logger import AuditLog
from toolgate.config import ApprovalSettings
from toolgate.core.models import (
    ApprovalStatus,
    GateDecision,
    Operation,
    OperationType,
    PolicyAction,
    PolicyType,
    SecurityPolicy,
)
from toolgate.exceptions import ApprovalNotFoundError, InvalidApprovalStateError
from toolgate.security.policy import default_policies
from toolgate.security.risk import APPROVAL_THRESHOLD
from toolgate.storage.memory import InMemoryApprovalStore
from toolgate.tools.builtin.shell import shell_tool
from toolgate.tools.registry import tool_call_operation
from conftest import build_approvals


def _command(command: str) -> Operation:
    return Operation(type=OperationType.COMMAND, command=command, summary=f"Run `{command}`")


class _Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self):
        return self.now


class TestCreation:
    def test_low_risk_is_auto_approved(self, approvals):
        assert approvals.create_approval_request(tool_call_operation("fs.read", {}), "conv-1") is None

    def test_risky_operation_creates_request(self, approvals):
        request = approvals.create_approval_request(_command("ls -la"), "conv-1", "msg-1")
        assert request is not None
        assert request.id.startswith("apr-")
        assert request.status == ApprovalStatus.PENDING
        assert request.risk_score == 35
        assert request.message_id == "msg-1"
        assert request.dry_run_result is not None
        assert request.timeout_at - request.created_at == timedelta(minutes=5)

    def test_force_skips_auto_approve(self, approvals):
        request = approvals.create_approval_request(tool_call_operation("fs.read", {}), "conv-1", force=True)
        assert request is not None
        assert request.risk_score == 1

    def test_new_request_times_out_previous(self, approvals):
        first = approvals.create_approval_request(_command("ls"), "conv-1")
        second = approvals.create_approval_request(_command("pwd"), "conv-1")
        assert approvals.get_request(first.id).status == ApprovalStatus.TIMEOUT
        pending = approvals.get_pending_for_conversation("conv-1")
        assert [r.id for r in pending] == [second.id]

    def test_other_conversations_untouched(self, approvals):
        first = approvals.create_approval_request(_command("ls"), "conv-1")
        approvals.create_approval_request(_command("ls"), "conv-2")
        assert approvals.get_request(first.id).is_pending


class TestGate:
    def test_execute(self, approvals):
        outcome = approvals.gate(tool_call_operation("fs.read", {}), "conv-1")
        assert outcome.decision == GateDecision.EXECUTE
        assert outcome.request is None

    def test_explicit_deny_blocks(self, approvals):
        outcome = approvals.gate(_command("rm -rf /"), "conv-1")
        assert outcome.decision == GateDecision.BLOCKED
        assert outcome.reason == "Matched deny rule"
        assert approvals.get_pending_for_conversation("conv-1") == []

    def test_default_deny_requires_approval(self, approvals):
        outcome = approvals.gate(tool_call_operation("unknown.reader", {}), "conv-1")
        assert outcome.decision == GateDecision.APPROVAL_REQUIRED
        assert outcome.request is not None

    def test_risky_requires_approval(self, approvals):
        outcome = approvals.gate(_command("git push"), "conv-1")
        assert outcome.decision == GateDecision.APPROVAL_REQUIRED
        assert outcome.reason.startswith("Risk score")

    def test_tool_deny_blocks_builtin_operation(self):
        deny_shell = SecurityPolicy(
            policy_type=PolicyType.TOOL, pattern="shell", action=PolicyAction.DENY, priority=1
        )
        approvals = build_approvals(default_policies() + [deny_shell])
        outcome = approvals.gate(shell_tool().to_operation({"command": "ls"}), "conv-1")
        assert outcome.decision == GateDecision.BLOCKED
        assert outcome.reason == "Matched deny rule"
        assert approvals.get_pending_for_conversation("conv-1") == []

    def test_uncovered_tool_forces_approval(self, approvals):
        operation = Operation(
            type=OperationType.FILE_OPERATION,
            tool_id="custom.reader",
            path="/workspace/notes.txt",
            operation="read",
            summary="Read notes",
        )
        outcome = approvals.gate(operation, "conv-1")
        assert outcome.decision == GateDecision.APPROVAL_REQUIRED
        assert outcome.request.risk_score < APPROVAL_THRESHOLD

    def test_simulates_once(self, approvals, monkeypatch):
        simulator = approvals._simulator
        calls = []
        original = simulator.simulate

        def counting_simulate(operation):
            calls.append(operation)
            return original(operation)

        monkeypatch.setattr(simulator, "simulate", counting_simulate)
        outcome = approvals.gate(_command("git push"), "conv-1")
        assert len(calls) == 1
        assert outcome.request.dry_run_result == outcome.simulation

    def test_auto_approved_keeps_pending_request(self, approvals):
        pending = approvals.create_approval_request(_command("ls"), "conv-1")
        outcome = approvals.gate(tool_call_operation("fs.read", {}), "conv-1")
        assert outcome.decision == GateDecision.EXECUTE
        assert approvals.get_request(pending.id).is_pending


class TestMarkExecuted:
    def test_once(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        approvals.approve_request(request.id, "alice")
        executed = approvals.mark_executed(request.id)
        assert executed.status == ApprovalStatus.EXECUTED
        with pytest.raises(InvalidApprovalStateError, match="Cannot execute request in status: executed"):
            approvals.mark_executed(request.id)

    def test_pending_refused(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        with pytest.raises(InvalidApprovalStateError, match="pending"):
            approvals.mark_executed(request.id)
        assert approvals.get_request(request.id).is_pending

    def test_unknown(self, approvals):
        with pytest.raises(ApprovalNotFoundError):
            approvals.mark_executed("apr-missing")


class TestResolution:
    def test_approve(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        resolved = approvals.approve_request(request.id, "alice", message="looks fine")
        assert resolved.status == ApprovalStatus.APPROVED
        assert resolved.resolved_by == "alice"
        assert resolved.resolution_method == "button_click"
        assert resolved.resolution_message == "looks fine"
        assert resolved.resolved_at is not None

    def test_reject(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        resolved = approvals.reject_request(request.id, "bob", method="chat_message")
        assert resolved.status == ApprovalStatus.REJECTED
        assert resolved.resolution_method == "chat_message"

    def test_double_approve_raises(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        approvals.approve_request(request.id, "alice")
        with pytest.raises(InvalidApprovalStateError, match="status: approved"):
            approvals.approve_request(request.id, "bob")

    def test_reject_after_approve_raises(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        approvals.approve_request(request.id, "alice")
        with pytest.raises(InvalidApprovalStateError):
            approvals.reject_request(request.id, "bob")

    def test_unknown_request(self, approvals):
        with pytest.raises(ApprovalNotFoundError):
            approvals.approve_request("apr-missing", "alice")

    def test_lost_race_raises(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        # A second approver resolved it between our read and our write
        store = approvals._store
        original = store.transition

        def racing_transition(request_id, status, **fields):
            original(request_id, ApprovalStatus.REJECTED)
            return original(request_id, status, **fields)

        store.transition = racing_transition
        with pytest.raises(InvalidApprovalStateError, match="rejected"):
            approvals.approve_request(request.id, "alice")

    def test_audit_records_resolution(self):
        audit_log = AuditLog()
        manager = build_approvals(audit_log=audit_log)
        request = manager.create_approval_request(_command("ls"), "conv-1")
        manager.approve_request(request.id, "alice", message="ok")
        records = audit_log.get_records(event_type="approval_granted")
        assert len(records) == 1
        assert records[0].record.details["approval_id"] == request.id
        assert records[0].record.conversation_id == "conv-1"


class TestTimeout:
    def test_expired_request_times_out_on_read(self):
        clock = _Clock()
        manager = build_approvals(clock=clock, settings=ApprovalSettings(timeout_minutes=5))
        request = manager.create_approval_request(_command("ls"), "conv-1")

        clock.now += timedelta(minutes=6)
        assert manager.get_request(request.id).status == ApprovalStatus.TIMEOUT
        assert manager.get_pending_for_conversation("conv-1") == []
        with pytest.raises(InvalidApprovalStateError, match="timeout"):
            manager.approve_request(request.id, "alice")

    def test_not_expired_before_deadline(self):
        clock = _Clock()
        manager = build_approvals(clock=clock)
        request = manager.create_approval_request(_command("ls"), "conv-1")
        clock.now += timedelta(minutes=4)
        assert manager.get_request(request.id).is_pending


class TestContent:
    def test_short_content_inline(self, approvals):
        metrics, use_modal = approvals.measure_content(_command("ls"))
        assert not use_modal
        assert metrics.read_time_minutes == 1

    def test_long_content_uses_modal_fragment(self):
        manager = build_approvals(store=InMemoryApprovalStore())
        content = "\n".join(f"line {i} of the new configuration file" for i in range(40))
        op = Operation(
            type=OperationType.FILE_OPERATION,
            path="/etc/app.conf",
            operation="write",
            summary="Write /etc/app.conf",
            full_content=content,
        )
        request = manager.create_approval_request(op, "conv-1", force=True)
        assert request.use_modal
        assert request.fragment_id is not None
        assert request.content_metrics.lines == 40

        card = manager.format_for_chat(request)["approval_request"]
        assert card["useModal"] is True
        assert card["fragmentContent"] == content
        assert card["fragmentTitle"] == "Write /etc/app.conf"

    def test_format_for_chat(self, approvals):
        request = approvals.create_approval_request(_command("ls"), "conv-1")
        card = approvals.format_for_chat(request)["approval_request"]
        assert card["id"] == request.id
        assert card["operationType"] == "command"
        assert card["riskScore"] == 35
        assert card["status"] == "pending"
        assert card["approvedAt"] is None
        assert card["fragmentId"] is None


class TestKeywordDetection:
    @pytest.mark.parametrize("message", ["Yes please", "ok, go ahead", "Sure!", "please proceed"])
    def test_approve(self, approvals, message):
        assert approvals.detect_approval_in_message(message) == "approve"

    @pytest.mark.parametrize("message", ["no", "Cancel that", "don't do it", "nope"])
    def test_reject(self, approvals, message):
        assert approvals.detect_approval_in_message(message) == "reject"

    def test_rejection_checked_first(self, approvals):
        assert approvals.detect_approval_in_message("yes, actually no") == "reject"

    def test_whole_words_only(self, approvals):
        assert approvals.detect_approval_in_message("I know the notes are stopping") is None
        assert approvals.detect_approval_in_message("what's the status?") is None
