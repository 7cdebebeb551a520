"""
Toolgate Persistence

Database-backed stores for approval requests, approval fragments,
security policies and audit records. Supports SQLite and PostgreSQL
via the ``toolgate.storage.db`` connection wrapper.

Schema:
- approval_requests: one row per request, operation/dry-run snapshots as JSON
- fragments: oversized approval content
- security_policies: allow/deny rules read by PolicyRegistry
- audit_records: hash-chained audit log entries
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

from toolgate.core.models import (
    ApprovalRequest,
    ApprovalStatus,
    ContentMetrics,
    Operation,
    OperationType,
    PolicyAction,
    PolicyType,
    RiskLevel,
    SecurityPolicy,
    SimulationResult,
)
from toolgate.storage.db import DbConnection, connect


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ApprovalRepository:
    """Approval requests and their fragments.

    Status changes are compare-and-set on the current status, so two
    racing approvers cannot both succeed.
    """

    def __init__(self, db_url: str = "toolgate.db", conn: DbConnection | None = None):
        self._conn = conn or connect(db_url)
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.create_schema("""
            CREATE TABLE IF NOT EXISTS approval_requests (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                message_id TEXT,
                operation_type TEXT NOT NULL,
                operation_summary TEXT DEFAULT '',
                operation TEXT DEFAULT '{}',
                dry_run_result TEXT,
                risk_score INTEGER DEFAULT 0,
                risk_level TEXT DEFAULT 'low',
                risk_factors TEXT DEFAULT '[]',
                status TEXT DEFAULT 'pending',
                fragment_id TEXT,
                use_modal INTEGER DEFAULT 0,
                content_metrics TEXT,
                created_at TEXT DEFAULT '',
                timeout_at TEXT DEFAULT '',
                resolved_by TEXT,
                resolved_at TEXT,
                resolution_method TEXT,
                resolution_message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_approvals_conversation
                ON approval_requests(conversation_id, status);

            CREATE TABLE IF NOT EXISTS fragments (
                id TEXT PRIMARY KEY,
                type TEXT DEFAULT 'text',
                title TEXT DEFAULT '',
                message TEXT DEFAULT '',
                tags TEXT DEFAULT '[]',
                metadata TEXT DEFAULT '{}',
                created_at TEXT DEFAULT ''
            )
        """)

    # ── approval store ──

    def save(self, request: ApprovalRequest) -> None:
        self._conn.upsert("approval_requests", {
            "id": request.id,
            "conversation_id": request.conversation_id,
            "message_id": request.message_id,
            "operation_type": request.operation_type.value,
            "operation_summary": request.operation_summary,
            "operation": request.operation.model_dump_json(),
            "dry_run_result": request.dry_run_result.model_dump_json() if request.dry_run_result else None,
            "risk_score": request.risk_score,
            "risk_level": request.risk_level.value,
            "risk_factors": json.dumps(request.risk_factors),
            "status": request.status.value,
            "fragment_id": request.fragment_id,
            "use_modal": int(request.use_modal),
            "content_metrics": (
                request.content_metrics.model_dump_json() if request.content_metrics else None
            ),
            "created_at": _iso(request.created_at),
            "timeout_at": _iso(request.timeout_at),
            "resolved_by": request.resolved_by,
            "resolved_at": _iso(request.resolved_at),
            "resolution_method": request.resolution_method,
            "resolution_message": request.resolution_message,
        })

    def get(self, request_id: str) -> ApprovalRequest | None:
        row = self._conn.execute(
            "SELECT * FROM approval_requests WHERE id = ?", (request_id,)
        ).one()
        return self._row_to_request(row) if row else None

    def list_by_conversation(
        self,
        conversation_id: str,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        if status is None:
            rows = self._conn.execute(
                "SELECT * FROM approval_requests WHERE conversation_id = ? "
                "ORDER BY created_at DESC",
                (conversation_id,),
            ).all()
        else:
            rows = self._conn.execute(
                "SELECT * FROM approval_requests WHERE conversation_id = ? AND status = ? "
                "ORDER BY created_at DESC",
                (conversation_id, status.value),
            ).all()
        return [self._row_to_request(r) for r in rows]

    def transition(
        self,
        request_id: str,
        status: ApprovalStatus,
        *,
        expected: ApprovalStatus = ApprovalStatus.PENDING,
        **fields: Any,
    ) -> bool:
        changes: dict[str, Any] = {"status": status.value}
        for name, value in fields.items():
            changes[name] = _iso(value) if isinstance(value, datetime) else value
        return self._conn.compare_and_set(
            "approval_requests", ("id", request_id), {"status": expected.value}, changes
        )

    # ── content store ──

    def save_fragment(
        self,
        content: str,
        *,
        title: str,
        fragment_type: str = "text",
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        fragment_id = f"frag-{uuid.uuid4().hex[:12]}"
        self._conn.execute(
            "INSERT INTO fragments (id, type, title, message, tags, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                fragment_id,
                fragment_type,
                title,
                content,
                json.dumps(tags or []),
                json.dumps(metadata or {}, default=str),
                datetime.now(UTC).isoformat(),
            ),
        )
        self._conn.commit()
        return fragment_id

    def get_fragment(self, fragment_id: str) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM fragments WHERE id = ?", (fragment_id,)).one()
        if row is None:
            return None
        row["tags"] = json.loads(row["tags"] or "[]")
        row["metadata"] = json.loads(row["metadata"] or "{}")
        return row

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_request(row: dict[str, Any]) -> ApprovalRequest:
        return ApprovalRequest(
            id=row["id"],
            conversation_id=row["conversation_id"],
            message_id=row["message_id"],
            operation_type=OperationType(row["operation_type"]),
            operation_summary=row["operation_summary"] or "",
            operation=Operation.model_validate_json(row["operation"]),
            dry_run_result=(
                SimulationResult.model_validate_json(row["dry_run_result"])
                if row["dry_run_result"] else None
            ),
            risk_score=row["risk_score"] or 0,
            risk_level=RiskLevel(row["risk_level"]),
            risk_factors=json.loads(row["risk_factors"] or "[]"),
            status=ApprovalStatus(row["status"]),
            fragment_id=row["fragment_id"],
            use_modal=bool(row["use_modal"]),
            content_metrics=(
                ContentMetrics.model_validate_json(row["content_metrics"])
                if row["content_metrics"] else None
            ),
            created_at=_dt(row["created_at"]),
            timeout_at=_dt(row["timeout_at"]),
            resolved_by=row["resolved_by"],
            resolved_at=_dt(row["resolved_at"]),
            resolution_method=row["resolution_method"],
            resolution_message=row["resolution_message"],
        )


class PolicyRepository:
    """Security policies table. Read through PolicyRegistry, which caches."""

    def __init__(self, db_url: str = "toolgate.db", conn: DbConnection | None = None):
        self._conn = conn or connect(db_url)
        self._conn.create_schema("""
            CREATE TABLE IF NOT EXISTS security_policies (
                id TEXT PRIMARY KEY,
                policy_type TEXT NOT NULL,
                category TEXT,
                pattern TEXT NOT NULL,
                action TEXT NOT NULL,
                priority INTEGER DEFAULT 100,
                risk_weight INTEGER DEFAULT 0,
                description TEXT DEFAULT '',
                is_active INTEGER DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_policies_type ON security_policies(policy_type, priority)
        """)

    def list_policies(self) -> list[SecurityPolicy]:
        rows = self._conn.execute(
            "SELECT * FROM security_policies ORDER BY policy_type, priority"
        ).all()
        return [
            SecurityPolicy(
                id=r["id"],
                policy_type=PolicyType(r["policy_type"]),
                category=r["category"],
                pattern=r["pattern"],
                action=PolicyAction(r["action"]),
                priority=r["priority"],
                risk_weight=r["risk_weight"] or 0,
                description=r["description"] or "",
                is_active=bool(r["is_active"]),
            )
            for r in rows
        ]

    def save_policy(self, policy: SecurityPolicy) -> None:
        row = policy.model_dump(mode="json")
        row["is_active"] = int(policy.is_active)
        self._conn.upsert("security_policies", row)

    def delete_policy(self, policy_id: str) -> bool:
        deleted = self._conn.execute(
            "DELETE FROM security_policies WHERE id = ?", (policy_id,)
        ).rowcount
        self._conn.commit()
        return deleted == 1

    def seed(self, policies: list[SecurityPolicy]) -> int:
        """Insert ``policies`` when the table is empty. Returns the number inserted."""
        if self._conn.execute("SELECT COUNT(*) AS n FROM security_policies").one()["n"]:
            return 0
        for policy in policies:
            self.save_policy(policy)
        return len(policies)


class AuditRepository:
    """Append-only storage for hash-chained audit records."""

    def __init__(self, db_url: str = "toolgate.db", conn: DbConnection | None = None):
        self._conn = conn or connect(db_url)
        self._conn.create_schema("""
            CREATE TABLE IF NOT EXISTS audit_records (
                sequence INTEGER PRIMARY KEY,
                id TEXT NOT NULL,
                timestamp TEXT DEFAULT '',
                event_type TEXT DEFAULT '',
                pipeline_id TEXT,
                correlation_id TEXT,
                conversation_id TEXT,
                details TEXT DEFAULT '{}',
                hash TEXT NOT NULL,
                previous_hash TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_event ON audit_records(event_type)
        """)

    def append(self, row: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO audit_records (sequence, id, timestamp, event_type, pipeline_id, "
            "correlation_id, conversation_id, details, hash, previous_hash) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                row["sequence"],
                row["id"],
                row["timestamp"],
                row["event_type"],
                row.get("pipeline_id"),
                row.get("correlation_id"),
                row.get("conversation_id"),
                json.dumps(row.get("details", {}), default=str),
                row["hash"],
                row["previous_hash"],
            ),
        )
        self._conn.commit()

    def load(self) -> list[dict[str, Any]]:
        rows = self._conn.execute("SELECT * FROM audit_records ORDER BY sequence").all()
        for r in rows:
            r["details"] = json.loads(r["details"] or "{}")
        return rows
