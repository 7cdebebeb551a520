"""
Toolgate Audit Log

Append-only, tamper-evident record of what each turn decided and did,
plus approval decisions. Every record is linked to the previous one via
SHA-256 hash chaining, so modifying any stored record breaks the chain.

Records are redacted before they are hashed; the log never holds the
raw secrets a tool may have returned. Each append is also emitted on
the ``toolgate.audit`` logger.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from toolgate.logging import get_logger
from toolgate.security.redaction import Redactor

logger = get_logger("toolgate.audit")


class AuditRecord(BaseModel):
    id: str = Field(default_factory=lambda: f"aud-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    event_type: str
    pipeline_id: str | None = None
    correlation_id: str | None = None
    conversation_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HashedRecord(BaseModel):
    record: AuditRecord
    hash: str
    previous_hash: str
    sequence: int = 0


def _digest(record: AuditRecord, previous_hash: str, sequence: int) -> str:
    content = json.dumps(
        {
            "id": record.id,
            "timestamp": record.timestamp.isoformat(),
            "event_type": record.event_type,
            "pipeline_id": record.pipeline_id,
            "correlation_id": record.correlation_id,
            "conversation_id": record.conversation_id,
            "details": record.details,
            "previous_hash": previous_hash,
            "sequence": sequence,
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(content.encode()).hexdigest()


class AuditLog:
    """Hash-chained audit log with optional persistence.

    ``repository`` is anything with ``append(row: dict)`` and ``load()``;
    see ``toolgate.storage.repository.AuditRepository``.
    """

    GENESIS_HASH = "0" * 64

    def __init__(self, repository: Any = None, redactor: Redactor | None = None, redact: bool = True):
        self._events: list[HashedRecord] = []
        self._current_hash = self.GENESIS_HASH
        self._repository = repository
        self._redactor = redactor or Redactor()
        self._redact = redact
        self._subscribers: list[Callable[[HashedRecord], Awaitable[None]]] = []

        if repository is not None:
            for row in repository.load():
                record = AuditRecord(
                    id=row["id"],
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                    event_type=row["event_type"],
                    pipeline_id=row.get("pipeline_id"),
                    correlation_id=row.get("correlation_id"),
                    conversation_id=row.get("conversation_id"),
                    details=row.get("details") or {},
                )
                hashed = HashedRecord(
                    record=record,
                    hash=row["hash"],
                    previous_hash=row["previous_hash"],
                    sequence=row["sequence"],
                )
                self._events.append(hashed)
                self._current_hash = hashed.hash

    def subscribe(self, callback: Callable[[HashedRecord], Awaitable[None]]) -> None:
        self._subscribers.append(callback)

    def append(
        self,
        event_type: str,
        details: dict[str, Any],
        *,
        pipeline_id: str | None = None,
        correlation_id: str | None = None,
        conversation_id: str | None = None,
    ) -> HashedRecord:
        if self._redact:
            details = self._redactor.redact_json(details)

        record = AuditRecord(
            event_type=event_type,
            pipeline_id=pipeline_id,
            correlation_id=correlation_id,
            conversation_id=conversation_id,
            details=details,
        )
        sequence = len(self._events)
        event_hash = _digest(record, self._current_hash, sequence)
        hashed = HashedRecord(
            record=record,
            hash=event_hash,
            previous_hash=self._current_hash,
            sequence=sequence,
        )

        self._events.append(hashed)
        self._current_hash = event_hash

        if self._repository is not None:
            self._repository.append({
                "sequence": sequence,
                "id": record.id,
                "timestamp": record.timestamp.isoformat(),
                "event_type": event_type,
                "pipeline_id": pipeline_id,
                "correlation_id": correlation_id,
                "conversation_id": conversation_id,
                "details": record.details,
                "hash": event_hash,
                "previous_hash": hashed.previous_hash,
            })

        logger.info(
            "Audit record: %s", event_type,
            extra={"pipeline_id": pipeline_id, "correlation_id": correlation_id,
                   "audit_sequence": sequence, "audit_details": record.details},
        )
        return hashed

    async def append_async(self, event_type: str, details: dict[str, Any], **ids: str | None) -> HashedRecord:
        """Append and notify subscribers."""
        hashed = self.append(event_type, details, **ids)
        for callback in self._subscribers:
            try:
                await callback(hashed)
            except Exception:
                logger.exception("Audit subscriber failed")
        return hashed

    def verify_integrity(self) -> tuple[bool, str]:
        """Recompute every hash in order. Returns (is_valid, message)."""
        if not self._events:
            return True, "Empty log: no records to verify"

        expected_prev = self.GENESIS_HASH
        for i, event in enumerate(self._events):
            if event.previous_hash != expected_prev:
                return False, (
                    f"Chain broken at record {i}: "
                    f"expected previous_hash={expected_prev[:16]}..., "
                    f"got {event.previous_hash[:16]}..."
                )
            recomputed = _digest(event.record, event.previous_hash, event.sequence)
            if recomputed != event.hash:
                return False, (
                    f"Tampered record at {i}: "
                    f"stored hash={event.hash[:16]}..., recomputed={recomputed[:16]}..."
                )
            expected_prev = event.hash

        return True, f"All {len(self._events)} records verified, chain intact"

    def get_records(
        self,
        event_type: str | None = None,
        pipeline_id: str | None = None,
        conversation_id: str | None = None,
    ) -> list[HashedRecord]:
        results = self._events
        if event_type:
            results = [e for e in results if e.record.event_type == event_type]
        if pipeline_id:
            results = [e for e in results if e.record.pipeline_id == pipeline_id]
        if conversation_id:
            results = [e for e in results if e.record.conversation_id == conversation_id]
        return results

    def export_json(self, path: str | Path) -> None:
        data = {
            "exported_at": datetime.now(UTC).isoformat(),
            "total_records": len(self._events),
            "chain_head": self._current_hash,
            "records": [e.model_dump(mode="json") for e in self._events],
        }
        Path(path).write_text(json.dumps(data, indent=2, default=str))

    @property
    def head_hash(self) -> str:
        return self._current_hash

    def __len__(self) -> int:
        return len(self._events)
