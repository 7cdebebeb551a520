"""
In-memory stores for approval requests, fragments and conversations.

Used by default wiring and tests. The database-backed equivalents live
in ``toolgate.storage.repository``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from toolgate.core.models import ApprovalRequest, ApprovalStatus, ConversationMessage


class InMemoryApprovalStore:
    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}

    def save(self, request: ApprovalRequest) -> None:
        self._requests[request.id] = request.model_copy(deep=True)

    def get(self, request_id: str) -> ApprovalRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    def list_by_conversation(
        self,
        conversation_id: str,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        found = [
            r.model_copy(deep=True) for r in self._requests.values()
            if r.conversation_id == conversation_id and (status is None or r.status == status)
        ]
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def transition(
        self,
        request_id: str,
        status: ApprovalStatus,
        *,
        expected: ApprovalStatus = ApprovalStatus.PENDING,
        **fields: Any,
    ) -> bool:
        """Move a request from ``expected`` to ``status``. False when it has moved on."""
        current = self._requests.get(request_id)
        if current is None or current.status != expected:
            return False
        self._requests[request_id] = current.model_copy(update={"status": status, **fields})
        return True


class InMemoryContentStore:
    """Holds oversized approval content ("fragments") for modal rendering."""

    def __init__(self) -> None:
        self._fragments: dict[str, dict[str, Any]] = {}

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
        self._fragments[fragment_id] = {
            "id": fragment_id,
            "type": fragment_type,
            "title": title,
            "message": content,
            "tags": list(tags or []),
            "metadata": dict(metadata or {}),
            "created_at": datetime.now(UTC).isoformat(),
        }
        return fragment_id

    def get_fragment(self, fragment_id: str) -> dict[str, Any] | None:
        return self._fragments.get(fragment_id)


class InMemoryConversationStore:
    """Session message history plus per-session model preference."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ConversationMessage]] = {}
        self._preferences: dict[str, tuple[str | None, str | None]] = {}

    def add_message(self, session_id: str, role: str, content: str) -> None:
        self._messages.setdefault(session_id, []).append(
            ConversationMessage(role=role, content=content)
        )

    def set_model_preference(
        self,
        session_id: str,
        provider: str | None = None,
        model: str | None = None,
    ) -> None:
        self._preferences[session_id] = (provider, model)

    def get_messages(self, session_id: str) -> list[ConversationMessage]:
        return list(self._messages.get(session_id, []))

    def get_model_preference(self, session_id: str) -> tuple[str | None, str | None]:
        return self._preferences.get(session_id, (None, None))
