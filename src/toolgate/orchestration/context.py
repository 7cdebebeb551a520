"""
Toolgate Context Broker

Builds the ContextBundle for one turn: a bounded summary of the recent
conversation, session model/provider overrides and a preview of the
enabled tools.

The tool preview is the first N enabled tools in registration order.
There is no relevance ranking.
"""

from __future__ import annotations

from typing import Protocol

from toolgate.config import ContextSettings
from toolgate.core.models import AgentPrefs, ContextBundle, ConversationMessage, ToolPreview
from toolgate.logging import get_logger
from toolgate.tools.registry import ToolRegistry

logger = get_logger("toolgate.orchestration.context")


class ConversationStore(Protocol):
    def get_messages(self, session_id: str) -> list[ConversationMessage]: ...

    def get_model_preference(self, session_id: str) -> tuple[str | None, str | None]: ...


class ContextBroker:
    def __init__(
        self,
        registry: ToolRegistry,
        conversations: ConversationStore | None = None,
        settings: ContextSettings | None = None,
    ) -> None:
        self._registry = registry
        self._conversations = conversations
        self._settings = settings or ContextSettings()

    def assemble(self, session_id: str | None, user_message: str) -> ContextBundle:
        summary = ""
        prefs = AgentPrefs()
        if session_id is not None and self._conversations is not None:
            summary = self.summarize_history(self._conversations.get_messages(session_id))
            provider, model = self._conversations.get_model_preference(session_id)
            prefs = AgentPrefs(model_provider=provider, model_name=model)

        bundle = ContextBundle(
            user_message=user_message,
            conversation_summary=summary,
            agent_prefs=prefs,
            tool_registry_preview=self.preview_tools(),
            session_id=session_id,
        )
        logger.debug(
            "Context assembled",
            extra={"session_id": session_id, "summary_length": len(summary),
                   "tool_preview_count": len(bundle.tool_registry_preview)},
        )
        return bundle

    def summarize_history(self, messages: list[ConversationMessage]) -> str:
        """Render the last messages as ``role: content`` lines.

        Each message is cut to ``message_max_chars``. When the result is
        still longer than ``max_summary_length``, whole lines are dropped
        from the front.
        """
        s = self._settings
        recent = messages[-s.history_messages:] if s.history_messages else []
        lines = [f"{m.role}: {m.content[:s.message_max_chars]}" for m in recent]
        while lines and len("\n".join(lines)) > s.max_summary_length:
            lines.pop(0)
        return "\n".join(lines)

    def preview_tools(self) -> list[ToolPreview]:
        definitions = self._registry.definitions(enabled_only=True)
        return [
            ToolPreview(slug=d.slug, capabilities=d.capabilities, schema=d.config_schema)
            for d in definitions[: self._settings.tool_preview_count]
        ]
