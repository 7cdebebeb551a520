"""Tests for ContextBroker: history summary, session preferences, tool preview."""

from toolgate.config import ContextSettings
from toolgate.core.models import AgentPrefs, ConversationMessage
from toolgate.orchestration.context import ContextBroker
from toolgate.storage.memory import InMemoryConversationStore
from toolgate.tools.registry import ToolRegistry
from conftest import make_tool


def _store_with(n: int, session_id: str = "s-1") -> InMemoryConversationStore:
    store = InMemoryConversationStore()
    for i in range(n):
        store.add_message(session_id, "user" if i % 2 == 0 else "assistant", f"message {i}")
    return store


class TestAssemble:
    def test_without_session(self, registry):
        bundle = ContextBroker(registry, _store_with(3)).assemble(None, "hello")
        assert bundle.user_message == "hello"
        assert bundle.conversation_summary == ""
        assert bundle.agent_prefs == AgentPrefs()
        assert bundle.session_id is None
        assert [t.slug for t in bundle.tool_registry_preview] == ["test.echo", "test.fail"]

    def test_with_session(self, registry):
        store = _store_with(2)
        store.set_model_preference("s-1", "anthropic", "claude-sonnet-4-20250514")
        bundle = ContextBroker(registry, store).assemble("s-1", "next")
        assert bundle.conversation_summary == "user: message 0\nassistant: message 1"
        assert bundle.agent_prefs.model_provider == "anthropic"
        assert bundle.agent_prefs.model_name == "claude-sonnet-4-20250514"
        assert bundle.session_id == "s-1"

    def test_no_store(self, registry):
        bundle = ContextBroker(registry).assemble("s-1", "hi")
        assert bundle.conversation_summary == ""


class TestSummary:
    def test_only_last_messages(self, registry):
        broker = ContextBroker(registry, settings=ContextSettings(history_messages=2))
        messages = [ConversationMessage(role="user", content=f"m{i}") for i in range(6)]
        assert broker.summarize_history(messages) == "user: m4\nuser: m5"

    def test_each_message_truncated(self, registry):
        broker = ContextBroker(registry, settings=ContextSettings(message_max_chars=5))
        summary = broker.summarize_history([ConversationMessage(role="user", content="abcdefghij")])
        assert summary == "user: abcde"

    def test_total_length_bounded(self, registry):
        broker = ContextBroker(registry, settings=ContextSettings(max_summary_length=30))
        messages = [ConversationMessage(role="user", content="x" * 20) for _ in range(3)]
        summary = broker.summarize_history(messages)
        assert len(summary) <= 30
        assert summary == "user: " + "x" * 20

    def test_empty_history(self, registry):
        assert ContextBroker(registry).summarize_history([]) == ""


class TestToolPreview:
    def test_capped_and_enabled_only(self):
        registry = ToolRegistry()
        registry.register(make_tool("off", enabled=False))
        for i in range(12):
            registry.register(make_tool(f"t{i}", capabilities=["cap"], schema={"type": "object"}))
        preview = ContextBroker(registry).preview_tools()
        assert len(preview) == 10
        assert preview[0].slug == "t0"
        assert preview[0].capabilities == ["cap"]
        assert preview[0].config_schema == {"type": "object"}

    def test_custom_count(self, registry):
        broker = ContextBroker(registry, settings=ContextSettings(tool_preview_count=1))
        assert [t.slug for t in broker.preview_tools()] == ["test.echo"]
