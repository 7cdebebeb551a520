"""Tests for OutcomeSummarizer, including the deterministic fallback."""

from toolgate.config import FeatureFlags, ToolgateConfig
from toolgate.core.models import ExecutionTrace, ToolResult
from toolgate.exceptions import ProviderError
from toolgate.orchestration.summarizer import OutcomeSummarizer, fallback_summary
from toolgate.security.redaction import REDACTED


def _trace(*results) -> ExecutionTrace:
    trace = ExecutionTrace()
    for r in results:
        trace.append(r)
    return trace


OK = ToolResult(tool_id="fs.list", result={"entries": ["a", "b"]}, success=True)
FAILED = ToolResult(tool_id="http.fetch", error="HTTP 404: Not Found")


class TestSummarize:
    async def test_model_summary(self, service):
        service.script("outcome_summary", {
            "short_summary": "Listed two entries.",
            "key_facts": ["a", "b"],
            "links": [],
            "confidence": 0.9,
        })
        summary = await OutcomeSummarizer(service).summarize(_trace(OK))
        assert summary.short_summary == "Listed two entries."
        assert summary.key_facts == ["a", "b"]
        assert summary.confidence == 0.9
        assert service.calls[0]["temperature"] == 0.1

    async def test_results_redacted_in_prompt(self, service):
        service.script("outcome_summary", {"short_summary": "ok", "confidence": 0.8})
        leaky = ToolResult(tool_id="http.fetch", result={"owner": "bob@example.com"}, success=True)
        await OutcomeSummarizer(service).summarize(_trace(leaky))
        prompt = service.calls[0]["prompt"]
        assert "bob@example.com" not in prompt
        assert REDACTED in prompt

    async def test_retry_then_success(self, service):
        service.script("outcome_summary", "Everything went fine!", {"short_summary": "ok", "confidence": 0.8})
        summary = await OutcomeSummarizer(service).summarize(_trace(OK))
        assert summary.short_summary == "ok"
        assert len(service.calls) == 2


class TestFallback:
    def test_counts(self):
        summary = fallback_summary(_trace(OK, FAILED, OK))
        assert summary.short_summary == "Executed 3 tool steps: 2 succeeded, 1 failed."
        assert summary.confidence == 0.5
        assert summary.key_facts == []

    async def test_provider_error(self, service):
        service.script("outcome_summary", ProviderError("openai", "rate limited"))
        summary = await OutcomeSummarizer(service).summarize(_trace(OK, FAILED))
        assert summary.short_summary == "Executed 2 tool steps: 1 succeeded, 1 failed."

    async def test_invalid_json_twice(self, service):
        service.script("outcome_summary", "nope", "still nope")
        summary = await OutcomeSummarizer(service).summarize(_trace(OK))
        assert summary.confidence == 0.5

    async def test_out_of_range_confidence(self, service):
        service.script("outcome_summary", {"short_summary": "x", "confidence": 7})
        config = ToolgateConfig(features=FeatureFlags(retry_on_parse_failure=False))
        summary = await OutcomeSummarizer(service, config).summarize(_trace(OK))
        assert summary.short_summary.startswith("Executed 1 tool steps")
        assert len(service.calls) == 1
