"""
Toolgate Outcome Summarizer

Compresses an ExecutionTrace into an OutcomeSummary. Step results are
redacted before they reach the model. Any failure (provider error or
output that is not the expected JSON) falls back to a deterministic
count of succeeded and failed steps with confidence 0.5.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from toolgate.config import ToolgateConfig
from toolgate.core.models import ExecutionTrace, OutcomeSummary
from toolgate.logging import get_logger
from toolgate.orchestration._json import complete_json, parse_json_object
from toolgate.orchestration.prompts import SUMMARIZER_PROMPT, SUMMARIZER_SYSTEM
from toolgate.providers.base import TextCompletionService
from toolgate.providers.resolution import ProviderResolver
from toolgate.security.redaction import Redactor

logger = get_logger("toolgate.orchestration.summarizer")

FALLBACK_CONFIDENCE = 0.5


def parse_outcome_summary(text: str) -> OutcomeSummary:
    data = parse_json_object(text)
    try:
        return OutcomeSummary.model_validate(data)
    except ValidationError as e:
        raise ValueError(str(e)) from e


def fallback_summary(trace: ExecutionTrace) -> OutcomeSummary:
    return OutcomeSummary(
        short_summary=(
            f"Executed {len(trace.steps)} tool steps: "
            f"{trace.succeeded} succeeded, {trace.failed} failed."
        ),
        confidence=FALLBACK_CONFIDENCE,
    )


class OutcomeSummarizer:
    def __init__(
        self,
        service: TextCompletionService,
        config: ToolgateConfig | None = None,
        resolver: ProviderResolver | None = None,
        redactor: Redactor | None = None,
    ) -> None:
        self._service = service
        self._config = config or ToolgateConfig()
        self._resolver = resolver or ProviderResolver(self._config.models.default_provider)
        self._redactor = redactor or Redactor()

    def redacted_steps(self, trace: ExecutionTrace) -> list[dict]:
        return [
            {
                "tool_id": step.tool_id,
                "success": step.success,
                "result": self._redactor.redact_json(step.result),
                "error": self._redactor.redact(step.error) if step.error else None,
            }
            for step in trace.steps
        ]

    async def summarize(self, trace: ExecutionTrace) -> OutcomeSummary:
        prompt = SUMMARIZER_PROMPT.format(
            steps=json.dumps(self.redacted_steps(trace), indent=2, default=str)
        )
        model = self._config.models.summarizer
        try:
            summary, _ = await complete_json(
                self._service,
                prompt,
                parse_outcome_summary,
                component="OutcomeSummarizer",
                retry=self._config.features.retry_on_parse_failure,
                request_type="outcome_summary",
                provider=self._resolver.resolve(model),
                model=model,
                temperature=0.1,
                max_tokens=800,
                system=SUMMARIZER_SYSTEM,
            )
        except Exception as e:
            logger.warning(
                "Summarization failed, using deterministic summary: %s", e,
                extra={"correlation_id": trace.correlation_id},
            )
            return fallback_summary(trace)

        logger.info(
            "Outcome summarized",
            extra={"correlation_id": trace.correlation_id, "confidence": summary.confidence,
                   "key_facts": len(summary.key_facts)},
        )
        return summary
