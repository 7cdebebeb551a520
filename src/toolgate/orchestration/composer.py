"""
Toolgate Final Composer

Writes the user-facing reply. Without a summary (no tools were used) it
answers from the conversation directly. With a summary it renders the
outcome through the model, and on any failure falls back to a plain
rendering of the summary.
"""

from __future__ import annotations

import json

from toolgate.config import ToolgateConfig
from toolgate.core.models import ContextBundle, OutcomeSummary
from toolgate.logging import get_logger
from toolgate.orchestration.prompts import (
    COMPOSER_DIRECT_PROMPT,
    COMPOSER_SUMMARY_PROMPT,
    COMPOSER_SYSTEM,
)
from toolgate.providers.base import TextCompletionService
from toolgate.providers.resolution import ProviderResolver

logger = get_logger("toolgate.orchestration.composer")

LOW_CONFIDENCE_THRESHOLD = 0.7
LOW_CONFIDENCE_NOTE = "Note: these results may be incomplete. Please verify the details above."


def render_summary(summary: OutcomeSummary) -> str:
    parts = [summary.short_summary or "The requested tools were run."]
    if summary.key_facts:
        parts.append("Key facts:\n" + "\n".join(f"- {fact}" for fact in summary.key_facts))
    if summary.links:
        parts.append("Links:\n" + "\n".join(f"- {link}" for link in summary.links))
    if summary.confidence < LOW_CONFIDENCE_THRESHOLD:
        parts.append(LOW_CONFIDENCE_NOTE)
    return "\n\n".join(parts)


class FinalComposer:
    def __init__(
        self,
        service: TextCompletionService,
        config: ToolgateConfig | None = None,
        resolver: ProviderResolver | None = None,
    ) -> None:
        self._service = service
        self._config = config or ToolgateConfig()
        self._resolver = resolver or ProviderResolver(self._config.models.default_provider)

    def resolve_model(self, context: ContextBundle) -> tuple[str, str]:
        """(provider, model) used for the reply of this turn."""
        prefs = context.agent_prefs
        model = prefs.model_name or self._config.models.composer
        return self._resolver.resolve(model, prefs.model_provider), model

    async def compose(
        self,
        context: ContextBundle,
        summary: OutcomeSummary | None = None,
        correlation_id: str | None = None,
    ) -> str:
        provider, model = self.resolve_model(context)

        if summary is None:
            prompt = COMPOSER_DIRECT_PROMPT.format(
                conversation_summary=context.conversation_summary or "(no prior messages)",
                user_message=context.user_message,
            )
            completion = await self._service.generate_text(
                prompt,
                request_type="direct_response",
                provider=provider,
                model=model,
                temperature=0.7,
                max_tokens=1500,
                system=COMPOSER_SYSTEM,
            )
            return completion.text.strip()

        prompt = COMPOSER_SUMMARY_PROMPT.format(
            user_message=context.user_message,
            summary=json.dumps(summary.model_dump(), indent=2),
        )
        try:
            completion = await self._service.generate_text(
                prompt,
                request_type="final_composition",
                provider=provider,
                model=model,
                temperature=0.3,
                max_tokens=1500,
                system=COMPOSER_SYSTEM,
            )
        except Exception as e:
            logger.warning(
                "Composition failed, rendering summary directly: %s", e,
                extra={"correlation_id": correlation_id},
            )
            return render_summary(summary)

        text = completion.text.strip()
        if not text:
            logger.warning("Composer returned empty text", extra={"correlation_id": correlation_id})
            return render_summary(summary)
        return text
