"""
Toolgate Turn Router

One low-temperature completion deciding whether the turn needs tools,
and if so what the tools must achieve.
"""

from __future__ import annotations

from toolgate.config import ToolgateConfig
from toolgate.core.models import ContextBundle, RouterDecision
from toolgate.logging import get_logger
from toolgate.orchestration._json import complete_json, parse_json_object
from toolgate.orchestration.prompts import ROUTER_PROMPT, ROUTER_SYSTEM
from toolgate.providers.base import TextCompletionService
from toolgate.providers.resolution import ProviderResolver

logger = get_logger("toolgate.orchestration.router")


def parse_router_decision(text: str) -> RouterDecision:
    data = parse_json_object(text)
    if not isinstance(data.get("needs_tools"), bool):
        raise ValueError("Missing or invalid needs_tools field")
    return RouterDecision(
        needs_tools=data["needs_tools"],
        high_level_goal=str(data.get("high_level_goal") or ""),
        rationale=str(data.get("rationale") or ""),
    )


class Router:
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
        """(provider, model): session preference first, then configuration."""
        prefs = context.agent_prefs
        model = prefs.model_name or self._config.models.router
        return self._resolver.resolve(model, prefs.model_provider), model

    async def decide(self, context: ContextBundle) -> RouterDecision:
        provider, model = self.resolve_model(context)
        logger.info(
            "Router model selection",
            extra={"selected_model": model, "selected_provider": provider,
                   "used_session_prefs": context.agent_prefs.model_name is not None},
        )

        prompt = ROUTER_PROMPT.format(
            conversation_summary=context.conversation_summary or "(no prior messages)",
            user_message=context.user_message,
        )
        decision, _ = await complete_json(
            self._service,
            prompt,
            parse_router_decision,
            component="Router",
            retry=self._config.features.retry_on_parse_failure,
            request_type="tool_routing",
            provider=provider,
            model=model,
            temperature=0.1,
            max_tokens=500,
            system=ROUTER_SYSTEM,
        )
        logger.info(
            "Router decision made",
            extra={"needs_tools": decision.needs_tools, "goal": decision.high_level_goal},
        )
        return decision
