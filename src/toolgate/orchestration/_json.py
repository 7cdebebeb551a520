"""Strict JSON parsing of model output, with one optional retry."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any, TypeVar

from toolgate.core.models import Completion
from toolgate.exceptions import MalformedOutputError
from toolgate.logging import get_logger
from toolgate.providers.base import TextCompletionService

logger = get_logger("toolgate.orchestration")

T = TypeVar("T")

RETRY_INSTRUCTION = "\n\nIMPORTANT: Respond with ONLY valid JSON, no additional text or formatting."

_FENCE = re.compile(r"^```[a-zA-Z]*\s*", re.MULTILINE)


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse ``text`` as a JSON object. Raises ValueError otherwise."""
    data = json.loads(strip_code_fences(text))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


async def complete_json(
    service: TextCompletionService,
    prompt: str,
    parse: Callable[[str], T],
    *,
    component: str,
    retry: bool,
    **options: Any,
) -> tuple[T, Completion]:
    """Ask for JSON and parse it with ``parse``.

    ``parse`` raises ValueError on bad output. With ``retry`` the prompt
    is sent once more with an explicit JSON-only instruction; a second
    failure (or any failure without ``retry``) raises MalformedOutputError.
    """
    completion = await service.generate_text(prompt, **options)
    try:
        return parse(completion.text), completion
    except ValueError as e:
        if not retry:
            raise MalformedOutputError(component, f"invalid JSON: {e}", raw=completion.text) from e
        logger.warning(
            "%s returned invalid JSON, retrying with explicit instruction", component,
            extra={"component": component, "parse_error": str(e)},
        )

    completion = await service.generate_text(prompt + RETRY_INSTRUCTION, **options)
    try:
        return parse(completion.text), completion
    except ValueError as e:
        raise MalformedOutputError(
            component, f"invalid JSON after retry: {e}", raw=completion.text
        ) from e
