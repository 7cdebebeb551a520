"""
Regex scrubbing of secrets and PII before data leaves the process
(model prompts, audit records, logs).
"""

from __future__ import annotations

import json
import re
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),  # emails
    re.compile(r"\b[A-Z0-9]{20,}\b"),  # long uppercase/numeric tokens
    re.compile(r"sk-[a-zA-Z0-9_-]{20,}"),  # provider API keys
    re.compile(r"Bearer\s+[a-zA-Z0-9._~+/=-]+"),
]

SENSITIVE_KEYS = frozenset({
    "password", "secret", "token", "api_key", "apikey", "private_key",
    "authorization", "access_token", "refresh_token",
})


class Redactor:
    """Applies the sensitive pattern set to strings and nested data."""

    def __init__(
        self,
        patterns: list[re.Pattern[str]] | None = None,
        sensitive_keys: frozenset[str] = SENSITIVE_KEYS,
    ) -> None:
        self._patterns = patterns if patterns is not None else SENSITIVE_PATTERNS
        self._keys = sensitive_keys

    def redact(self, text: str) -> str:
        for pattern in self._patterns:
            text = pattern.sub(REDACTED, text)
        return text

    def redact_data(self, data: Any) -> Any:
        """Recursively redact every string inside dicts, lists and tuples."""
        if isinstance(data, str):
            return self.redact(data)
        if isinstance(data, dict):
            return {k: self.redact_data(v) for k, v in data.items()}
        if isinstance(data, (list, tuple)):
            return [self.redact_data(v) for v in data]
        return data

    def redact_keys(self, data: Any) -> Any:
        """Replace values stored under sensitive keys, at any depth."""
        if isinstance(data, dict):
            return {
                k: REDACTED if str(k).lower() in self._keys else self.redact_keys(v)
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [self.redact_keys(v) for v in data]
        return data

    def redact_json(self, data: Any) -> Any:
        """Redact a JSON-serializable structure through its serialized form.

        Catches secrets in keys as well as values. Falls back to
        ``redact_data`` when the redacted text no longer parses.
        """
        encoded = json.dumps(data, default=str)
        redacted = self.redact(encoded)
        try:
            return json.loads(redacted)
        except json.JSONDecodeError:
            return self.redact_data(data)
