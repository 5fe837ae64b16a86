from __future__ import annotations

import re
from typing import Any, Iterable, Optional

REDACTED = "[REDACTED]"

# Query-string credentials as they appear in provider error URLs.
_QUERY_SECRET_PATTERN = re.compile(
    r"([?&](?:key|api_key|apikey|access_token|token)=)[^&\s\"']+",
    re.IGNORECASE,
)
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)


def redact_secrets(text: Any, secrets: Optional[Iterable[str]] = None) -> str:
    """
    Strips credentials from free text. Status codes, provider names and
    error categories are left untouched.
    """
    value = str(text or "")
    if not value:
        return value
    value = _QUERY_SECRET_PATTERN.sub(lambda m: m.group(1) + REDACTED, value)
    value = _BEARER_PATTERN.sub(lambda m: m.group(1) + REDACTED, value)
    if secrets is None:
        from studyrag.core.settings import settings

        secrets = settings.secret_values()
    for secret in secrets:
        if secret:
            value = value.replace(secret, REDACTED)
    return value


def redact_event_dict(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor applying ``redact_secrets`` to string values."""
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = redact_secrets(value)
    return event_dict
