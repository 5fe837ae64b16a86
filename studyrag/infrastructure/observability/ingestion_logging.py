from __future__ import annotations

from typing import Any

from studyrag.core.utils.redaction import redact_secrets


def compact_error(value: Any, *, limit: int = 320) -> str:
    text = redact_secrets(str(value or "")).replace("\n", " ").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def emit_event(logger: Any, event: str, *, level: str = "info", **fields: Any) -> None:
    payload: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None or key == "event":
            continue
        payload[key] = value

    log_fn = getattr(logger, level, None)
    if callable(log_fn):
        log_fn(str(event), **payload)
        return
    logger.info(str(event), **payload)
