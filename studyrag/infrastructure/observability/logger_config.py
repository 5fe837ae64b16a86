import logging

import structlog
from structlog.contextvars import merge_contextvars

from studyrag.core.settings import settings
from studyrag.core.utils.redaction import redact_event_dict
from studyrag.infrastructure.observability.context_vars import get_document_id, get_user_id
from studyrag.infrastructure.observability.correlation import CorrelationLogFilter, get_correlation_id


def add_context_vars(_, __, event_dict):
    """
    Processor to inject ContextVars into the log event.
    """
    cid = get_correlation_id()
    if cid and cid != "unknown":
        event_dict["correlation_id"] = cid

    trace = {
        "user_id": get_user_id(),
        "document_id": get_document_id(),
    }
    existing_trace = event_dict.get("trace", {})
    if isinstance(existing_trace, dict):
        trace.update(existing_trace)
    event_dict["trace"] = {k: v for k, v in trace.items() if v is not None}

    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")

    return event_dict


def configure_structlog():
    """
    Configures structlog to emit JSON lines through the stdlib logging handler.
    """
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationLogFilter())
    handler.setFormatter(
        logging.Formatter(
            " [%(asctime)s] [%(levelname)s] [trace_id=%(correlation_id)s] %(name)s: %(message)s"
        )
    )

    log_level = getattr(logging, str(settings.LOG_LEVEL or "INFO").upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=log_level, handlers=[handler])

    processors = [
        merge_contextvars,
        add_context_vars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_event_dict,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
