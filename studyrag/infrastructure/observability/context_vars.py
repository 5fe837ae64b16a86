from contextvars import ContextVar
from typing import Optional

from structlog.contextvars import bind_contextvars

# Context Variables for the calling user and the document being ingested
user_id_ctx: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
document_id_ctx: ContextVar[Optional[str]] = ContextVar("document_id", default=None)


def get_user_id() -> Optional[str]:
    return user_id_ctx.get()


def get_document_id() -> Optional[str]:
    return document_id_ctx.get()


def bind_context(**kwargs):
    """
    Binds the provided key-value pairs to the current structlog context.
    """
    bind_contextvars(**kwargs)
