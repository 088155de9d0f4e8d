import contextvars
import logging
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

# Request id for the current plan execution (async-safe, inherited by child tasks)
REQUEST_ID_CTX: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:8]}"


def set_request_context(request_id: Optional[str] = None) -> contextvars.Token:
    """
    Bind the request id for the current plan execution.

    Args:
        request_id: Correlation id; generated when omitted

    Returns:
        Token for cleanup
    """
    return REQUEST_ID_CTX.set(request_id or new_request_id())


def get_request_id() -> Optional[str]:
    return REQUEST_ID_CTX.get()


def reset_request_context(token: contextvars.Token) -> None:
    """Reset request context when the execution ends."""
    REQUEST_ID_CTX.reset(token)
    logger.debug("Reset request context")


class RequestContextFilter(logging.Filter):
    """Stamp every log record with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get() or "-"
        return True
