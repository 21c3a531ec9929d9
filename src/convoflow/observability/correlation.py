"""Correlation and delivery context for request tracing."""

import uuid
from contextvars import ContextVar, Token

# Context variables - accessible across async calls and worker threads started
# with contextvars.copy_context()
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
delivery_id_var: ContextVar[str] = ContextVar("delivery_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


def get_delivery_id() -> str:
    """Get the webhook delivery being processed (empty outside the webhook path)."""
    return delivery_id_var.get()


def bind_delivery_id(delivery_id: str | None) -> Token[str]:
    """Attach a webhook delivery id to every log line emitted in this context."""
    return delivery_id_var.set(delivery_id or "")


def reset_delivery_id(token: Token[str]) -> None:
    delivery_id_var.reset(token)
