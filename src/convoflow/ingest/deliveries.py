"""Delivery store - durable, idempotent log of inbound provider calls."""

from __future__ import annotations

from typing import Any, Mapping

from convoflow.infra.hashing import make_delivery_key
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .models import DeliveryReceipt, Duplicate
from .store import IngestStore

logger = get_logger(__name__)

__all__ = ["make_delivery_key", "mark_delivery", "record_delivery", "safe_headers"]

# Never persisted with the delivery
_SENSITIVE_HEADERS = frozenset({"x-api-key", "apikey", "authorization", "cookie"})


def safe_headers(headers: Mapping[str, Any]) -> dict[str, str]:
    """Request headers minus credentials, for the audit row."""
    return {
        str(k).lower(): str(v)
        for k, v in headers.items()
        if str(k).lower() not in _SENSITIVE_HEADERS
    }


def record_delivery(
    store: IngestStore,
    *,
    workspace_id: str,
    provider: str,
    event_type: str | None,
    instance_name: str | None,
    delivery_key: str,
    payload: Mapping[str, Any],
    headers: Mapping[str, Any],
) -> DeliveryReceipt:
    """Insert the delivery row with status 'received'.

    A conflict on (workspace_id, delivery_key) is not an error: the receipt
    comes back with is_duplicate=True. Any other failure propagates.
    """
    result = store.insert_delivery(
        workspace_id=workspace_id,
        provider=provider,
        event_type=event_type,
        instance_name=instance_name,
        delivery_key=delivery_key,
        payload=payload,
        headers=safe_headers(headers),
    )
    if isinstance(result, Duplicate):
        logger.info(
            "duplicate delivery",
            extra={"extra_fields": safe_log_context(event_type=event_type, instance=instance_name)},
        )
        return DeliveryReceipt(delivery_id=None, is_duplicate=True)
    return DeliveryReceipt(delivery_id=result.id, is_duplicate=False)


def mark_delivery(
    store: IngestStore,
    delivery_id: str | None,
    status: str,
    error: str | None = None,
) -> None:
    """Set the terminal status. Best effort: failures are logged, not raised."""
    if not delivery_id:
        return
    try:
        store.mark_delivery(delivery_id, status, error)
    except Exception:
        logger.exception(
            "failed to mark delivery",
            extra={"extra_fields": safe_log_context(delivery_id=delivery_id, status=status)},
        )
