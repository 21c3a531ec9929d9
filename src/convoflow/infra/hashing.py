"""Delivery key hashing for webhook idempotency."""

import hashlib

UNKNOWN = "unknown"


def sha256_hex(text: str) -> str:
    """Hex sha256 of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_delivery_key(
    provider: str,
    event_type: str | None,
    instance_name: str | None,
    body_text: str,
    provider_event_id: str | None = None,
) -> str:
    """Build the deterministic delivery key for one inbound provider call.

    Format: "{provider}:{event_type}:{instance_name}:{suffix}" where suffix is
    the provider-issued event id when present, else sha256 of the raw body.

    Args:
        provider: Provider name (e.g. "evolution").
        event_type: Normalized event type, None -> "unknown".
        instance_name: Provider instance name, None -> "unknown".
        body_text: Raw request body exactly as received.
        provider_event_id: Provider-issued event id, if any.
    """
    base = f"{provider}:{event_type or UNKNOWN}:{instance_name or UNKNOWN}:"
    if provider_event_id:
        return base + provider_event_id
    return base + sha256_hex(body_text)
