"""Redaction helpers for safe logging.

Provider payloads carry phone numbers, JIDs and message text. Anything that
came from the provider goes through safe_log_context() before it is logged.
"""

from __future__ import annotations

import re
from typing import Any

# Patterns that should never appear in logs
_JID_PATTERN = re.compile(r"\b[\w.:-]+@(s\.whatsapp\.net|g\.us|lid|c\.us)\b")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact JIDs, phone numbers and emails from a string."""
    result = _JID_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def mask_tail(value: str | None, keep: int = 4) -> str:
    """Keep only the last `keep` characters, e.g. '…9999' for a phone."""
    if not value:
        return "null"
    if len(value) <= keep:
        return "*" * len(value)
    return "…" + value[-keep:]


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
