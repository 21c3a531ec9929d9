"""Webhook deliveries and workspace API keys.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from psycopg2.extensions import cursor as PgCursor

from convoflow.infra.db import fetchone, insert_returning_id


def workspace_for_api_key(cur: PgCursor, api_key: str) -> str | None:
    row = fetchone(
        cur,
        """
        SELECT workspace_id FROM workspace_api_keys
        WHERE api_key = %s AND is_active = true
        """,
        (api_key,),
    )
    return str(row[0]) if row else None


def insert_delivery(
    cur: PgCursor,
    *,
    workspace_id: str,
    provider: str,
    event_type: str | None,
    instance_name: str | None,
    delivery_key: str,
    payload: Mapping[str, Any],
    headers: Mapping[str, Any],
) -> str | None:
    """Insert a delivery with status 'received'.

    Returns:
        The delivery id, or None if (workspace_id, delivery_key) already exists.
    """
    return insert_returning_id(
        cur,
        """
        INSERT INTO webhook_deliveries (
            workspace_id, provider, event_type, instance_name,
            delivery_key, payload, headers, status
        )
        VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, 'received')
        ON CONFLICT (workspace_id, delivery_key) DO NOTHING
        RETURNING id
        """,
        (
            workspace_id,
            provider,
            event_type,
            instance_name,
            delivery_key,
            json.dumps(payload, default=str),
            json.dumps(dict(headers)),
        ),
    )


def mark_delivery(cur: PgCursor, delivery_id: str, status: str, error: str | None) -> None:
    cur.execute(
        """
        UPDATE webhook_deliveries
        SET status = %s, error_message = %s, processed_at = now()
        WHERE id = %s
        """,
        (status, error, delivery_id),
    )
