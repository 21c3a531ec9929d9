"""Messages repository.

Uses raw SQL with psycopg2 (no ORM). Only status and still-NULL media
columns are ever updated.
"""

from __future__ import annotations

import json

from psycopg2.extensions import cursor as PgCursor

from convoflow.infra.db import fetchone, insert_returning_id
from convoflow.ingest.models import MediaPatch, NewMessage, StoredMessage


def insert_message(cur: PgCursor, message: NewMessage) -> str | None:
    """Insert a message.

    Returns:
        The message id, or None when (workspace_id, whatsapp_number_id,
        external_id) already exists.
    """
    return insert_returning_id(
        cur,
        """
        INSERT INTO messages (
            workspace_id, conversation_id, whatsapp_number_id, external_id,
            is_outgoing, body, type, status, sender_jid,
            media_url, mime_type, size_bytes, duration_ms,
            reply_to_id, quoted_message, created_at
        )
        VALUES (
            %s, %s, %s, %s,
            %s, %s, %s, %s, %s,
            %s, %s, %s, %s,
            %s, %s::jsonb, COALESCE(%s, now())
        )
        ON CONFLICT (workspace_id, whatsapp_number_id, external_id) DO NOTHING
        RETURNING id
        """,
        (
            message.workspace_id,
            message.conversation_id,
            message.whatsapp_number_id,
            message.external_id,
            message.is_outgoing,
            message.body,
            message.type,
            message.status,
            message.sender_jid,
            message.media_url,
            message.mime_type,
            message.size_bytes,
            message.duration_ms,
            message.reply_to_id,
            json.dumps(message.quoted_message) if message.quoted_message is not None else None,
            message.created_at,
        ),
    )


def find_message(
    cur: PgCursor, workspace_id: str, instance_id: str | None, external_id: str
) -> StoredMessage | None:
    row = fetchone(
        cur,
        """
        SELECT id, conversation_id, status, media_url, mime_type
        FROM messages
        WHERE workspace_id = %s
          AND whatsapp_number_id IS NOT DISTINCT FROM %s
          AND external_id = %s
        """,
        (workspace_id, instance_id, external_id),
    )
    if row is None:
        return None
    return StoredMessage(
        id=str(row[0]),
        conversation_id=str(row[1]),
        status=row[2],
        media_url=row[3],
        mime_type=row[4],
    )


def update_message(
    cur: PgCursor, message_id: str, *, status: str | None = None, media: MediaPatch | None = None
) -> None:
    media = media or MediaPatch()
    cur.execute(
        """
        UPDATE messages
        SET status = COALESCE(%s, status),
            media_url = COALESCE(media_url, %s),
            media_path = COALESCE(media_path, %s),
            mime_type = COALESCE(mime_type, %s),
            size_bytes = COALESCE(size_bytes, %s)
        WHERE id = %s
        """,
        (status, media.media_url, media.media_path, media.mime_type, media.size_bytes, message_id),
    )
