"""WhatsApp instances, contacts and conversations.

Uses raw SQL with psycopg2 (no ORM). Every query is scoped by workspace_id
or by a primary key obtained from a workspace-scoped lookup.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from psycopg2.extensions import cursor as PgCursor

from convoflow.infra.db import fetchone, insert_returning_id
from convoflow.ingest.models import Contact, Conversation, Instance

_CONVERSATION_COLUMNS = "id, workspace_id, contact_id, whatsapp_number_id, remote_jid, is_group"


def _conversation(row: tuple | None) -> Conversation | None:
    if row is None:
        return None
    return Conversation(
        id=str(row[0]),
        workspace_id=str(row[1]),
        contact_id=str(row[2]) if row[2] else None,
        whatsapp_number_id=str(row[3]) if row[3] else None,
        remote_jid=row[4],
        is_group=bool(row[5]),
    )


# whatsapp_numbers


def find_instance(cur: PgCursor, workspace_id: str, instance_name: str) -> Instance | None:
    row = fetchone(
        cur,
        """
        SELECT id, workspace_id, instance_name, status, phone_number
        FROM whatsapp_numbers
        WHERE workspace_id = %s AND instance_name = %s
        """,
        (workspace_id, instance_name),
    )
    if row is None:
        return None
    return Instance(
        id=str(row[0]),
        workspace_id=str(row[1]),
        instance_name=row[2],
        status=row[3],
        phone_number=row[4],
    )


def update_instance(
    cur: PgCursor,
    instance_id: str,
    *,
    status: str | None = None,
    phone_number: str | None = None,
    last_qr: str | None = None,
    is_active: bool | None = None,
    last_connected_at: datetime | None = None,
) -> None:
    """Patch the given columns; None leaves a column unchanged."""
    cur.execute(
        """
        UPDATE whatsapp_numbers
        SET status = COALESCE(%s, status),
            phone_number = COALESCE(%s, phone_number),
            last_qr = COALESCE(%s, last_qr),
            is_active = COALESCE(%s, is_active),
            last_connected_at = COALESCE(%s, last_connected_at),
            updated_at = now()
        WHERE id = %s
        """,
        (status, phone_number, last_qr, is_active, last_connected_at, instance_id),
    )


# contacts


def find_contact(cur: PgCursor, workspace_id: str, phone: str) -> Contact | None:
    row = fetchone(
        cur,
        """
        SELECT id, workspace_id, phone, name, avatar_url
        FROM contacts
        WHERE workspace_id = %s AND phone = %s
        """,
        (workspace_id, phone),
    )
    if row is None:
        return None
    return Contact(id=str(row[0]), workspace_id=str(row[1]), phone=row[2], name=row[3], avatar_url=row[4])


def insert_contact(
    cur: PgCursor, workspace_id: str, phone: str, name: str | None, avatar_url: str | None
) -> str | None:
    return insert_returning_id(
        cur,
        """
        INSERT INTO contacts (workspace_id, phone, name, avatar_url)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (workspace_id, phone) DO NOTHING
        RETURNING id
        """,
        (workspace_id, phone, name, avatar_url),
    )


def update_contact(
    cur: PgCursor, contact_id: str, *, name: str | None = None, avatar_url: str | None = None
) -> None:
    """Set name (when given) and avatar (only if still empty)."""
    cur.execute(
        """
        UPDATE contacts
        SET name = COALESCE(%s, name),
            avatar_url = COALESCE(NULLIF(avatar_url, ''), %s),
            updated_at = now()
        WHERE id = %s
        """,
        (name, avatar_url, contact_id),
    )


# conversations


def get_conversation(cur: PgCursor, workspace_id: str, conversation_id: str) -> Conversation | None:
    row = fetchone(
        cur,
        f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE workspace_id = %s AND id = %s",
        (workspace_id, conversation_id),
    )
    return _conversation(row)


def find_conversation_by_address(
    cur: PgCursor, workspace_id: str, instance_id: str, remote_jid: str
) -> Conversation | None:
    row = fetchone(
        cur,
        f"""
        SELECT {_CONVERSATION_COLUMNS} FROM conversations
        WHERE workspace_id = %s AND whatsapp_number_id = %s AND remote_jid = %s
        """,
        (workspace_id, instance_id, remote_jid),
    )
    return _conversation(row)


def find_conversation_by_contact(
    cur: PgCursor, workspace_id: str, instance_id: str, contact_id: str
) -> Conversation | None:
    row = fetchone(
        cur,
        f"""
        SELECT {_CONVERSATION_COLUMNS} FROM conversations
        WHERE workspace_id = %s AND whatsapp_number_id = %s AND contact_id = %s
          AND is_group = false
        ORDER BY created_at
        LIMIT 1
        """,
        (workspace_id, instance_id, contact_id),
    )
    return _conversation(row)


def insert_conversation(
    cur: PgCursor,
    workspace_id: str,
    instance_id: str,
    contact_id: str,
    remote_jid: str | None,
    is_group: bool,
) -> str | None:
    return insert_returning_id(
        cur,
        """
        INSERT INTO conversations (workspace_id, whatsapp_number_id, contact_id, remote_jid, is_group)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (workspace_id, whatsapp_number_id, remote_jid) DO NOTHING
        RETURNING id
        """,
        (workspace_id, instance_id, contact_id, remote_jid, is_group),
    )


def backfill_conversation(cur: PgCursor, conversation_id: str, remote_jid: str, is_group: bool) -> None:
    cur.execute(
        """
        UPDATE conversations
        SET remote_jid = %s, is_group = %s, updated_at = now()
        WHERE id = %s AND remote_jid IS NULL
        """,
        (remote_jid, is_group, conversation_id),
    )


def touch_conversation(
    cur: PgCursor, conversation_id: str, last_message_at: datetime, increment_unread: bool
) -> None:
    cur.execute(
        """
        UPDATE conversations
        SET last_message_at = %s,
            updated_at = now(),
            unread_count = unread_count + %s
        WHERE id = %s
        """,
        (last_message_at, 1 if increment_unread else 0, conversation_id),
    )


def set_typing(cur: PgCursor, workspace_id: str, conversation_id: str, is_typing: bool) -> bool:
    cur.execute(
        """
        UPDATE conversations SET is_typing = %s, updated_at = now()
        WHERE workspace_id = %s AND id = %s
        """,
        (is_typing, workspace_id, conversation_id),
    )
    return cur.rowcount > 0


def append_conversation_event(
    cur: PgCursor,
    workspace_id: str,
    conversation_id: str,
    event_type: str,
    metadata: Mapping[str, Any],
    payload: Mapping[str, Any] | None = None,
) -> None:
    cur.execute(
        """
        INSERT INTO conversation_events (
            workspace_id, conversation_id, provider, event_type,
            provider_event_id, metadata, payload
        )
        VALUES (%s, %s, 'evolution', %s, %s, %s::jsonb, %s::jsonb)
        """,
        (
            workspace_id,
            conversation_id,
            event_type,
            metadata.get("providerEventId"),
            json.dumps(metadata, default=str),
            json.dumps(payload, default=str) if payload is not None else None,
        ),
    )
