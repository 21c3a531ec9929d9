"""End-to-end ingestion against a migrated Postgres (skipped without DATABASE_URL)."""

import json
import os
import uuid

import pytest

from convoflow.infra.db import fetchall, fetchone, txn
from convoflow.infra.repositories.pg_store import PostgresStore
from convoflow.ingest.pipeline import IngestPipeline
from convoflow.tasks.client import TasksClient

from conftest import INSTANCE_NAME, update_payload, upsert_payload

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

_TABLES = (
    "conversation_events",
    "messages",
    "conversations",
    "contacts",
    "webhook_deliveries",
    "whatsapp_numbers",
    "workspace_api_keys",
)


@pytest.fixture
def workspace_id():
    ws = f"ws_{uuid.uuid4().hex[:12]}"
    with txn() as cur:
        cur.execute(
            "INSERT INTO workspace_api_keys (api_key, workspace_id) VALUES (%s, %s)",
            (f"key-{ws}", ws),
        )
        cur.execute(
            "INSERT INTO whatsapp_numbers (workspace_id, instance_name) VALUES (%s, %s)",
            (ws, INSTANCE_NAME),
        )
    yield ws
    with txn() as cur:
        for table in _TABLES:
            cur.execute(f"DELETE FROM {table} WHERE workspace_id = %s", (ws,))


@pytest.fixture
def pipeline():
    return IngestPipeline(PostgresStore(), tasks=TasksClient(backend="inline"))


def _post(pipeline, workspace_id, body):
    return pipeline.process_webhook(workspace_id, json.dumps(body), body, {})


def test_api_key_lookup(workspace_id):
    store = PostgresStore()
    assert store.workspace_for_api_key(f"key-{workspace_id}") == workspace_id
    assert store.workspace_for_api_key("missing") is None


def test_message_lifecycle(pipeline, workspace_id):
    first = _post(pipeline, workspace_id, upsert_payload())
    again = _post(pipeline, workspace_id, upsert_payload())
    update = _post(pipeline, workspace_id, update_payload(status="READ"))

    assert first.status == "processed"
    assert again.body == {"ok": True, "idempotent": True}
    assert update.body["updated"] is True

    with txn() as cur:
        messages = fetchall(
            cur,
            "SELECT body, status, is_outgoing FROM messages WHERE workspace_id = %s",
            (workspace_id,),
        )
        conversation = fetchone(
            cur,
            "SELECT is_group, unread_count, remote_jid FROM conversations WHERE workspace_id = %s",
            (workspace_id,),
        )
        contact = fetchone(cur, "SELECT phone, name FROM contacts WHERE workspace_id = %s", (workspace_id,))
        statuses = fetchall(
            cur,
            "SELECT status FROM webhook_deliveries WHERE workspace_id = %s ORDER BY created_at",
            (workspace_id,),
        )

    assert messages == [("Hello", "read", False)]
    assert conversation == (False, 1, "5511999999999@s.whatsapp.net")
    assert contact == ("5511999999999", "Maria")
    assert [row[0] for row in statuses] == ["processed", "processed"]


def test_socket_echo_is_single_row(pipeline, workspace_id):
    result = _post(pipeline, workspace_id, upsert_payload())
    reply = pipeline.process_socket_frame(
        workspace_id,
        "user-1",
        {
            "type": "message",
            "conversationId": result.body["conversationId"],
            "data": {"id": "evt-1", "content": "Hello", "metadata": {"providerMessageId": "WA-1"}},
        },
    )

    assert reply["duplicate"] is True
    with txn() as cur:
        count = fetchone(cur, "SELECT count(*) FROM messages WHERE workspace_id = %s", (workspace_id,))
    assert count == (1,)
