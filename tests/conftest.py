"""Shared pytest fixtures for convoflow tests."""
import sys
sys.dont_write_bytecode = True

import itertools  # noqa: E402
from dataclasses import replace  # noqa: E402
from datetime import datetime  # noqa: E402
from typing import Any, Mapping  # noqa: E402

import pytest  # noqa: E402

from convoflow.ingest.models import (  # noqa: E402
    Contact,
    Conversation,
    Duplicate,
    Inserted,
    Instance,
    MediaPatch,
    NewMessage,
    StoredMessage,
)
from convoflow.ingest.pipeline import IngestPipeline  # noqa: E402
from convoflow.tasks.client import TasksClient  # noqa: E402

WORKSPACE_ID = "ws_abcdef01_1234"
INSTANCE_NAME = "main-instance"
API_KEY = "test-api-key"


class FakeStore:
    """In-memory IngestStore with the same unique constraints as the schema."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.api_keys: dict[str, tuple[str, bool]] = {}
        self.deliveries: dict[str, dict] = {}
        self.instances: dict[str, dict] = {}
        self.contacts: dict[str, Contact] = {}
        self.conversations: dict[str, dict] = {}
        self.messages: dict[str, dict] = {}
        self.events: list[dict] = []
        self.fail_on: set[str] = set()

    def _id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise RuntimeError(f"simulated failure in {op}")

    # seeding helpers

    def add_api_key(self, api_key: str, workspace_id: str, is_active: bool = True) -> None:
        self.api_keys[api_key] = (workspace_id, is_active)

    def add_instance(self, workspace_id: str, instance_name: str, status: str = "disconnected") -> str:
        instance_id = self._id("wa")
        self.instances[instance_id] = {
            "id": instance_id,
            "workspace_id": workspace_id,
            "instance_name": instance_name,
            "status": status,
            "phone_number": None,
            "last_qr": None,
            "is_active": False,
            "last_connected_at": None,
        }
        return instance_id

    # workspace_api_keys

    def workspace_for_api_key(self, api_key: str) -> str | None:
        entry = self.api_keys.get(api_key)
        if entry is None or not entry[1]:
            return None
        return entry[0]

    # webhook_deliveries

    def insert_delivery(self, *, workspace_id, provider, event_type, instance_name, delivery_key, payload, headers):
        self._maybe_fail("insert_delivery")
        for row in self.deliveries.values():
            if row["workspace_id"] == workspace_id and row["delivery_key"] == delivery_key:
                return Duplicate()
        delivery_id = self._id("dlv")
        self.deliveries[delivery_id] = {
            "id": delivery_id,
            "workspace_id": workspace_id,
            "provider": provider,
            "event_type": event_type,
            "instance_name": instance_name,
            "delivery_key": delivery_key,
            "payload": payload,
            "headers": dict(headers),
            "status": "received",
            "error_message": None,
            "processed_at": None,
        }
        return Inserted(delivery_id)

    def mark_delivery(self, delivery_id, status, error=None):
        self._maybe_fail("mark_delivery")
        row = self.deliveries[delivery_id]
        row["status"] = status
        row["error_message"] = error
        row["processed_at"] = datetime.now()

    # whatsapp_numbers

    def find_instance(self, workspace_id, instance_name):
        for row in self.instances.values():
            if row["workspace_id"] == workspace_id and row["instance_name"] == instance_name:
                return Instance(
                    id=row["id"],
                    workspace_id=row["workspace_id"],
                    instance_name=row["instance_name"],
                    status=row["status"],
                    phone_number=row["phone_number"],
                )
        return None

    def update_instance(self, instance_id, **fields):
        row = self.instances[instance_id]
        for key, value in fields.items():
            if value is not None:
                row[key] = value

    # contacts

    def find_contact(self, workspace_id, phone):
        for contact in self.contacts.values():
            if contact.workspace_id == workspace_id and contact.phone == phone:
                return contact
        return None

    def insert_contact(self, workspace_id, phone, name, avatar_url):
        if self.find_contact(workspace_id, phone) is not None:
            return Duplicate()
        contact_id = self._id("ct")
        self.contacts[contact_id] = Contact(contact_id, workspace_id, phone, name, avatar_url)
        return Inserted(contact_id)

    def update_contact(self, contact_id, *, name=None, avatar_url=None):
        contact = self.contacts[contact_id]
        if name is not None:
            contact = replace(contact, name=name)
        if avatar_url is not None and not contact.avatar_url:
            contact = replace(contact, avatar_url=avatar_url)
        self.contacts[contact_id] = contact

    # conversations

    def _conversation(self, row: dict | None) -> Conversation | None:
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            workspace_id=row["workspace_id"],
            contact_id=row["contact_id"],
            whatsapp_number_id=row["whatsapp_number_id"],
            remote_jid=row["remote_jid"],
            is_group=row["is_group"],
        )

    def get_conversation(self, workspace_id, conversation_id):
        self._maybe_fail("get_conversation")
        row = self.conversations.get(conversation_id)
        if row is None or row["workspace_id"] != workspace_id:
            return None
        return self._conversation(row)

    def find_conversation_by_address(self, workspace_id, instance_id, remote_jid):
        for row in self.conversations.values():
            if (
                row["workspace_id"] == workspace_id
                and row["whatsapp_number_id"] == instance_id
                and row["remote_jid"] == remote_jid
            ):
                return self._conversation(row)
        return None

    def find_conversation_by_contact(self, workspace_id, instance_id, contact_id):
        for row in self.conversations.values():
            if (
                row["workspace_id"] == workspace_id
                and row["whatsapp_number_id"] == instance_id
                and row["contact_id"] == contact_id
                and not row["is_group"]
            ):
                return self._conversation(row)
        return None

    def insert_conversation(self, workspace_id, instance_id, contact_id, remote_jid, is_group):
        # NULL remote_jid never conflicts
        if remote_jid is not None and self.find_conversation_by_address(workspace_id, instance_id, remote_jid):
            return Duplicate()
        conversation_id = self._id("cv")
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "workspace_id": workspace_id,
            "whatsapp_number_id": instance_id,
            "contact_id": contact_id,
            "remote_jid": remote_jid,
            "is_group": is_group,
            "last_message_at": None,
            "updated_at": None,
            "unread_count": 0,
            "is_typing": False,
        }
        return Inserted(conversation_id)

    def backfill_conversation(self, conversation_id, remote_jid, is_group):
        row = self.conversations[conversation_id]
        if row["remote_jid"] is None:
            row["remote_jid"] = remote_jid
            row["is_group"] = is_group

    def touch_conversation(self, conversation_id, last_message_at, increment_unread):
        row = self.conversations[conversation_id]
        row["last_message_at"] = last_message_at
        row["updated_at"] = datetime.now()
        if increment_unread:
            row["unread_count"] += 1

    def set_typing(self, workspace_id, conversation_id, is_typing):
        row = self.conversations.get(conversation_id)
        if row is None or row["workspace_id"] != workspace_id:
            return False
        row["is_typing"] = is_typing
        return True

    def append_conversation_event(self, workspace_id, conversation_id, event_type, metadata, payload=None):
        self.events.append(
            {
                "workspace_id": workspace_id,
                "conversation_id": conversation_id,
                "event_type": event_type,
                "metadata": dict(metadata),
                "payload": payload,
            }
        )

    # messages

    def insert_message(self, message: NewMessage):
        self._maybe_fail("insert_message")
        if message.external_id is not None:
            for row in self.messages.values():
                if (
                    row["workspace_id"] == message.workspace_id
                    and row["whatsapp_number_id"] == message.whatsapp_number_id
                    and row["external_id"] == message.external_id
                ):
                    return Duplicate()
        message_id = self._id("msg")
        row = {k: getattr(message, k) for k in message.__dataclass_fields__}
        row.update({"id": message_id, "media_path": None})
        self.messages[message_id] = row
        return Inserted(message_id)

    def find_message(self, workspace_id, instance_id, external_id):
        for row in self.messages.values():
            if (
                row["workspace_id"] == workspace_id
                and row["whatsapp_number_id"] == instance_id
                and row["external_id"] == external_id
            ):
                return StoredMessage(
                    id=row["id"],
                    conversation_id=row["conversation_id"],
                    status=row["status"],
                    media_url=row["media_url"],
                    mime_type=row["mime_type"],
                )
        return None

    def update_message(self, message_id, *, status=None, media: MediaPatch | None = None):
        row = self.messages[message_id]
        if status is not None:
            row["status"] = status
        if media is not None:
            for field in ("media_url", "media_path", "mime_type", "size_bytes"):
                value = getattr(media, field)
                if value is not None and row.get(field) is None:
                    row[field] = value

    # test helpers

    def messages_by_external_id(self, external_id: str) -> list[dict]:
        return [row for row in self.messages.values() if row["external_id"] == external_id]


@pytest.fixture
def store() -> FakeStore:
    fake = FakeStore()
    fake.add_api_key(API_KEY, WORKSPACE_ID)
    fake.add_instance(WORKSPACE_ID, INSTANCE_NAME)
    return fake


@pytest.fixture
def instance_id(store) -> str:
    return store.find_instance(WORKSPACE_ID, INSTANCE_NAME).id


@pytest.fixture
def pipeline(store) -> IngestPipeline:
    """Pipeline with inline tasks and no provider/storage configured."""
    return IngestPipeline(store, tasks=TasksClient(backend="inline"))


def upsert_payload(
    *,
    message_id: str = "WA-1",
    remote_jid: str = "5511999999999@s.whatsapp.net",
    text: str | None = "Hello",
    push_name: str | None = "Maria",
    from_me: bool = False,
    message: Mapping[str, Any] | None = None,
    instance: str = INSTANCE_NAME,
    **data_extra: Any,
) -> dict:
    """Evolution messages.upsert body."""
    body = {"conversation": text} if message is None else dict(message)
    data: dict[str, Any] = {
        "key": {"id": message_id, "remoteJid": remote_jid, "fromMe": from_me},
        "message": body,
        "messageTimestamp": 1700000000,
    }
    if push_name is not None:
        data["pushName"] = push_name
    data.update(data_extra)
    return {"event": "messages.upsert", "instance": instance, "data": data}


def update_payload(*, message_id: str = "WA-1", status: str = "READ", instance: str = INSTANCE_NAME) -> dict:
    """Evolution messages.update body."""
    return {
        "event": "messages.update",
        "instance": instance,
        "data": {
            "key": {"id": message_id, "remoteJid": "5511999999999@s.whatsapp.net", "fromMe": True},
            "status": status,
        },
    }


@pytest.fixture
def make_upsert():
    return upsert_payload


@pytest.fixture
def make_update():
    return update_payload
