"""Persistence boundary for the ingest pipeline.

Every method is one short transaction. Inserts that can collide with a unique
constraint return Inserted | Duplicate instead of raising.
"""

from datetime import datetime
from typing import Any, Mapping, Protocol

from .models import (
    Contact,
    Conversation,
    InsertResult,
    Instance,
    MediaPatch,
    NewMessage,
    StoredMessage,
)


class IngestStore(Protocol):
    # workspace_api_keys

    def workspace_for_api_key(self, api_key: str) -> str | None: ...

    # webhook_deliveries

    def insert_delivery(
        self,
        *,
        workspace_id: str,
        provider: str,
        event_type: str | None,
        instance_name: str | None,
        delivery_key: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, Any],
    ) -> InsertResult: ...

    def mark_delivery(self, delivery_id: str, status: str, error: str | None = None) -> None: ...

    # whatsapp_numbers

    def find_instance(self, workspace_id: str, instance_name: str) -> Instance | None: ...

    def update_instance(
        self,
        instance_id: str,
        *,
        status: str | None = None,
        phone_number: str | None = None,
        last_qr: str | None = None,
        is_active: bool | None = None,
        last_connected_at: datetime | None = None,
    ) -> None: ...

    # contacts

    def find_contact(self, workspace_id: str, phone: str) -> Contact | None: ...

    def insert_contact(
        self, workspace_id: str, phone: str, name: str | None, avatar_url: str | None
    ) -> InsertResult: ...

    def update_contact(
        self, contact_id: str, *, name: str | None = None, avatar_url: str | None = None
    ) -> None: ...

    # conversations

    def get_conversation(self, workspace_id: str, conversation_id: str) -> Conversation | None: ...

    def find_conversation_by_address(
        self, workspace_id: str, instance_id: str, remote_jid: str
    ) -> Conversation | None: ...

    def find_conversation_by_contact(
        self, workspace_id: str, instance_id: str, contact_id: str
    ) -> Conversation | None: ...

    def insert_conversation(
        self,
        workspace_id: str,
        instance_id: str,
        contact_id: str,
        remote_jid: str | None,
        is_group: bool,
    ) -> InsertResult: ...

    def backfill_conversation(self, conversation_id: str, remote_jid: str, is_group: bool) -> None: ...

    def touch_conversation(
        self, conversation_id: str, last_message_at: datetime, increment_unread: bool
    ) -> None: ...

    def set_typing(self, workspace_id: str, conversation_id: str, is_typing: bool) -> bool: ...

    def append_conversation_event(
        self,
        workspace_id: str,
        conversation_id: str,
        event_type: str,
        metadata: Mapping[str, Any],
        payload: Mapping[str, Any] | None = None,
    ) -> None: ...

    # messages

    def insert_message(self, message: NewMessage) -> InsertResult: ...

    def find_message(
        self, workspace_id: str, instance_id: str | None, external_id: str
    ) -> StoredMessage | None: ...

    def update_message(
        self, message_id: str, *, status: str | None = None, media: MediaPatch | None = None
    ) -> None: ...
