"""Postgres implementation of the ingest store.

Each method runs in its own short transaction via txn().
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from convoflow.infra.db import txn
from convoflow.infra.repositories import deliveries_repository, entities_repository, messages_repository
from convoflow.ingest.models import (
    Contact,
    Conversation,
    Duplicate,
    Inserted,
    InsertResult,
    Instance,
    MediaPatch,
    NewMessage,
    StoredMessage,
)


def _result(new_id: str | None) -> InsertResult:
    return Inserted(new_id) if new_id is not None else Duplicate()


class PostgresStore:
    """IngestStore over psycopg2."""

    def workspace_for_api_key(self, api_key: str) -> str | None:
        with txn() as cur:
            return deliveries_repository.workspace_for_api_key(cur, api_key)

    def insert_delivery(self, **kwargs: Any) -> InsertResult:
        with txn() as cur:
            return _result(deliveries_repository.insert_delivery(cur, **kwargs))

    def mark_delivery(self, delivery_id: str, status: str, error: str | None = None) -> None:
        with txn() as cur:
            deliveries_repository.mark_delivery(cur, delivery_id, status, error)

    def find_instance(self, workspace_id: str, instance_name: str) -> Instance | None:
        with txn() as cur:
            return entities_repository.find_instance(cur, workspace_id, instance_name)

    def update_instance(self, instance_id: str, **fields: Any) -> None:
        with txn() as cur:
            entities_repository.update_instance(cur, instance_id, **fields)

    def find_contact(self, workspace_id: str, phone: str) -> Contact | None:
        with txn() as cur:
            return entities_repository.find_contact(cur, workspace_id, phone)

    def insert_contact(
        self, workspace_id: str, phone: str, name: str | None, avatar_url: str | None
    ) -> InsertResult:
        with txn() as cur:
            return _result(entities_repository.insert_contact(cur, workspace_id, phone, name, avatar_url))

    def update_contact(
        self, contact_id: str, *, name: str | None = None, avatar_url: str | None = None
    ) -> None:
        with txn() as cur:
            entities_repository.update_contact(cur, contact_id, name=name, avatar_url=avatar_url)

    def get_conversation(self, workspace_id: str, conversation_id: str) -> Conversation | None:
        with txn() as cur:
            return entities_repository.get_conversation(cur, workspace_id, conversation_id)

    def find_conversation_by_address(
        self, workspace_id: str, instance_id: str, remote_jid: str
    ) -> Conversation | None:
        with txn() as cur:
            return entities_repository.find_conversation_by_address(cur, workspace_id, instance_id, remote_jid)

    def find_conversation_by_contact(
        self, workspace_id: str, instance_id: str, contact_id: str
    ) -> Conversation | None:
        with txn() as cur:
            return entities_repository.find_conversation_by_contact(cur, workspace_id, instance_id, contact_id)

    def insert_conversation(
        self,
        workspace_id: str,
        instance_id: str,
        contact_id: str,
        remote_jid: str | None,
        is_group: bool,
    ) -> InsertResult:
        with txn() as cur:
            return _result(
                entities_repository.insert_conversation(
                    cur, workspace_id, instance_id, contact_id, remote_jid, is_group
                )
            )

    def backfill_conversation(self, conversation_id: str, remote_jid: str, is_group: bool) -> None:
        with txn() as cur:
            entities_repository.backfill_conversation(cur, conversation_id, remote_jid, is_group)

    def touch_conversation(
        self, conversation_id: str, last_message_at: datetime, increment_unread: bool
    ) -> None:
        with txn() as cur:
            entities_repository.touch_conversation(cur, conversation_id, last_message_at, increment_unread)

    def set_typing(self, workspace_id: str, conversation_id: str, is_typing: bool) -> bool:
        with txn() as cur:
            return entities_repository.set_typing(cur, workspace_id, conversation_id, is_typing)

    def append_conversation_event(
        self,
        workspace_id: str,
        conversation_id: str,
        event_type: str,
        metadata: Mapping[str, Any],
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        with txn() as cur:
            entities_repository.append_conversation_event(
                cur, workspace_id, conversation_id, event_type, metadata, payload
            )

    def insert_message(self, message: NewMessage) -> InsertResult:
        with txn() as cur:
            return _result(messages_repository.insert_message(cur, message))

    def find_message(
        self, workspace_id: str, instance_id: str | None, external_id: str
    ) -> StoredMessage | None:
        with txn() as cur:
            return messages_repository.find_message(cur, workspace_id, instance_id, external_id)

    def update_message(
        self, message_id: str, *, status: str | None = None, media: MediaPatch | None = None
    ) -> None:
        with txn() as cur:
            messages_repository.update_message(cur, message_id, status=status, media=media)
