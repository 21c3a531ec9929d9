"""Ingest pipeline shared by the webhook and socket transports.

Webhook: delivery store (idempotency gate) -> normalizer -> resolver ->
ingestor -> (async) media side-channel.
Socket: dedup cache (atomic claim, the idempotency gate) -> conversation
lookup -> normalizer -> same downstream.
"""

import os
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

from convoflow.infra.time import utc_now
from convoflow.observability.correlation import bind_delivery_id, reset_delivery_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.storage.object_storage import StorageService, get_s3_storage
from convoflow.tasks.client import TasksClient
from convoflow.whatsapp import evolution_adapter
from convoflow.whatsapp.evolution_adapter import PROVIDER, InvalidPayloadError
from convoflow.whatsapp.evolution_client import EvolutionClient, client_from_env
from convoflow.whatsapp.jid import is_placeholder_address
from convoflow.whatsapp.models import (
    MEDIA_KINDS,
    ConnectionUpdate,
    IgnoredEvent,
    MessageUpdate,
    MessageUpsert,
    QrUpdate,
)

from .dedup import RealtimeDedupCache
from .deliveries import make_delivery_key, mark_delivery, record_delivery
from .ingestor import apply_update, ingest_upsert
from .media import schedule_avatar_refresh, schedule_media_fetch
from .models import ProcessResult
from .resolver import GROUP_PARTICIPANT_NAME, resolve_contact, resolve_conversation, resolve_instance
from .store import IngestStore

logger = get_logger(__name__)

SOCKET_FRAME_TYPES = ("subscribe", "message", "messageStatus", "conversation", "typing")

# delivery error_message column is bounded
_MAX_ERROR_LEN = 500


class SocketFrame(BaseModel):
    """Client frame envelope. Unknown keys are tolerated."""

    type: str
    conversationId: str | None = None
    data: dict[str, Any] | None = None


def _ignored(reason: str, http_status: int = 200, **extra: Any) -> ProcessResult:
    body: dict[str, Any] = {"ok": http_status < 400, "ignored": True, "reason": reason}
    body.update(extra)
    return ProcessResult(status="ignored", http_status=http_status, body=body)


def _processed(**extra: Any) -> ProcessResult:
    return ProcessResult(status="processed", body={"ok": True, **extra})


class IngestPipeline:
    """Orchestrates both ingestion paths over one store."""

    def __init__(
        self,
        store: IngestStore,
        tasks: TasksClient | None = None,
        evolution: EvolutionClient | None = None,
        storage: StorageService | None = None,
        dedup: RealtimeDedupCache | None = None,
    ) -> None:
        self.store = store
        self.tasks = tasks or TasksClient()
        self.evolution = evolution
        self.storage = storage
        self.dedup = dedup or RealtimeDedupCache()

    @classmethod
    def from_env(cls, store: IngestStore) -> "IngestPipeline":
        """Wire the pipeline from the environment.

        Side-channel tasks run on the thread pool unless TASKS_BACKEND=inline.
        """
        return cls(
            store,
            tasks=TasksClient(backend=os.environ.get("TASKS_BACKEND", "thread")),
            evolution=client_from_env(),
            storage=get_s3_storage(),
            dedup=RealtimeDedupCache.from_env(),
        )

    # ------------------------------------------------------------------
    # Webhook path
    # ------------------------------------------------------------------

    def process_webhook(
        self,
        workspace_id: str,
        body_text: str,
        body: Any,
        headers: Mapping[str, Any],
    ) -> ProcessResult:
        """Record, normalize and apply one webhook delivery.

        Raises:
            InvalidPayloadError: Body is not a JSON object (no delivery row).
        """
        envelope = evolution_adapter.extract_envelope(body)
        delivery_key = make_delivery_key(
            PROVIDER,
            envelope.event_type,
            envelope.instance_name,
            body_text,
            evolution_adapter.provider_event_id(envelope.event_type, envelope.data),
        )

        receipt = record_delivery(
            self.store,
            workspace_id=workspace_id,
            provider=PROVIDER,
            event_type=envelope.event_type,
            instance_name=envelope.instance_name,
            delivery_key=delivery_key,
            payload=body,
            headers=headers,
        )
        if receipt.is_duplicate:
            return ProcessResult(status="processed", body={"ok": True, "idempotent": True})

        token = bind_delivery_id(receipt.delivery_id)
        try:
            event = evolution_adapter.normalize(body)
            result = self._dispatch(workspace_id, event)
        except Exception as e:
            logger.exception(
                "webhook processing failed",
                extra={"extra_fields": safe_log_context(event_type=envelope.event_type)},
            )
            mark_delivery(self.store, receipt.delivery_id, "failed", f"{type(e).__name__}: {e}"[:_MAX_ERROR_LEN])
            return ProcessResult(
                status="failed",
                http_status=500,
                body={"ok": False, "error": "internal error"},
            )
        else:
            mark_delivery(
                self.store,
                receipt.delivery_id,
                result.status,
                result.body.get("reason") if result.status == "ignored" else None,
            )
            return result
        finally:
            reset_delivery_id(token)

    def _dispatch(self, workspace_id: str, event: Any) -> ProcessResult:
        if isinstance(event, IgnoredEvent):
            logger.info(
                "event ignored",
                extra={"extra_fields": safe_log_context(event_type=event.event_type, reason=event.reason)},
            )
            return _ignored(event.reason)
        if isinstance(event, ConnectionUpdate):
            return self._handle_connection(workspace_id, event)
        if isinstance(event, QrUpdate):
            return self._handle_qr(workspace_id, event)
        if isinstance(event, MessageUpsert):
            return self._handle_upsert(workspace_id, event)
        if isinstance(event, MessageUpdate):
            return self._handle_update(workspace_id, event)
        raise TypeError(f"unexpected event type: {type(event).__name__}")

    def _handle_connection(self, workspace_id: str, event: ConnectionUpdate) -> ProcessResult:
        instance = resolve_instance(self.store, workspace_id, event.instance_name)
        if instance is None:
            return _ignored("instance not found")

        connected = event.status == "connected"
        self.store.update_instance(
            instance.id,
            status=event.status,
            phone_number=event.phone,
            last_qr=event.last_qr,
            is_active=True if connected else (False if event.status in ("disconnected", "error") else None),
            last_connected_at=utc_now() if connected else None,
        )
        logger.info(
            "instance status updated",
            extra={"extra_fields": safe_log_context(instance=instance.instance_name, status=event.status)},
        )
        return _processed(status=event.status)

    def _handle_qr(self, workspace_id: str, event: QrUpdate) -> ProcessResult:
        instance = resolve_instance(self.store, workspace_id, event.instance_name)
        if instance is None:
            return _ignored("instance not found")
        if not event.qr:
            logger.info("qr update without qr", extra={"extra_fields": {"instance": instance.instance_name}})
            return _processed(qr=False)

        self.store.update_instance(instance.id, status="pairing", last_qr=event.qr)
        return _processed(qr=True)

    def _handle_upsert(self, workspace_id: str, event: MessageUpsert) -> ProcessResult:
        instance = resolve_instance(self.store, workspace_id, event.instance_name)
        if instance is None:
            return _ignored("instance not found", http_status=422)

        address = event.contact_address
        name_hint = event.push_name
        if name_hint is None and event.is_group and is_placeholder_address(address):
            name_hint = GROUP_PARTICIPANT_NAME

        contact_id = resolve_contact(self.store, workspace_id, address, name_hint)
        conversation = resolve_conversation(
            self.store, workspace_id, instance.id, contact_id, event.remote_address
        )
        self.store.append_conversation_event(
            workspace_id,
            conversation.id,
            event.kind,
            {
                "senderJid": event.sender_address,
                "conversationType": "group" if event.is_group else "dm",
                "providerEventId": event.external_id,
            },
        )

        outcome = ingest_upsert(self.store, workspace_id, instance.id, conversation.id, event)

        if outcome.message_id and event.needs_media and event.message_key and event.message_kind in MEDIA_KINDS:
            schedule_media_fetch(
                self.tasks,
                self.store,
                self.evolution,
                self.storage,
                workspace_id=workspace_id,
                instance_name=instance.instance_name,
                message_id=outcome.message_id,
                message_key=event.message_key,
                media_kind=event.message_kind,
            )

        if event.is_incoming and not event.is_group and not is_placeholder_address(address):
            schedule_avatar_refresh(
                self.tasks,
                self.store,
                self.evolution,
                self.storage,
                workspace_id=workspace_id,
                instance_name=instance.instance_name,
                contact_id=contact_id,
                phone=address,
            )

        if outcome.duplicate:
            return _processed(duplicate=True, conversationId=conversation.id)
        return _processed(conversationId=conversation.id, messageId=outcome.message_id)

    def _handle_update(self, workspace_id: str, event: MessageUpdate) -> ProcessResult:
        instance = resolve_instance(self.store, workspace_id, event.instance_name)
        if instance is None:
            return _ignored("instance not found", http_status=422)

        outcome = apply_update(self.store, workspace_id, instance.id, event)
        if outcome.not_found:
            return _ignored("message not found", messageNotFound=True)
        return _processed(updated=outcome.updated, status=event.status)

    # ------------------------------------------------------------------
    # Socket path
    # ------------------------------------------------------------------

    def process_socket_frame(
        self,
        workspace_id: str,
        user_id: str | None,
        frame: Any,
    ) -> dict[str, Any]:
        """Apply one client frame and return the reply frame.

        Replies are {"type": "ack", "event": ..., "ok": ...} or
        {"type": "error", "error": ...}.
        """
        if not isinstance(frame, dict):
            return {"type": "error", "error": "frame must be a JSON object"}

        try:
            parsed = SocketFrame.model_validate(frame)
        except ValidationError as e:
            return {"type": "error", "error": f"invalid frame: {e.error_count()} error(s)"}

        frame_type = parsed.type
        if frame_type not in SOCKET_FRAME_TYPES:
            return {"type": "error", "error": f"unsupported frame type: {frame_type}"}

        conversation_id = parsed.conversationId
        if frame_type == "subscribe":
            return {"type": "ack", "event": "subscribe", "ok": True, "conversationId": conversation_id}
        if not conversation_id:
            return {"type": "error", "event": frame_type, "error": "conversationId is required"}

        data = parsed.data or {}
        event_id, external_id = evolution_adapter.socket_dedup_keys(frame_type, data)
        if event_id is not None and not self.dedup.claim(event_id, external_id):
            return {"type": "ack", "event": frame_type, "ok": True, "duplicate": True}

        try:
            reply = self._apply_socket_frame(workspace_id, user_id, frame_type, conversation_id, data)
        except Exception:
            logger.exception(
                "socket frame failed",
                extra={"extra_fields": safe_log_context(frame_type=frame_type)},
            )
            reply = {"type": "error", "event": frame_type, "error": "internal error"}

        # a failed frame may be retried with the same id
        if event_id is not None and reply["type"] == "error":
            self.dedup.release(event_id, external_id)
        return reply

    def _apply_socket_frame(self, workspace_id, user_id, frame_type, conversation_id, data) -> dict[str, Any]:
        conversation = self.store.get_conversation(workspace_id, conversation_id)
        if conversation is None:
            return {"type": "error", "event": frame_type, "error": "conversation not found"}

        if frame_type == "message":
            return self._socket_message(workspace_id, user_id, conversation, data)
        if frame_type == "messageStatus":
            return self._socket_status(workspace_id, conversation, data)
        if frame_type == "typing":
            is_typing = bool(data.get("isTyping"))
            self.store.set_typing(workspace_id, conversation.id, is_typing)
            return {"type": "ack", "event": "typing", "ok": True, "isTyping": is_typing}

        # "conversation" frames carry presentation state only
        return {"type": "ack", "event": frame_type, "ok": True}

    def _socket_message(self, workspace_id, user_id, conversation, data) -> dict[str, Any]:
        event = evolution_adapter.normalize_socket_message(
            data, conversation_id=conversation.id, user_id=user_id
        )
        if isinstance(event, IgnoredEvent):
            return {"type": "error", "event": "message", "error": event.reason}

        outcome = ingest_upsert(
            self.store, workspace_id, conversation.whatsapp_number_id, conversation.id, event
        )
        return {
            "type": "ack",
            "event": "message",
            "ok": True,
            "id": event.client_event_id,
            "messageId": outcome.message_id,
            "duplicate": outcome.duplicate,
        }

    def _socket_status(self, workspace_id, conversation, data) -> dict[str, Any]:
        event = evolution_adapter.normalize_socket_status(data)
        if isinstance(event, IgnoredEvent):
            return {"type": "error", "event": "messageStatus", "error": event.reason}

        outcome = apply_update(self.store, workspace_id, conversation.whatsapp_number_id, event)
        return {
            "type": "ack",
            "event": "messageStatus",
            "ok": True,
            "updated": outcome.updated,
            "messageNotFound": outcome.not_found,
        }


__all__ = ["IngestPipeline", "InvalidPayloadError", "SOCKET_FRAME_TYPES"]
