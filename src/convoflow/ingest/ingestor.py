"""Message ingestor - idempotent message writes and conversation summary."""

from __future__ import annotations

from convoflow.infra.time import utc_now
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.whatsapp.models import MessageUpdate, MessageUpsert

from .models import Duplicate, IngestOutcome, MediaPatch, NewMessage, UpdateOutcome
from .store import IngestStore

logger = get_logger(__name__)


def _initial_status(event: MessageUpsert) -> str:
    if event.status:
        return event.status
    return "delivered" if event.is_incoming else "sent"


def ingest_upsert(
    store: IngestStore,
    workspace_id: str,
    instance_id: str | None,
    conversation_id: str,
    event: MessageUpsert,
) -> IngestOutcome:
    """Write one message row and bump the conversation summary.

    A conflict on (workspace, instance, external_id) is a silent duplicate.
    last_message_at is set to processing time either way, so a late event for
    an old message still surfaces the conversation; unread_count only grows
    for a new incoming message.
    """
    reply_to_id = None
    if event.reply_to_external_id:
        quoted = store.find_message(workspace_id, instance_id, event.reply_to_external_id)
        reply_to_id = quoted.id if quoted else None

    media = event.media
    message = NewMessage(
        workspace_id=workspace_id,
        conversation_id=conversation_id,
        whatsapp_number_id=instance_id,
        external_id=event.external_id,
        is_outgoing=not event.is_incoming,
        body=event.body,
        type=event.message_kind,
        status=_initial_status(event),
        sender_jid=event.sender_address,
        media_url=event.media_url,
        mime_type=media.mime_type if media else None,
        size_bytes=media.size_bytes if media else None,
        duration_ms=media.duration_ms if media else None,
        reply_to_id=reply_to_id,
        quoted_message=event.quoted_message,
        created_at=event.sent_at,
    )

    result = store.insert_message(message)
    duplicate = isinstance(result, Duplicate)
    message_id = None if duplicate else result.id

    store.touch_conversation(
        conversation_id,
        last_message_at=utc_now(),
        increment_unread=event.is_incoming and not duplicate,
    )

    log_ctx = safe_log_context(
        conversation_id=conversation_id,
        message_id=message_id,
        message_type=event.message_kind,
        direction=event.direction,
    )
    if duplicate:
        logger.info("duplicate message ignored", extra={"extra_fields": log_ctx})
    else:
        logger.info("message stored", extra={"extra_fields": log_ctx})

    return IngestOutcome(message_id=message_id, duplicate=duplicate)


def apply_update(
    store: IngestStore,
    workspace_id: str,
    instance_id: str | None,
    event: MessageUpdate,
) -> UpdateOutcome:
    """Patch status (and media fields still NULL) of an existing message.

    An update for a message we have not stored yet is ignored; nothing is
    buffered for later.
    """
    stored = store.find_message(workspace_id, instance_id, event.external_id)
    if stored is None:
        logger.info(
            "status update for unknown message",
            extra={"extra_fields": safe_log_context(status=event.status_raw)},
        )
        return UpdateOutcome(updated=False, not_found=True)

    status = event.status if event.status and event.status != stored.status else None
    media = MediaPatch(
        media_url=event.media_url if not stored.media_url else None,
        mime_type=event.mime_type if not stored.mime_type else None,
    )
    if media.is_empty():
        media = None

    if status is None and media is None:
        return UpdateOutcome(updated=False, not_found=False, message_id=stored.id)

    store.update_message(stored.id, status=status, media=media)
    logger.info(
        "message updated",
        extra={"extra_fields": safe_log_context(message_id=stored.id, status=status)},
    )
    return UpdateOutcome(updated=True, not_found=False, message_id=stored.id)
