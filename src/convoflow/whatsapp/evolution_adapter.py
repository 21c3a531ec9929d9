"""Evolution API adapter - validate and normalize inbound payloads.

All provider-specific field names, casing and nesting are resolved here.
The output is always one of the frozen event types in `models`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from convoflow.infra.time import from_provider_timestamp
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .jid import (
    MIN_PHONE_DIGITS,
    is_phone_number,
    lid_placeholder,
    parse_jid,
)
from .models import (
    EVENT_CONNECTION_UPDATE,
    EVENT_MESSAGES_UPDATE,
    EVENT_MESSAGES_UPSERT,
    EVENT_QRCODE_UPDATED,
    ConnectionStatus,
    ConnectionUpdate,
    IgnoredEvent,
    MediaInfo,
    MessageKind,
    MessageStatus,
    MessageUpdate,
    MessageUpsert,
    NormalizedEvent,
    QrUpdate,
)

logger = get_logger(__name__)

PROVIDER = "evolution"

_NON_DIGITS = re.compile(r"\D")


class InvalidPayloadError(Exception):
    """Raised when the payload is not usable at all (not a JSON object)."""

    pass


@dataclass(frozen=True)
class Envelope:
    """Top-level webhook envelope: event type, instance and data object."""

    event_type: str | None
    instance_name: str | None
    data: Mapping[str, Any]


# ---------------------------------------------------------------------------
# Vocabulary tables
# ---------------------------------------------------------------------------

_EVENT_TYPE_ALIASES: dict[str, str] = {
    "CONNECTION_UPDATE": EVENT_CONNECTION_UPDATE,
    "QRCODE_UPDATED": EVENT_QRCODE_UPDATED,
    "MESSAGES_UPSERT": EVENT_MESSAGES_UPSERT,
    "MESSAGES_UPDATE": EVENT_MESSAGES_UPDATE,
}

CONNECTION_STATUS_TABLE: dict[str, ConnectionStatus] = {
    "open": "connected",
    "connected": "connected",
    "authenticated": "connected",
    "connecting": "pairing",
    "qrcode": "pairing",
    "qr": "pairing",
    "waiting": "pairing",
    "pairing": "pairing",
    "close": "disconnected",
    "closed": "disconnected",
    "logout": "disconnected",
    "disconnected": "disconnected",
    "refused": "error",
    "conflict": "error",
    "unauthorized": "error",
    "error": "error",
}

# Baileys ack vocabulary (names and numeric codes) plus our own names
MESSAGE_STATUS_TABLE: dict[str, MessageStatus] = {
    "error": "failed",
    "failed": "failed",
    "0": "failed",
    "pending": "sending",
    "sending": "sending",
    "1": "sending",
    "server_ack": "sent",
    "sent": "sent",
    "2": "sent",
    "delivery_ack": "delivered",
    "delivered": "delivered",
    "3": "delivered",
    "read": "read",
    "4": "read",
    "played": "read",
    "5": "read",
}

# (payload key, kind, caption field, placeholder)
_MEDIA_SHAPES: tuple[tuple[str, MessageKind, str | None, str], ...] = (
    ("audioMessage", "audio", None, "🎤 Audio"),
    ("pttMessage", "audio", None, "🎤 Audio"),
    ("imageMessage", "image", "caption", "📷 Image"),
    ("videoMessage", "video", "caption", "🎥 Video"),
    ("documentMessage", "document", "fileName", "📎 Document"),
    ("stickerMessage", "sticker", None, "🎨 Sticker"),
)

PLACEHOLDERS: dict[str, str] = {kind: label for _, kind, _, label in _MEDIA_SHAPES}


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def safe_string(value: Any) -> str | None:
    """Coerce scalars to str; None, empty strings and containers become None."""
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def _first(*values: Any) -> str | None:
    for value in values:
        text = safe_string(value)
        if text is not None:
            return text
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    # protobuf Long serialized as {"low": .., "high": .., "unsigned": ..}
    if isinstance(value, dict) and isinstance(value.get("low"), int):
        return int(value["low"])
    return None


def normalize_event_type(raw: str | None) -> str | None:
    """Map Evolution's uppercase event names onto the dotted vocabulary."""
    if not raw:
        return None
    event = raw.strip()
    if event in _EVENT_TYPE_ALIASES:
        return _EVENT_TYPE_ALIASES[event]
    return event.lower()


def normalize_phone(raw: str | None) -> str | None:
    """Strip non-digits; fewer than MIN_PHONE_DIGITS digits is unusable (None)."""
    if not raw:
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits


def normalize_connection_status(raw: str | None) -> ConnectionStatus:
    """Map provider connection vocabulary to the 4-state enum. Never raises."""
    if not raw or not isinstance(raw, str):
        return "disconnected"
    key = raw.strip().lower()
    status = CONNECTION_STATUS_TABLE.get(key)
    if status is None:
        logger.warning(
            "unknown connection status",
            extra={"extra_fields": safe_log_context(raw_status=key)},
        )
        return "disconnected"
    return status


def normalize_message_status(raw: Any) -> MessageStatus | None:
    """Map provider status/ack vocabulary to the message status enum.

    Unknown values return None; callers leave the stored status unchanged.
    """
    if raw is None or isinstance(raw, bool):
        return None
    key = str(raw).strip().lower()
    if not key:
        return None
    return MESSAGE_STATUS_TABLE.get(key)


def extract_envelope(body: Mapping[str, Any]) -> Envelope:
    """Pull event type, instance name and data out of the webhook body.

    Raises:
        InvalidPayloadError: If body is not a JSON object.
    """
    if not isinstance(body, dict):
        raise InvalidPayloadError("body must be a JSON object")

    event_type = _first(
        body.get("event"),
        body.get("type"),
        _as_dict(body.get("hook")).get("event"),
        _as_dict(body.get("webhook")).get("event"),
    )

    data: Any = body.get("data", body)
    if isinstance(data, list):
        # Some Evolution versions batch updates; we only take the first entry
        data = next((item for item in data if isinstance(item, dict)), {})
    data = _as_dict(data)

    instance_name = _first(
        body.get("instance"),
        body.get("instanceName"),
        data.get("instance"),
        data.get("instanceName"),
    )

    return Envelope(
        event_type=normalize_event_type(event_type),
        instance_name=instance_name,
        data=data,
    )


def provider_event_id(event_type: str | None, data: Mapping[str, Any]) -> str | None:
    """Provider-issued id used for the delivery key.

    Status updates for one message share the message id, so the status is
    appended for messages.update (delivered and read must not collide).
    """
    key = _as_dict(data.get("key"))
    message_id = _first(
        key.get("id"),
        data.get("keyId"),
        data.get("id"),
        data.get("messageId"),
        _as_dict(_as_dict(data.get("message")).get("key")).get("id"),
    )
    if message_id is None:
        return None
    if event_type == EVENT_MESSAGES_UPDATE:
        status = _status_raw(data)
        if status:
            return f"{message_id}:{status}"
    return message_id


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


def _unwrap_message(message: dict[str, Any]) -> dict[str, Any]:
    """Unwrap ephemeral / view-once / documentWithCaption containers."""
    for wrapper in (
        "ephemeralMessage",
        "viewOnceMessage",
        "viewOnceMessageV2",
        "documentWithCaptionMessage",
    ):
        inner = _as_dict(_as_dict(message.get(wrapper)).get("message"))
        if inner:
            return _unwrap_message(inner)
    return message


def detect_message_kind(
    message: Mapping[str, Any] | None,
) -> tuple[MessageKind, bool, str, MediaInfo | None]:
    """Classify message content.

    Returns:
        (kind, needs_media, fallback_body, media_info). fallback_body follows
        the priority explicit text -> caption/file name -> placeholder; it is
        empty only for text messages without text.
    """
    msg = _unwrap_message(_as_dict(message))

    for field_name, kind, caption_field, placeholder in _MEDIA_SHAPES:
        media = _as_dict(msg.get(field_name))
        if not media and field_name not in msg:
            continue
        caption = safe_string(media.get(caption_field)) if caption_field else None
        seconds = _as_int(media.get("seconds"))
        info = MediaInfo(
            mime_type=safe_string(media.get("mimetype")),
            size_bytes=_as_int(media.get("fileLength")),
            duration_ms=seconds * 1000 if seconds is not None else None,
            file_name=safe_string(media.get("fileName")),
        )
        return kind, True, caption or placeholder, info

    text = _first(
        msg.get("conversation"),
        _as_dict(msg.get("extendedTextMessage")).get("text"),
        msg.get("text"),
    )
    return "text", False, text or "", None


def _context_info(message: Mapping[str, Any] | None) -> dict[str, Any]:
    msg = _unwrap_message(_as_dict(message))
    for value in msg.values():
        if isinstance(value, dict) and isinstance(value.get("contextInfo"), dict):
            return value["contextInfo"]
    return _as_dict(msg.get("contextInfo"))


def _status_raw(data: Mapping[str, Any]) -> str | None:
    return _first(
        data.get("status"),
        data.get("ack"),
        _as_dict(data.get("update")).get("status"),
        _as_dict(data.get("message")).get("status"),
    )


# ---------------------------------------------------------------------------
# Per-event normalizers
# ---------------------------------------------------------------------------


def _normalize_connection(instance_name: str | None, data: Mapping[str, Any]) -> ConnectionUpdate:
    status_raw = _first(data.get("state"), data.get("status"), data.get("connection"))
    phone_raw = _first(
        data.get("phone_number"),
        data.get("number"),
        data.get("wuid"),
        _as_dict(data.get("me")).get("id"),
    )
    if phone_raw:
        # "5511999999999:12@s.whatsapp.net" -> drop device and server parts
        phone_raw = phone_raw.split("@", 1)[0].split(":", 1)[0]

    return ConnectionUpdate(
        instance_name=instance_name,
        status=normalize_connection_status(status_raw),
        status_raw=status_raw,
        phone=normalize_phone(phone_raw),
        last_qr=_first(data.get("qr"), data.get("last_qr")),
    )


def _normalize_qr(instance_name: str | None, data: Mapping[str, Any]) -> QrUpdate:
    qrcode = _as_dict(data.get("qrcode"))
    qr = _first(qrcode.get("base64"), data.get("base64"), qrcode.get("code"), data.get("code"))
    return QrUpdate(instance_name=instance_name, qr=qr)


def _normalize_upsert(
    instance_name: str | None, data: Mapping[str, Any]
) -> MessageUpsert | IgnoredEvent:
    key = _as_dict(data.get("key"))
    message = _as_dict(data.get("message"))
    message_key = _as_dict(message.get("key"))

    remote_jid = _first(
        key.get("remoteJid"),
        data.get("remoteJid"),
        data.get("from"),
        data.get("sender"),
        message_key.get("remoteJid"),
    )
    main = parse_jid(remote_jid)
    if main is None:
        return IgnoredEvent(EVENT_MESSAGES_UPSERT, "missing remoteJid")

    remote_jid_alt = safe_string(key.get("remoteJidAlt"))
    alt = parse_jid(remote_jid_alt)
    participant = _first(key.get("participant"), data.get("participant"), message_key.get("participant"))
    participant_info = parse_jid(participant)

    group = main.type == "group"
    sender_phone: str | None = None
    if group:
        sender_jid = participant or main.raw
        if is_phone_number(participant_info):
            sender_phone = participant_info.digits
    else:
        sender_jid = main.raw
        if is_phone_number(main):
            sender_phone = main.digits
        elif is_phone_number(alt):
            sender_phone = alt.digits

    if sender_phone is not None:
        contact_address = sender_phone
    elif group or main.type == "lid" or (participant_info and participant_info.type == "lid"):
        contact_address = lid_placeholder(sender_jid)
    else:
        # PN/unknown JIDs with too few digits are unusable
        contact_address = None
    if contact_address is None:
        return IgnoredEvent(EVENT_MESSAGES_UPSERT, "unusable sender address")

    from_me = key.get("fromMe") is True
    push_name = None if from_me else _first(
        data.get("pushName"),
        message.get("pushName"),
        _as_dict(data.get("contact")).get("name"),
        _as_dict(data.get("contact")).get("pushname"),
    )

    kind, needs_media, fallback, media = detect_message_kind(message)
    explicit_text = _first(data.get("text"), data.get("body")) if kind == "text" else None
    body = fallback or explicit_text or ""
    if not body:
        # reactions, protocol messages (revokes), polls, ...
        return IgnoredEvent(EVENT_MESSAGES_UPSERT, "unsupported message content")

    status = normalize_message_status(_status_raw(data))
    if not from_me and status in (None, "sending", "sent"):
        status = "delivered"
    elif from_me and status is None:
        status = "sent"

    context = _context_info(message)
    quoted = context.get("quotedMessage")

    return MessageUpsert(
        instance_name=instance_name,
        remote_address=main.raw,
        is_group=group,
        sender_address=sender_jid,
        contact_address=contact_address,
        external_id=_first(key.get("id"), data.get("id"), data.get("messageId"), message_key.get("id")),
        direction="outgoing" if from_me else "incoming",
        body=body,
        message_kind=kind,
        needs_media=needs_media and not from_me and bool(key),
        push_name=push_name,
        status=status,
        sent_at=from_provider_timestamp(
            data.get("messageTimestamp") or message.get("messageTimestamp") or data.get("timestamp")
        ),
        media=media,
        message_key=dict(key) if key else None,
        reply_to_external_id=safe_string(context.get("stanzaId")),
        quoted_message=quoted if isinstance(quoted, dict) else None,
    )


def _normalize_update(
    instance_name: str | None, data: Mapping[str, Any]
) -> MessageUpdate | IgnoredEvent:
    key = _as_dict(data.get("key"))
    external_id = _first(key.get("id"), data.get("keyId"), data.get("id"), data.get("messageId"))
    if external_id is None:
        return IgnoredEvent(EVENT_MESSAGES_UPDATE, "no messageId for status update")

    status_raw = _status_raw(data)
    return MessageUpdate(
        instance_name=instance_name,
        external_id=external_id,
        status=normalize_message_status(status_raw),
        status_raw=status_raw,
        remote_address=_first(key.get("remoteJid"), data.get("remoteJid")),
        media_url=_first(data.get("mediaUrl")),
        mime_type=_first(data.get("mimetype")),
    )


def normalize(body: Mapping[str, Any]) -> NormalizedEvent | IgnoredEvent:
    """Normalize an Evolution webhook body into one internal event.

    Raises:
        InvalidPayloadError: If body is not a JSON object.
    """
    envelope = extract_envelope(body)
    event_type = envelope.event_type
    instance_name = envelope.instance_name
    data = envelope.data

    if event_type == EVENT_CONNECTION_UPDATE:
        return _normalize_connection(instance_name, data)
    if event_type == EVENT_QRCODE_UPDATED:
        return _normalize_qr(instance_name, data)
    if event_type == EVENT_MESSAGES_UPSERT:
        return _normalize_upsert(instance_name, data)
    if event_type == EVENT_MESSAGES_UPDATE:
        return _normalize_update(instance_name, data)

    return IgnoredEvent(event_type, f"Unhandled eventType: {event_type or 'null'}")


# ---------------------------------------------------------------------------
# Socket frames
# ---------------------------------------------------------------------------

_SOCKET_TYPES: dict[str, MessageKind] = {
    "text": "text",
    "image": "image",
    "video": "video",
    "audio": "audio",
    "file": "document",
    "document": "document",
    "sticker": "sticker",
}


def _socket_message_external_id(data: Mapping[str, Any]) -> str | None:
    return _first(_as_dict(data.get("metadata")).get("providerMessageId"), data.get("externalId"))


def _socket_status_external_id(data: Mapping[str, Any]) -> str | None:
    return _first(data.get("providerMessageId"), data.get("externalId"), data.get("messageId"))


def socket_dedup_keys(frame_type: str, data: Any) -> tuple[str | None, str | None]:
    """Dedup keys (event id, external id) of a raw socket frame.

    Read before normalization so the dedup gate runs first. A status event id
    is "<external id>:<status>"; (None, None) means the frame carries no id.
    """
    if not isinstance(data, dict):
        return None, None
    if frame_type == "message":
        return safe_string(data.get("id")), _socket_message_external_id(data)
    if frame_type == "messageStatus":
        external_id = _socket_status_external_id(data)
        if external_id is None:
            return None, None
        status_raw = safe_string(data.get("status"))
        return f"{external_id}:{status_raw or 'unknown'}", None
    return None, None


def normalize_socket_message(
    data: Mapping[str, Any],
    *,
    conversation_id: str,
    user_id: str | None,
) -> MessageUpsert | IgnoredEvent:
    """Normalize a real-time `message` frame into a MessageUpsert.

    The thread is already known (conversation_id). A message is outgoing when
    its sender is the authenticated user or metadata says so.
    """
    if not isinstance(data, dict):
        return IgnoredEvent("message", "frame data must be an object")

    event_id = safe_string(data.get("id"))
    if event_id is None:
        return IgnoredEvent("message", "missing message id")

    metadata = _as_dict(data.get("metadata"))
    direction_hint = safe_string(metadata.get("direction"))
    if direction_hint in ("incoming", "outgoing"):
        outgoing = direction_hint == "outgoing"
    else:
        outgoing = metadata.get("fromMe") is True or (
            user_id is not None and safe_string(data.get("senderId")) == user_id
        )

    kind = _SOCKET_TYPES.get(str(data.get("type") or "text").lower(), "text")
    attachments = data.get("attachments") if isinstance(data.get("attachments"), list) else []
    attachment = _as_dict(attachments[0]) if attachments else {}
    attachment_meta = _as_dict(attachment.get("metadata"))

    media: MediaInfo | None = None
    if kind != "text":
        media = MediaInfo(
            mime_type=_first(attachment_meta.get("mimeType")),
            size_bytes=_as_int(attachment_meta.get("size")),
            duration_ms=_as_int(attachment_meta.get("durationMs")),
            file_name=_first(attachment_meta.get("filename")),
        )

    body = _first(data.get("content"))
    if body is None and media is not None:
        body = media.file_name or PLACEHOLDERS.get(kind)
    if not body:
        return IgnoredEvent("message", "empty message")

    status = normalize_message_status(data.get("status"))
    if status is None:
        status = "sent" if outgoing else "delivered"

    return MessageUpsert(
        instance_name=None,
        remote_address=None,
        is_group=False,
        sender_address=safe_string(data.get("senderId")),
        contact_address=None,
        external_id=_socket_message_external_id(data),
        direction="outgoing" if outgoing else "incoming",
        body=body,
        message_kind=kind,
        needs_media=False,
        status=status,
        sent_at=None,
        media=media,
        media_url=_first(attachment.get("url")),
        reply_to_external_id=None,
        conversation_id=conversation_id,
        client_event_id=event_id,
    )


def normalize_socket_status(data: Mapping[str, Any]) -> MessageUpdate | IgnoredEvent:
    """Normalize a real-time `messageStatus` frame into a MessageUpdate."""
    if not isinstance(data, dict):
        return IgnoredEvent("messageStatus", "frame data must be an object")

    external_id = _socket_status_external_id(data)
    if external_id is None:
        return IgnoredEvent("messageStatus", "missing message id")

    status_raw = safe_string(data.get("status"))
    return MessageUpdate(
        instance_name=None,
        external_id=external_id,
        status=normalize_message_status(status_raw),
        status_raw=status_raw,
        client_event_id=f"{external_id}:{status_raw or 'unknown'}",
    )
