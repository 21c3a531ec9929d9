"""Normalized inbound WhatsApp events.

Every provider payload shape (Evolution webhook envelope, socket frame) is
turned into exactly one of these frozen dataclasses before anything else
touches it. Downstream code never sees raw provider dicts, except the opaque
`message_key` that the media API needs back verbatim.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Literal, Mapping, Union

ConnectionStatus = Literal["connected", "pairing", "disconnected", "error"]
MessageKind = Literal["text", "image", "video", "audio", "document", "sticker"]
MessageStatus = Literal["sending", "sent", "delivered", "read", "failed"]
Direction = Literal["incoming", "outgoing"]

MEDIA_KINDS: frozenset[str] = frozenset({"image", "video", "audio", "document", "sticker"})

EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_QRCODE_UPDATED = "qrcode.updated"
EVENT_MESSAGES_UPSERT = "messages.upsert"
EVENT_MESSAGES_UPDATE = "messages.update"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Instance connection state changed."""

    kind: ClassVar[str] = EVENT_CONNECTION_UPDATE

    instance_name: str | None
    status: ConnectionStatus
    status_raw: str | None
    phone: str | None = None
    last_qr: str | None = None


@dataclass(frozen=True)
class QrUpdate:
    """New pairing QR (base64 image or raw code) for an instance."""

    kind: ClassVar[str] = EVENT_QRCODE_UPDATED

    instance_name: str | None
    qr: str | None


@dataclass(frozen=True)
class MediaInfo:
    """Media metadata carried by the payload itself (not the stored file)."""

    mime_type: str | None = None
    size_bytes: int | None = None
    duration_ms: int | None = None
    file_name: str | None = None


@dataclass(frozen=True)
class MessageUpsert:
    """A new message (incoming or outgoing) on a conversation thread.

    `remote_address` is the thread JID (group JID for groups); `sender_address`
    is the real author (participant in groups). `contact_address` is the key
    the contact is resolved by: normalized phone digits, or a `lid:` placeholder
    when the sender is only known by a LID.
    """

    kind: ClassVar[str] = EVENT_MESSAGES_UPSERT

    instance_name: str | None
    remote_address: str | None
    is_group: bool
    sender_address: str | None
    contact_address: str | None
    external_id: str | None
    direction: Direction
    body: str
    message_kind: MessageKind
    needs_media: bool = False
    push_name: str | None = None
    status: MessageStatus | None = None
    sent_at: datetime | None = None
    media: MediaInfo | None = None
    media_url: str | None = None
    message_key: Mapping[str, Any] | None = None
    reply_to_external_id: str | None = None
    quoted_message: Mapping[str, Any] | None = None
    # Socket path only: thread already known by id, event id for dedup
    conversation_id: str | None = None
    client_event_id: str | None = None

    @property
    def is_incoming(self) -> bool:
        return self.direction == "incoming"


@dataclass(frozen=True)
class MessageUpdate:
    """Status (ack) change, or late media, for an existing message."""

    kind: ClassVar[str] = EVENT_MESSAGES_UPDATE

    instance_name: str | None
    external_id: str
    status: MessageStatus | None
    status_raw: str | None
    remote_address: str | None = None
    media_url: str | None = None
    mime_type: str | None = None
    client_event_id: str | None = None


@dataclass(frozen=True)
class IgnoredEvent:
    """Anything we do not handle. Still recorded and marked `ignored`."""

    kind: ClassVar[str] = "ignored"

    event_type: str | None
    reason: str
    details: Mapping[str, Any] = field(default_factory=dict)


NormalizedEvent = Union[ConnectionUpdate, QrUpdate, MessageUpsert, MessageUpdate]
