"""Rows and result types exchanged with the ingest store."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping, Union

DeliveryStatus = Literal["received", "processed", "ignored", "failed"]


@dataclass(frozen=True)
class Inserted:
    """The insert wrote a new row."""

    id: str


@dataclass(frozen=True)
class Duplicate:
    """The insert hit its unique constraint; nothing was written."""

    pass


InsertResult = Union[Inserted, Duplicate]


@dataclass(frozen=True)
class DeliveryReceipt:
    delivery_id: str | None
    is_duplicate: bool


@dataclass(frozen=True)
class Instance:
    id: str
    workspace_id: str
    instance_name: str
    status: str
    phone_number: str | None = None


@dataclass(frozen=True)
class Contact:
    id: str
    workspace_id: str
    phone: str
    name: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class Conversation:
    id: str
    workspace_id: str
    contact_id: str | None
    whatsapp_number_id: str | None
    remote_jid: str | None
    is_group: bool = False


@dataclass(frozen=True)
class ConversationRef:
    id: str
    created: bool


@dataclass(frozen=True)
class NewMessage:
    """Column values for one messages row."""

    workspace_id: str
    conversation_id: str
    whatsapp_number_id: str | None
    external_id: str | None
    is_outgoing: bool
    body: str
    type: str
    status: str
    sender_jid: str | None = None
    media_url: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    duration_ms: int | None = None
    reply_to_id: str | None = None
    quoted_message: Mapping[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class StoredMessage:
    id: str
    conversation_id: str
    status: str
    media_url: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class MediaPatch:
    """Media columns to fill in; only NULL columns are written."""

    media_url: str | None = None
    media_path: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None

    def is_empty(self) -> bool:
        return not any((self.media_url, self.media_path, self.mime_type, self.size_bytes))


@dataclass(frozen=True)
class IngestOutcome:
    message_id: str | None
    duplicate: bool


@dataclass(frozen=True)
class UpdateOutcome:
    updated: bool
    not_found: bool
    message_id: str | None = None


@dataclass
class ProcessResult:
    """What a transport needs to build its response."""

    status: DeliveryStatus
    http_status: int = 200
    body: dict[str, Any] = field(default_factory=lambda: {"ok": True})
