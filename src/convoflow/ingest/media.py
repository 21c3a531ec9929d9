"""Media side-channel - best-effort fetch of remote media into object storage.

Nothing here raises into the request path: every failure is logged and the
message simply keeps its placeholder body.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from convoflow.infra.time import epoch_ms
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import mask_tail, safe_log_context
from convoflow.storage.object_storage import StorageService
from convoflow.tasks.client import TasksClient
from convoflow.whatsapp.evolution_client import EvolutionClient

from .models import MediaPatch
from .store import IngestStore

logger = get_logger(__name__)

EXTENSIONS: dict[str, str] = {
    "audio": "ogg",
    "image": "jpg",
    "video": "mp4",
    "document": "pdf",
    "sticker": "webp",
}

# Temporary, token-signed WhatsApp CDN hosts
_WHATSAPP_CDN_HOSTS = ("pps.whatsapp.net", "mmg.whatsapp.net")


@dataclass(frozen=True)
class StoredMedia:
    url: str
    path: str
    mime_type: str | None
    size_bytes: int


def media_path(workspace_id: str, media_kind: str) -> str:
    """Object key: {workspace}/{kind}/{epoch_ms}-{uuid}.{ext}."""
    ext = EXTENSIONS.get(media_kind, "bin")
    return f"{workspace_id}/{media_kind}/{epoch_ms()}-{uuid.uuid4()}.{ext}"


def avatar_path(workspace_id: str, phone: str) -> str:
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"avatars/{workspace_id}/{digits}_{epoch_ms()}.jpg"


def is_whatsapp_cdn_url(url: str | None) -> bool:
    return bool(url) and any(host in url for host in _WHATSAPP_CDN_HOSTS)


def fetch_and_store(
    client: EvolutionClient | None,
    storage: StorageService | None,
    instance_name: str,
    message_key: Mapping[str, Any],
    media_kind: str,
    workspace_id: str,
) -> StoredMedia | None:
    """Download message media from the provider and upload it to storage.

    Returns:
        StoredMedia, or None on any failure (never raises).
    """
    log_ctx = safe_log_context(instance=instance_name, media_kind=media_kind)
    if client is None or storage is None:
        logger.info("media side-channel not configured", extra={"extra_fields": log_ctx})
        return None

    try:
        media = client.fetch_media_base64(instance_name, message_key)
        if not media.content:
            logger.warning("media fetch returned empty content", extra={"extra_fields": log_ctx})
            return None
        path = media_path(workspace_id, media_kind)
        url = storage.upload(path, media.content, media.mime_type)
    except Exception as e:
        logger.warning(
            "media fetch failed",
            extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
        )
        return None

    return StoredMedia(url=url, path=path, mime_type=media.mime_type, size_bytes=len(media.content))


def schedule_media_fetch(
    tasks: TasksClient,
    store: IngestStore,
    client: EvolutionClient | None,
    storage: StorageService | None,
    *,
    workspace_id: str,
    instance_name: str,
    message_id: str,
    message_key: Mapping[str, Any],
    media_kind: str,
) -> bool:
    """Hand the media fetch to the task pool. Returns False if not accepted."""

    def _handle(payload: dict) -> None:
        stored = fetch_and_store(
            client,
            storage,
            payload["instance_name"],
            payload["message_key"],
            payload["media_kind"],
            payload["workspace_id"],
        )
        if stored is None:
            return
        attach_media(store, payload["message_id"], stored)

    return tasks.enqueue(
        f"media:{message_id}",
        _handle,
        {
            "workspace_id": workspace_id,
            "instance_name": instance_name,
            "message_id": message_id,
            "message_key": dict(message_key),
            "media_kind": media_kind,
        },
    )


def attach_media(store: IngestStore, message_id: str, stored: StoredMedia) -> None:
    """Fill the message's media columns that are still NULL."""
    store.update_message(
        message_id,
        media=MediaPatch(
            media_url=stored.url,
            media_path=stored.path,
            mime_type=stored.mime_type,
            size_bytes=stored.size_bytes,
        ),
    )
    logger.info(
        "media attached",
        extra={"extra_fields": safe_log_context(message_id=message_id, size_bytes=stored.size_bytes)},
    )


def persist_avatar(
    client: EvolutionClient,
    storage: StorageService | None,
    workspace_id: str,
    phone: str,
    url: str,
) -> str | None:
    """Re-host a temporary WhatsApp CDN avatar. Non-CDN urls pass through."""
    if not is_whatsapp_cdn_url(url):
        return url
    if storage is None:
        return None
    try:
        content, content_type = client.download(url)
        if not content:
            return None
        return storage.upload(avatar_path(workspace_id, phone), content, content_type or "image/jpeg")
    except Exception as e:
        logger.warning(
            "avatar re-host failed",
            extra={"extra_fields": {"phone": mask_tail(phone), "error_type": type(e).__name__}},
        )
        return None


def refresh_avatar(
    store: IngestStore,
    client: EvolutionClient | None,
    storage: StorageService | None,
    *,
    workspace_id: str,
    instance_name: str,
    contact_id: str,
    phone: str,
) -> str | None:
    """Fetch and store a contact's profile picture if it has none yet.

    Returns:
        The stored avatar url, or None (never raises).
    """
    if client is None:
        return None
    try:
        contact = store.find_contact(workspace_id, phone)
        if contact is None or contact.avatar_url:
            return None
        picture_url = client.fetch_profile_picture(instance_name, phone)
        if not picture_url:
            return None
        avatar_url = persist_avatar(client, storage, workspace_id, phone, picture_url)
        if not avatar_url:
            return None
        store.update_contact(contact_id, avatar_url=avatar_url)
    except Exception as e:
        logger.warning(
            "avatar refresh failed",
            extra={"extra_fields": {"phone": mask_tail(phone), "error_type": type(e).__name__}},
        )
        return None
    return avatar_url


def schedule_avatar_refresh(
    tasks: TasksClient,
    store: IngestStore,
    client: EvolutionClient | None,
    storage: StorageService | None,
    *,
    workspace_id: str,
    instance_name: str,
    contact_id: str,
    phone: str,
) -> bool:
    if client is None:
        return False

    def _handle(payload: dict) -> None:
        refresh_avatar(store, client, storage, **payload)

    return tasks.enqueue(
        f"avatar:{contact_id}",
        _handle,
        {
            "workspace_id": workspace_id,
            "instance_name": instance_name,
            "contact_id": contact_id,
            "phone": phone,
        },
    )
