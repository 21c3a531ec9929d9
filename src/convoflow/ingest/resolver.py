"""Entity resolver - find-or-create contacts and conversations.

Writes follow "insert ... ON CONFLICT DO NOTHING, then re-read": two requests
racing on the same natural key end up on the same row.
"""

from __future__ import annotations

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import mask_tail, safe_log_context
from convoflow.whatsapp.jid import GROUP_SUFFIX, is_placeholder_address

from .models import ConversationRef, Duplicate, Instance
from .store import IngestStore

logger = get_logger(__name__)

GROUP_PARTICIPANT_NAME = "Participant"


class ResolveError(RuntimeError):
    """Insert conflicted but the re-read found nothing."""

    pass


def resolve_instance(store: IngestStore, workspace_id: str, instance_name: str | None) -> Instance | None:
    """Look up the instance by name within the workspace. Never creates."""
    if not instance_name:
        return None
    return store.find_instance(workspace_id, instance_name)


def _is_placeholder_name(name: str | None, phone: str) -> bool:
    if not name or not name.strip():
        return True
    return name == phone or is_placeholder_address(name) or name == GROUP_PARTICIPANT_NAME


def resolve_contact(
    store: IngestStore,
    workspace_id: str,
    address: str,
    display_name_hint: str | None = None,
    avatar_hint: str | None = None,
) -> str:
    """Find-or-create a contact by (workspace, normalized address).

    On find, only blanks are filled: the name is replaced when it is empty,
    equal to the phone, or a placeholder; the avatar only when empty.

    Returns:
        The contact id.
    """
    hint = display_name_hint.strip() if display_name_hint else None

    contact = store.find_contact(workspace_id, address)
    if contact is None:
        result = store.insert_contact(workspace_id, address, hint or address, avatar_hint)
        if not isinstance(result, Duplicate):
            logger.info(
                "contact created",
                extra={"extra_fields": {"contact_id": result.id, "phone": mask_tail(address)}},
            )
            return result.id
        contact = store.find_contact(workspace_id, address)
        if contact is None:
            raise ResolveError("contact insert conflicted but row not found")

    new_name = None
    if hint and hint != contact.name and not _is_placeholder_name(hint, address):
        if _is_placeholder_name(contact.name, contact.phone):
            new_name = hint
    new_avatar = avatar_hint if avatar_hint and not contact.avatar_url else None

    if new_name or new_avatar:
        store.update_contact(contact.id, name=new_name, avatar_url=new_avatar)
        logger.info(
            "contact enriched",
            extra={
                "extra_fields": safe_log_context(
                    contact_id=contact.id, name_set=bool(new_name), avatar_set=bool(new_avatar)
                )
            },
        )
    return contact.id


def resolve_conversation(
    store: IngestStore,
    workspace_id: str,
    instance_id: str,
    contact_id: str,
    remote_address: str | None,
) -> ConversationRef:
    """Find-or-create the conversation for a thread.

    Lookup order: remote address, then (contact, instance). Rows found by the
    fallback get their remote address and group flag backfilled.
    """
    is_group = bool(remote_address) and remote_address.endswith(GROUP_SUFFIX)

    conversation = None
    if remote_address:
        conversation = store.find_conversation_by_address(workspace_id, instance_id, remote_address)
    if conversation is None and not is_group:
        conversation = store.find_conversation_by_contact(workspace_id, instance_id, contact_id)

    if conversation is not None:
        if remote_address and conversation.remote_jid is None:
            store.backfill_conversation(conversation.id, remote_address, is_group)
        return ConversationRef(id=conversation.id, created=False)

    result = store.insert_conversation(workspace_id, instance_id, contact_id, remote_address, is_group)
    if not isinstance(result, Duplicate):
        logger.info(
            "conversation created",
            extra={"extra_fields": safe_log_context(conversation_id=result.id, is_group=is_group)},
        )
        return ConversationRef(id=result.id, created=True)

    conversation = store.find_conversation_by_address(workspace_id, instance_id, remote_address) if remote_address else None
    if conversation is None:
        raise ResolveError("conversation insert conflicted but row not found")
    return ConversationRef(id=conversation.id, created=False)
