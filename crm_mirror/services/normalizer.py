"""Turns Chatwoot webhook payloads and API conversation objects into ConversationDelta records.

Everything in this module is a pure transformation: no database, no network.
Webhook payloads are parsed into a discriminated union keyed on `event`, so each
event family has exactly one handler.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union, get_args
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from crm_mirror.core.errors import MalformedPayload
from crm_mirror.db.models.conversation import ConversationStatus
from crm_mirror.services.deltas import ContactRef, ConversationDelta, DeltaSource, Discard, MessageDirection, MessageRef

PREVIEW_MAX_LENGTH = 100
ELLIPSIS = "..."

ATTACHMENT_LABELS = {
    "image": "📷 Imagem",
    "audio": "🎵 Áudio",
    "video": "🎬 Vídeo",
    "file": "📎 Arquivo",
    "location": "📍 Localização",
}
DEFAULT_ATTACHMENT_LABEL = "📎 Anexo"
STICKER_LABEL = "🏷️ Sticker"

REMOTE_STATUS = {
    "open": ConversationStatus.open,
    "pending": ConversationStatus.open,
    "snoozed": ConversationStatus.open,
    "resolved": ConversationStatus.resolved,
    "closed": ConversationStatus.closed,
}

ACTIVITY_MESSAGE_TYPES = {2, "activity"}
INCOMING_MESSAGE_TYPES = {0, "incoming"}
OUTGOING_MESSAGE_TYPES = {1, "outgoing", 3, "template"}

Timestamp = Union[int, float, str]


class _Remote(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RemoteAttachment(_Remote):
    file_type: str | None = None


class RemoteMessage(_Remote):
    id: int | None = None
    content: str | None = None
    content_type: str | None = None
    message_type: int | str | None = None
    private: bool = False
    attachments: list[RemoteAttachment] = []
    created_at: Timestamp | None = None


class RemoteAgent(_Remote):
    id: int | None = None


class RemoteContact(_Remote):
    id: int | None = None
    name: str | None = None
    phone_number: str | None = None
    email: str | None = None
    thumbnail: str | None = None
    type: str | None = None


class RemoteConversationMeta(_Remote):
    assignee: RemoteAgent | None = None
    sender: RemoteContact | None = None


class RemoteAccount(_Remote):
    id: int


class RemoteConversation(_Remote):
    id: int
    inbox_id: int | None = None
    status: str | None = None
    unread_count: int | None = Field(default=None, ge=0)
    meta: RemoteConversationMeta | None = None
    contact: RemoteContact | None = None
    assignee: RemoteAgent | None = None
    assignee_id: int | None = None
    last_non_activity_message: RemoteMessage | None = None
    messages: list[RemoteMessage] = []
    last_activity_at: Timestamp | None = None
    timestamp: Timestamp | None = None
    updated_at: Timestamp | None = None
    created_at: Timestamp | None = None


class ConversationCreated(RemoteConversation):
    event: Literal["conversation_created"]
    account: RemoteAccount | None = None


class ConversationUpdated(RemoteConversation):
    event: Literal["conversation_updated"]
    account: RemoteAccount | None = None


class ConversationStatusChanged(RemoteConversation):
    event: Literal["conversation_status_changed"]
    account: RemoteAccount | None = None


class MessageEvent(RemoteMessage):
    event: Literal["message_created", "message_updated"]
    account: RemoteAccount | None = None
    conversation: RemoteConversation
    sender: RemoteContact | None = None


class IgnoredEvent(_Remote):
    event: Literal[
        "conversation_typing_on",
        "conversation_typing_off",
        "webwidget_triggered",
        "contact_created",
        "contact_updated",
    ]


WebhookPayload = Annotated[
    Union[ConversationCreated, ConversationUpdated, ConversationStatusChanged, MessageEvent, IgnoredEvent],
    Field(discriminator="event"),
]

_payload_adapter = TypeAdapter(WebhookPayload)

KNOWN_EVENTS = frozenset(
    tag
    for model in (ConversationCreated, ConversationUpdated, ConversationStatusChanged, MessageEvent, IgnoredEvent)
    for tag in get_args(model.model_fields["event"].annotation)
)


def _from_epoch(value: float, original: Timestamp) -> datetime:
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise MalformedPayload(f"timestamp out of range {original!r}") from exc


def parse_remote_timestamp(value: Timestamp | None) -> datetime | None:
    """Epoch seconds (number or numeric string) or ISO-8601, always returned in UTC.

    Raises MalformedPayload for anything else, including epochs outside the
    platform's datetime range (e.g. milliseconds).
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(value, value)
    text = str(value).strip()
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return _from_epoch(seconds, value)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise MalformedPayload(f"unparseable timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def truncate_preview(text: str, max_length: int = PREVIEW_MAX_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def is_system_message(message: RemoteMessage) -> bool:
    return message.message_type in ACTIVITY_MESSAGE_TYPES or message.private


def format_preview(message: RemoteMessage | None, max_length: int = PREVIEW_MAX_LENGTH) -> str | None:
    """Preview text for a message, or None when the message has nothing to show."""
    if message is None or is_system_message(message):
        return None
    text = (message.content or "").strip()
    if text:
        return truncate_preview(text, max_length)
    if message.attachments:
        return ATTACHMENT_LABELS.get(message.attachments[0].file_type or "", DEFAULT_ATTACHMENT_LABEL)
    if message.content_type == "sticker":
        return STICKER_LABEL
    return None


def conversation_observed_at(conversation: RemoteConversation) -> datetime | None:
    for value in (conversation.last_activity_at, conversation.timestamp, conversation.updated_at, conversation.created_at):
        observed = parse_remote_timestamp(value)
        if observed is not None:
            return observed
    return None


def _assignee(conversation: RemoteConversation) -> tuple[bool, int | None]:
    if conversation.meta is not None:
        agent = conversation.meta.assignee
        return True, agent.id if agent else None
    if "assignee" in conversation.model_fields_set:
        return True, conversation.assignee.id if conversation.assignee else None
    if "assignee_id" in conversation.model_fields_set:
        return True, conversation.assignee_id
    return False, None


def contact_ref(contact: RemoteContact | None) -> ContactRef | None:
    if contact is None or contact.id is None:
        return None
    if contact.type is not None and contact.type != "contact":
        return None
    return ContactRef(
        remote_contact_id=contact.id,
        name=contact.name,
        phone=contact.phone_number or None,
        email=contact.email or None,
        avatar_url=contact.thumbnail or None,
    )


def _conversation_contact(conversation: RemoteConversation) -> ContactRef | None:
    if conversation.meta is not None and conversation.meta.sender is not None:
        return contact_ref(conversation.meta.sender)
    return contact_ref(conversation.contact)


def message_ref(message: RemoteMessage, fallback_at: datetime) -> MessageRef | None:
    """Timeline reference for a customer or agent message; None for private notes and activity."""
    if message.private:
        return None
    if message.message_type in INCOMING_MESSAGE_TYPES:
        direction = MessageDirection.incoming
    elif message.message_type in OUTGOING_MESSAGE_TYPES:
        direction = MessageDirection.outgoing
    else:
        return None
    return MessageRef(
        remote_message_id=message.id,
        direction=direction,
        sent_at=parse_remote_timestamp(message.created_at) or fallback_at,
        content_type=message.content_type,
    )


def _latest_visible_message(conversation: RemoteConversation) -> RemoteMessage | None:
    if conversation.last_non_activity_message is not None:
        return conversation.last_non_activity_message
    for message in reversed(conversation.messages):
        if not is_system_message(message):
            return message
    return None


def delta_from_conversation(
    conversation: RemoteConversation,
    tenant_id: int,
    source: DeltaSource,
    *,
    observed_at: datetime | None = None,
    assignment_only: bool = False,
    event: str | None = None,
    preview_max_length: int = PREVIEW_MAX_LENGTH,
) -> ConversationDelta:
    observed_at = observed_at or conversation_observed_at(conversation)
    if observed_at is None:
        raise MalformedPayload(f"conversation {conversation.id} carries no activity timestamp")

    fields: dict[str, Any] = {}
    has_assignee, remote_assignee_id = _assignee(conversation)
    if has_assignee:
        fields["remote_assignee_id"] = remote_assignee_id

    if not assignment_only:
        if conversation.status in REMOTE_STATUS:
            fields["status"] = REMOTE_STATUS[conversation.status]
        if conversation.unread_count is not None:
            fields["unread_count"] = conversation.unread_count
        if conversation.inbox_id is not None:
            fields["remote_inbox_id"] = conversation.inbox_id
        preview = format_preview(_latest_visible_message(conversation), preview_max_length)
        if preview is not None:
            fields["last_message_preview"] = preview
        contact = _conversation_contact(conversation)
        if contact is not None:
            fields["contact"] = contact

    return ConversationDelta(
        tenant_id=tenant_id,
        remote_conversation_id=conversation.id,
        source=source,
        observed_at=observed_at,
        event=event,
        **fields,
    )


def _from_message(payload: MessageEvent, tenant_id: int, preview_max_length: int) -> ConversationDelta:
    observed_at = parse_remote_timestamp(payload.created_at) or conversation_observed_at(payload.conversation)
    delta = delta_from_conversation(
        payload.conversation,
        tenant_id,
        DeltaSource.webhook,
        observed_at=observed_at,
        event=payload.event,
        preview_max_length=preview_max_length,
    )
    fields = delta.present_fields()
    preview = format_preview(payload, preview_max_length)
    if preview is not None:
        fields["last_message_preview"] = preview
    return ConversationDelta(
        tenant_id=delta.tenant_id,
        remote_conversation_id=delta.remote_conversation_id,
        source=delta.source,
        observed_at=delta.observed_at,
        event=delta.event,
        contact=delta.contact or contact_ref(payload.sender),
        message=message_ref(payload, delta.observed_at),
        **fields,
    )


def parse_payload(raw: dict) -> ConversationCreated | ConversationUpdated | ConversationStatusChanged | MessageEvent | IgnoredEvent:
    try:
        return _payload_adapter.validate_python(raw)
    except ValidationError as exc:
        raise MalformedPayload(f"invalid {raw.get('event')} payload: {exc.error_count()} error(s)") from exc


def remote_account_id(raw: dict) -> int | None:
    account = raw.get("account")
    if isinstance(account, dict) and isinstance(account.get("id"), int):
        return account["id"]
    return None


def normalize(raw: dict, tenant_id: int, *, preview_max_length: int = PREVIEW_MAX_LENGTH) -> ConversationDelta | Discard:
    """Map one webhook payload to a delta, or to Discard when it touches no mirrored field.

    Raises MalformedPayload when a known event has an unusable shape.
    """
    event = raw.get("event")
    if event not in KNOWN_EVENTS:
        return Discard(event=str(event), reason="unhandled event")

    payload = parse_payload(raw)
    if isinstance(payload, IgnoredEvent):
        return Discard(event=payload.event, reason="irrelevant to mirrored fields")
    if isinstance(payload, MessageEvent):
        return _from_message(payload, tenant_id, preview_max_length)
    return delta_from_conversation(
        payload, tenant_id, DeltaSource.webhook, event=payload.event, preview_max_length=preview_max_length
    )
