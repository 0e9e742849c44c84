"""Canonical change records flowing from the webhook and sweep paths into the writer."""

import enum
from dataclasses import dataclass
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from crm_mirror.db.models.conversation import ConversationStatus

class DeltaSource(str, enum.Enum):
    webhook = "webhook"
    sweep = "sweep"

class WriteOutcome(str, enum.Enum):
    created = "created"
    updated = "updated"
    skipped_stale = "skipped-stale"

MUTABLE_FIELDS = frozenset({
    "status",
    "remote_assignee_id",
    "last_message_preview",
    "unread_count",
    "remote_inbox_id",
})

class MessageDirection(str, enum.Enum):
    incoming = "incoming"
    outgoing = "outgoing"

class ContactRef(BaseModel):
    """The remote contact behind a conversation, as last seen on the wire."""

    model_config = ConfigDict(frozen=True)

    remote_contact_id: int
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    avatar_url: str | None = None

class MessageRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    remote_message_id: int | None = None
    direction: MessageDirection
    sent_at: datetime
    content_type: str | None = None

class ConversationDelta(BaseModel):
    """Partial update for one remote conversation.

    Only the mutable fields explicitly passed at construction are considered
    present; `remote_assignee_id=None` passed explicitly means the remote side
    reports the conversation as unassigned.

    `contact`, `message` and `event` are not mirrored columns: they link the
    conversation to a contact and feed the timeline.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: int
    remote_conversation_id: int
    source: DeltaSource
    observed_at: datetime

    status: ConversationStatus | None = None
    remote_assignee_id: int | None = None
    last_message_preview: str | None = None
    unread_count: int | None = Field(default=None, ge=0)
    remote_inbox_id: int | None = None

    contact: ContactRef | None = None
    message: MessageRef | None = None
    event: str | None = None

    def present_fields(self) -> dict:
        return {name: getattr(self, name) for name in sorted(MUTABLE_FIELDS & self.model_fields_set)}

@dataclass(frozen=True)
class Discard:
    event: str
    reason: str
