"""Single write path into the conversation mirror.

Both the webhook path and the reconciliation sweep funnel through
`MirrorWriter.apply`. Convergence rests on two statements that are each atomic
in the database:

* a conditional UPDATE that only matches while the stored `last_activity_at`
  is not newer than the delta's `observed_at`, and
* an INSERT ... ON CONFLICT DO NOTHING on `(tenant_id, remote_conversation_id)`
  for conversations seen for the first time.

There is no read-modify-write between checking staleness and writing, so a
webhook and a sweep racing on the same key cannot regress each other.

The remaining writes are order-independent on their own: contacts are created
with the same ON CONFLICT pattern, timeline rows are keyed by the remote fact
they describe, and `first_response_at` only ever moves to an earlier time.
"""

from datetime import datetime, timezone
from typing import Any
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.contact import Contact
from crm_mirror.db.models.conversation import Conversation, ConversationStatus
from crm_mirror.db.models.pipeline_stage import PipelineStage
from crm_mirror.db.models.timeline_event import TimelineEvent, TimelineKind
from crm_mirror.services.deltas import ContactRef, ConversationDelta, MessageDirection, WriteOutcome
from crm_mirror.services.identity import IdentityResolver

logger = get_logger(__name__)

STATUS_EVENT = "conversation_status_changed"


def _insert_for(dialect: str):
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"mirror store does not support the {dialect} dialect")
    return insert


class MirrorWriter:
    def __init__(self, db: AsyncSession, resolver: IdentityResolver | None = None):
        self.db = db
        self.resolver = resolver or IdentityResolver(db)

    @property
    def _insert_stmt(self):
        return _insert_for(self.db.get_bind().dialect.name)

    async def apply(self, delta: ConversationDelta) -> WriteOutcome:
        contact_id = await self._contact_id(delta.tenant_id, delta.contact)
        fields = await self._mutable_values(delta)

        outcome, conversation_id = await self._guarded_update(delta, fields, contact_id)
        if outcome is None:
            conversation_id = await self._insert(delta, fields, contact_id)
            if conversation_id is not None:
                outcome = WriteOutcome.created
            else:
                # Another writer created the row between our update and insert.
                outcome, conversation_id = await self._guarded_update(delta, fields, contact_id)
                outcome = outcome or WriteOutcome.skipped_stale

        if conversation_id is not None:
            await self._record_activity(delta, outcome, conversation_id, contact_id)

        logger.debug(
            "mirror_write",
            outcome=outcome.value,
            source=delta.source.value,
            tenant_id=delta.tenant_id,
            remote_conversation_id=delta.remote_conversation_id,
            observed_at=delta.observed_at.isoformat(),
        )
        return outcome

    async def _contact_id(self, tenant_id: int, ref: ContactRef | None) -> int | None:
        """Local contact for the remote one, created on first sight."""
        if ref is None:
            return None
        contact_id = await self.resolver.resolve_contact(tenant_id, ref.remote_contact_id)
        if contact_id is not None:
            return contact_id

        stmt = (
            self._insert_stmt(Contact)
            .values(
                tenant_id=tenant_id,
                remote_contact_id=ref.remote_contact_id,
                name=ref.name,
                phone=ref.phone,
                email=ref.email,
                avatar_url=ref.avatar_url,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "remote_contact_id"])
            .returning(Contact.id)
        )
        contact_id = (await self.db.execute(stmt)).scalar_one_or_none()
        if contact_id is None:
            contact_id = (await self.db.execute(
                select(Contact.id).where(Contact.tenant_id == tenant_id, Contact.remote_contact_id == ref.remote_contact_id)
            )).scalar_one()
        await self.db.commit()
        self.resolver.remember_contact(tenant_id, ref.remote_contact_id, contact_id)
        return contact_id

    async def _mutable_values(self, delta: ConversationDelta) -> dict[str, Any]:
        present = delta.present_fields()
        values: dict[str, Any] = {}
        if "remote_assignee_id" in present:
            values["assigned_agent_id"] = await self.resolver.resolve(delta.tenant_id, present["remote_assignee_id"])
        for name in ("status", "last_message_preview", "unread_count", "remote_inbox_id"):
            if present.get(name) is not None:
                values[name] = present[name]
        return values

    def _key_clause(self, delta: ConversationDelta):
        return (
            Conversation.tenant_id == delta.tenant_id,
            Conversation.remote_conversation_id == delta.remote_conversation_id,
        )

    async def _guarded_update(
        self, delta: ConversationDelta, fields: dict[str, Any], contact_id: int | None
    ) -> tuple[WriteOutcome | None, int | None]:
        values = dict(fields)
        values["last_activity_at"] = delta.observed_at
        values["updated_at"] = datetime.now(timezone.utc)
        if contact_id is not None:
            values["contact_id"] = func.coalesce(Conversation.contact_id, contact_id)
        if "status" in fields:
            if fields["status"] == ConversationStatus.resolved:
                values["resolved_at"] = case(
                    (Conversation.status == ConversationStatus.resolved, func.coalesce(Conversation.resolved_at, delta.observed_at)),
                    else_=delta.observed_at,
                )
            else:
                values["resolved_at"] = None

        stmt = (
            update(Conversation)
            .where(
                *self._key_clause(delta),
                or_(Conversation.last_activity_at.is_(None), Conversation.last_activity_at <= delta.observed_at),
            )
            .values(**values)
            .returning(Conversation.id)
            .execution_options(synchronize_session=False)
        )
        updated_id = (await self.db.execute(stmt)).scalar_one_or_none()
        if updated_id is not None:
            await self.db.commit()
            return WriteOutcome.updated, updated_id

        existing_id = (await self.db.execute(select(Conversation.id).where(*self._key_clause(delta)))).scalar_one_or_none()
        await self.db.commit()
        if existing_id is not None:
            return WriteOutcome.skipped_stale, existing_id
        return None, None

    async def _initial_stage_id(self, tenant_id: int) -> int | None:
        return (await self.db.execute(
            select(PipelineStage.id)
            .where(PipelineStage.tenant_id == tenant_id, PipelineStage.is_initial.is_(True))
            .order_by(PipelineStage.position)
            .limit(1)
        )).scalar_one_or_none()

    async def _insert(self, delta: ConversationDelta, fields: dict[str, Any], contact_id: int | None) -> int | None:
        now = datetime.now(timezone.utc)
        status = fields.get("status", ConversationStatus.open)
        values = {
            "tenant_id": delta.tenant_id,
            "remote_conversation_id": delta.remote_conversation_id,
            "remote_inbox_id": fields.get("remote_inbox_id"),
            "stage_id": await self._initial_stage_id(delta.tenant_id),
            "contact_id": contact_id,
            "assigned_agent_id": fields.get("assigned_agent_id"),
            "status": status,
            "last_message_preview": fields.get("last_message_preview", ""),
            "unread_count": fields.get("unread_count", 0),
            "last_activity_at": delta.observed_at,
            "resolved_at": delta.observed_at if status == ConversationStatus.resolved else None,
            "created_at": now,
            "updated_at": now,
        }
        stmt = (
            self._insert_stmt(Conversation)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["tenant_id", "remote_conversation_id"])
            .returning(Conversation.id)
        )
        created_id = (await self.db.execute(stmt)).scalar_one_or_none()
        await self.db.commit()
        return created_id

    async def _record_activity(
        self, delta: ConversationDelta, outcome: WriteOutcome, conversation_id: int, contact_id: int | None
    ) -> None:
        entries: list[tuple[TimelineKind, str, datetime, dict]] = []
        if outcome == WriteOutcome.created:
            entries.append((
                TimelineKind.conversation_started,
                "conversation_started",
                delta.observed_at,
                {"source": delta.source.value, "inbox_id": delta.remote_inbox_id},
            ))
        if delta.event == STATUS_EVENT and delta.status is not None and outcome != WriteOutcome.skipped_stale:
            entries.append((
                TimelineKind.status_changed,
                f"status:{delta.status.value}:{delta.observed_at.isoformat()}",
                delta.observed_at,
                {"to": delta.status.value},
            ))

        message = delta.message
        if message is not None:
            kind = TimelineKind.message_received if message.direction == MessageDirection.incoming else TimelineKind.message_sent
            ref = (
                f"message:{message.remote_message_id}"
                if message.remote_message_id is not None
                else f"message:{message.direction.value}:{message.sent_at.isoformat()}"
            )
            entries.append((kind, ref, message.sent_at, {
                "direction": message.direction.value,
                "content_type": message.content_type,
            }))

            if message.direction == MessageDirection.outgoing:
                await self.db.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .where(or_(Conversation.first_response_at.is_(None), Conversation.first_response_at > message.sent_at))
                    .values(first_response_at=message.sent_at)
                    .execution_options(synchronize_session=False)
                )

        if entries:
            stmt = (
                self._insert_stmt(TimelineEvent)
                .values([
                    {
                        "tenant_id": delta.tenant_id,
                        "conversation_id": conversation_id,
                        "contact_id": contact_id,
                        "kind": kind,
                        "ref": ref,
                        "data": data,
                        "occurred_at": occurred_at,
                        "created_at": datetime.now(timezone.utc),
                    }
                    for kind, ref, occurred_at, data in entries
                ])
                .on_conflict_do_nothing(index_elements=["conversation_id", "ref"])
            )
            await self.db.execute(stmt)
        await self.db.commit()
