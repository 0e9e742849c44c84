import enum
from datetime import datetime
from sqlalchemy import ForeignKey, String, Enum, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base
from crm_mirror.db.models.conversation import utcnow

class TimelineKind(str, enum.Enum):
    conversation_started = "conversation_started"
    status_changed = "status_changed"
    message_received = "message_received"
    message_sent = "message_sent"

class TimelineEvent(Base):
    __tablename__ = "timeline_events"
    # `ref` identifies the remote fact; replays of the same fact collapse onto one row.
    __table_args__ = (UniqueConstraint("conversation_id", "ref", name="uq_timeline_conversation_ref"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True)
    kind: Mapped[TimelineKind] = mapped_column(Enum(TimelineKind))
    ref: Mapped[str] = mapped_column(String(120))
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
