import enum
from datetime import datetime, timezone
from sqlalchemy import ForeignKey, String, Enum, DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base

PREVIEW_COLUMN_LENGTH = 120

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class ConversationStatus(str, enum.Enum):
    open = "open"
    resolved = "resolved"
    closed = "closed"

class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("tenant_id", "remote_conversation_id", name="uq_tenant_remote_conversation"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    remote_conversation_id: Mapped[int] = mapped_column(Integer, index=True)
    remote_inbox_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stage_id: Mapped[int | None] = mapped_column(ForeignKey("pipeline_stages.id", ondelete="SET NULL"), nullable=True)
    contact_id: Mapped[int | None] = mapped_column(ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True, index=True)

    assigned_agent_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status: Mapped[ConversationStatus] = mapped_column(Enum(ConversationStatus), default=ConversationStatus.open)
    last_message_preview: Mapped[str] = mapped_column(String(PREVIEW_COLUMN_LENGTH), default="")
    unread_count: Mapped[int] = mapped_column(Integer, default=0)

    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    first_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
