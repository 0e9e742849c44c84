import enum
from datetime import datetime
from sqlalchemy import ForeignKey, String, Enum, DateTime, Integer, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base
from crm_mirror.db.models.conversation import utcnow

class WebhookEventStatus(str, enum.Enum):
    completed = "completed"
    discarded = "discarded"
    failed = "failed"

class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    source: Mapped[str] = mapped_column(String(32), default="chatwoot")
    event_type: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)
    status: Mapped[WebhookEventStatus] = mapped_column(Enum(WebhookEventStatus), index=True)
    outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
