from datetime import datetime
from sqlalchemy import ForeignKey, String, DateTime, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base
from crm_mirror.db.models.conversation import utcnow

class Contact(Base):
    __tablename__ = "contacts"
    # Contact identity mapping: one local contact per remote contact within a tenant.
    __table_args__ = (UniqueConstraint("tenant_id", "remote_contact_id", name="uq_tenant_remote_contact"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    remote_contact_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
