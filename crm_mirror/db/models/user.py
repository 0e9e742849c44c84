import enum
from sqlalchemy import ForeignKey, String, Enum, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base

class Role(str, enum.Enum):
    admin = "admin"
    agent = "agent"

class User(Base):
    __tablename__ = "users"
    # Agent identity mapping: one local user per remote agent within a tenant.
    __table_args__ = (UniqueConstraint("tenant_id", "remote_agent_id", name="uq_tenant_remote_agent"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    username: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    role: Mapped[Role] = mapped_column(Enum(Role), default=Role.agent)
    remote_agent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
