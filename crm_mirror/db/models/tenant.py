from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base

class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    remote_account_id: Mapped[int | None] = mapped_column(Integer, unique=True, index=True, nullable=True)
    remote_api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_base_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
