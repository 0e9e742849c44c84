from sqlalchemy import ForeignKey, String, Integer, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from crm_mirror.db.base import Base

class PipelineStage(Base):
    __tablename__ = "pipeline_stages"
    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="uq_tenant_stage_slug"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    slug: Mapped[str] = mapped_column(String(120))
    color: Mapped[str] = mapped_column(String(16), default="#6366f1")
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_initial: Mapped[bool] = mapped_column(Boolean, default=False)
    is_final: Mapped[bool] = mapped_column(Boolean, default=False)

DEFAULT_STAGES = [
    {"name": "Novo", "slug": "novo", "color": "#6366f1", "position": 0, "is_initial": True, "is_final": False},
    {"name": "Triagem", "slug": "triagem", "color": "#f59e0b", "position": 1, "is_initial": False, "is_final": False},
    {"name": "Em Atendimento", "slug": "em-atendimento", "color": "#3b82f6", "position": 2, "is_initial": False, "is_final": False},
    {"name": "Aguardando Cliente", "slug": "aguardando-cliente", "color": "#8b5cf6", "position": 3, "is_initial": False, "is_final": False},
    {"name": "Proposta Enviada", "slug": "proposta-enviada", "color": "#ec4899", "position": 4, "is_initial": False, "is_final": False},
    {"name": "Fechado - Ganho", "slug": "fechado-ganho", "color": "#22c55e", "position": 5, "is_initial": False, "is_final": True},
    {"name": "Fechado - Perdido", "slug": "fechado-perdido", "color": "#ef4444", "position": 6, "is_initial": False, "is_final": True},
]
