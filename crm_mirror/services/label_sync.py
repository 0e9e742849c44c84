from dataclasses import dataclass, field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.errors import RemoteAPIError
from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.pipeline_stage import PipelineStage
from crm_mirror.services.chatwoot_client import ChatwootClient

logger = get_logger(__name__)

@dataclass
class LabelSyncResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.unchanged + len(self.errors)

def _already_exists(exc: RemoteAPIError) -> bool:
    return exc.status_code == 422

class LabelSynchronizer:
    """Pushes a tenant's pipeline stages to the remote platform as labels keyed by slug."""

    def __init__(self, db: AsyncSession, client: ChatwootClient):
        self.db = db
        self.client = client

    async def sync(self, tenant_id: int) -> LabelSyncResult:
        stages = (await self.db.execute(
            select(PipelineStage).where(PipelineStage.tenant_id == tenant_id).order_by(PipelineStage.position)
        )).scalars().all()
        result = LabelSyncResult()
        if not stages:
            return result

        labels_by_title = {label.get("title"): label for label in await self.client.list_labels()}

        for stage in stages:
            label = labels_by_title.get(stage.slug)
            try:
                if label is None:
                    await self.client.create_label(stage.slug, stage.color, stage.name)
                    result.created += 1
                elif (label.get("color") or "").lower() != stage.color.lower():
                    await self.client.update_label(label["id"], stage.slug, stage.color, stage.name)
                    result.updated += 1
                else:
                    result.unchanged += 1
            except RemoteAPIError as exc:
                if label is None and _already_exists(exc):
                    # Lost a create race with a concurrent sync; the label is there.
                    result.unchanged += 1
                    continue
                logger.warning("label_sync_stage_failed", tenant_id=tenant_id, stage=stage.slug, error=str(exc))
                result.errors.append(f"{stage.name}: {exc}")

        logger.info(
            "label_sync_completed",
            tenant_id=tenant_id,
            created=result.created,
            updated=result.updated,
            unchanged=result.unchanged,
            errors=len(result.errors),
        )
        return result
