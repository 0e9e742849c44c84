from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.config import settings
from crm_mirror.db.models.webhook_event import WebhookEvent, WebhookEventStatus

async def database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False

async def webhook_health(db: AsyncSession, window: int | None = None, failed_threshold: int | None = None) -> dict:
    window = window or settings.WEBHOOK_HEALTH_WINDOW
    failed_threshold = failed_threshold or settings.WEBHOOK_HEALTH_FAILED_THRESHOLD
    rows = (await db.execute(
        select(WebhookEvent.status, WebhookEvent.processed_at)
        .order_by(WebhookEvent.processed_at.desc(), WebhookEvent.id.desc())
        .limit(window)
    )).all()
    failed = sum(1 for status, _ in rows if status == WebhookEventStatus.failed)
    discarded = sum(1 for status, _ in rows if status == WebhookEventStatus.discarded)
    last_processed = rows[0][1].isoformat() if rows else None
    return {
        "healthy": failed < failed_threshold,
        "window": len(rows),
        "failed": failed,
        "discarded": discarded,
        "last_processed": last_processed,
    }
