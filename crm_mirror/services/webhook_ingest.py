"""Processing of single webhook deliveries and the failed-event replay built on them."""

from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.config import settings
from crm_mirror.core.errors import MalformedPayload
from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from crm_mirror.services.deltas import ConversationDelta, Discard, WriteOutcome
from crm_mirror.services.mirror_writer import MirrorWriter
from crm_mirror.services.normalizer import normalize

logger = get_logger(__name__)

@dataclass(frozen=True)
class IngestResult:
    status: WebhookEventStatus
    outcome: WriteOutcome | None = None
    delta: ConversationDelta | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (WriteOutcome.created, WriteOutcome.updated)

async def process_event(db: AsyncSession, tenant_id: int, raw: dict) -> IngestResult:
    """Normalize and apply one payload. Never raises for bad payloads or failed writes."""
    event = raw.get("event")
    log = logger.bind(tenant_id=tenant_id, event=event)
    try:
        normalized = normalize(raw, tenant_id, preview_max_length=settings.PREVIEW_MAX_LENGTH)
    except MalformedPayload as exc:
        log.warning("webhook_malformed", error=str(exc))
        return IngestResult(status=WebhookEventStatus.discarded, error=str(exc))

    if isinstance(normalized, Discard):
        log.debug("webhook_discarded", reason=normalized.reason)
        return IngestResult(status=WebhookEventStatus.discarded, error=normalized.reason)

    try:
        outcome = await MirrorWriter(db).apply(normalized)
    except SQLAlchemyError as exc:
        await db.rollback()
        log.error("webhook_write_failed", remote_conversation_id=normalized.remote_conversation_id, error=repr(exc))
        return IngestResult(status=WebhookEventStatus.failed, delta=normalized, error=repr(exc))

    log.info("webhook_applied", remote_conversation_id=normalized.remote_conversation_id, outcome=outcome.value)
    return IngestResult(status=WebhookEventStatus.completed, outcome=outcome, delta=normalized)

async def record_event(db: AsyncSession, tenant_id: int | None, raw: dict, result: IngestResult) -> None:
    try:
        db.add(WebhookEvent(
            tenant_id=tenant_id,
            event_type=str(raw.get("event"))[:64],
            payload=raw,
            status=result.status,
            outcome=result.outcome.value if result.outcome else None,
            last_error=result.error,
        ))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("webhook_event_log_failed", tenant_id=tenant_id, error=repr(exc))

@dataclass
class ReplaySummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

async def replay_failed_events(db: AsyncSession, tenant_id: int, limit: int = 50) -> ReplaySummary:
    events = (await db.execute(
        select(WebhookEvent)
        .where(
            WebhookEvent.tenant_id == tenant_id,
            WebhookEvent.status == WebhookEventStatus.failed,
            WebhookEvent.attempts < settings.WEBHOOK_MAX_ATTEMPTS,
        )
        .order_by(WebhookEvent.received_at, WebhookEvent.id)
        .limit(limit)
    )).scalars().all()

    # A failed write rolls back and expires loaded rows.
    pending = [(e.id, e.payload, e.attempts) for e in events]
    summary = ReplaySummary()
    for event_id, payload, attempts in pending:
        result = await process_event(db, tenant_id, payload)
        stored = await db.get(WebhookEvent, event_id)
        stored.attempts = attempts + 1
        stored.status = result.status
        stored.outcome = result.outcome.value if result.outcome else None
        stored.last_error = result.error
        stored.processed_at = datetime.now(timezone.utc)
        await db.commit()
        summary.processed += 1
        if result.status == WebhookEventStatus.failed:
            summary.failed += 1
        else:
            summary.succeeded += 1
    logger.info("webhook_replay_completed", tenant_id=tenant_id, processed=summary.processed, failed=summary.failed)
    return summary

async def event_stats(db: AsyncSession, tenant_id: int) -> dict:
    rows = (await db.execute(
        select(WebhookEvent.status, func.count())
        .where(WebhookEvent.tenant_id == tenant_id)
        .group_by(WebhookEvent.status)
    )).all()
    counts = {status.value: 0 for status in WebhookEventStatus}
    for status, count in rows:
        counts[status.value] = count
    counts["total"] = sum(count for _, count in rows)

    recent_failed = (await db.execute(
        select(WebhookEvent)
        .where(WebhookEvent.tenant_id == tenant_id, WebhookEvent.status == WebhookEventStatus.failed)
        .order_by(WebhookEvent.processed_at.desc(), WebhookEvent.id.desc())
        .limit(10)
    )).scalars().all()
    return {
        "stats": counts,
        "recent_failed": [
            {"id": e.id, "event_type": e.event_type, "last_error": e.last_error, "attempts": e.attempts}
            for e in recent_failed
        ],
    }
