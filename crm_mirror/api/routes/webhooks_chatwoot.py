import json
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.deps_api import TenantContext, get_dispatcher, rate_limit_by_ip, require_scope
from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.tenant import Tenant
from crm_mirror.db.models.webhook_event import WebhookEventStatus
from crm_mirror.db.session import get_db
from crm_mirror.services.background import BackgroundDispatcher
from crm_mirror.services.broadcaster import broadcaster
from crm_mirror.services.normalizer import remote_account_id
from crm_mirror.services.webhook_ingest import IngestResult, event_stats, process_event, record_event, replay_failed_events
from crm_mirror.services.webhook_verify import verify_chatwoot_signature

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks")

async def read_json_object(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("application/json"):
        raise HTTPException(415, "Content-Type must be application/json")
    try:
        data = json.loads(await request.body())
    except ValueError:
        raise HTTPException(400, "Body is not valid JSON")
    if not isinstance(data, dict):
        raise HTTPException(400, "Body must be a JSON object")
    if not isinstance(data.get("event"), str) or not data["event"]:
        raise HTTPException(400, "event required")
    return data

@router.post("/chatwoot", dependencies=[Depends(rate_limit_by_ip("webhook"))])
async def chatwoot_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher),
):
    verify_chatwoot_signature(request)
    raw = await read_json_object(request)

    account_id = remote_account_id(raw)
    tenant_id = None
    if account_id is not None:
        tenant_id = (await db.execute(select(Tenant.id).where(Tenant.remote_account_id == account_id))).scalar_one_or_none()
    if tenant_id is None:
        logger.warning("webhook_unknown_account", account_id=account_id, event=raw["event"])
        return {"ok": True, "ignored": "unknown account"}

    try:
        result = await process_event(db, tenant_id, raw)
        await record_event(db, tenant_id, raw, result)
    except Exception as exc:
        # Acknowledged regardless; the next sweep repairs the mirror.
        logger.exception("webhook_unexpected_error", tenant_id=tenant_id, event=raw["event"])
        await db.rollback()
        await record_event(db, tenant_id, raw, IngestResult(status=WebhookEventStatus.failed, error=repr(exc)))
        return {"ok": True, "status": "failed"}

    if result.changed:
        remote_id, outcome = result.delta.remote_conversation_id, result.outcome.value
        dispatcher.dispatch("broadcast", lambda: broadcaster.conversation_updated(tenant_id, remote_id, outcome))

    return {
        "ok": True,
        "status": result.status.value,
        "outcome": result.outcome.value if result.outcome else None,
    }

@router.post("/retry")
async def retry_failed(
    ctx: TenantContext = Depends(require_scope("webhooks:retry")),
    db: AsyncSession = Depends(get_db),
):
    summary = await replay_failed_events(db, ctx.tenant_id)
    return {"processed": summary.processed, "succeeded": summary.succeeded, "failed": summary.failed}

@router.get("/retry")
async def retry_status(
    ctx: TenantContext = Depends(require_scope("webhooks:read")),
    db: AsyncSession = Depends(get_db),
):
    return await event_stats(db, ctx.tenant_id)
