from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_mirror.core.deps_api import TenantContext, get_client_factory, require_scope
from crm_mirror.core.errors import RemoteAPIError, SweepInProgress, TenantNotConfigured
from crm_mirror.db.models.tenant import Tenant
from crm_mirror.db.session import get_db, get_session_factory
from crm_mirror.services.chatwoot_client import credentials_for
from crm_mirror.services.label_sync import LabelSynchronizer
from crm_mirror.services.locks import get_redis
from crm_mirror.services.sweeper import Sweeper

router = APIRouter(prefix="/sync")

async def run_sweep(tenant_id: int, assignment_only: bool, session_factory, redis_client, client_factory) -> dict:
    sweeper = Sweeper(session_factory, redis_client, client_factory=client_factory)
    try:
        result = await sweeper.sweep(tenant_id, assignment_only=assignment_only)
    except SweepInProgress:
        raise HTTPException(409, "Sweep already in progress")
    except TenantNotConfigured as exc:
        raise HTTPException(400, str(exc))
    except RemoteAPIError as exc:
        raise HTTPException(502, f"Remote platform error: {exc}")
    return result.as_dict()

@router.post("/conversations")
async def sync_conversations(
    ctx: TenantContext = Depends(require_scope("sync:write")),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis_client=Depends(get_redis),
    client_factory=Depends(get_client_factory),
):
    return await run_sweep(ctx.tenant_id, False, session_factory, redis_client, client_factory)

@router.post("/assignments")
async def sync_assignments(
    ctx: TenantContext = Depends(require_scope("sync:write")),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis_client=Depends(get_redis),
    client_factory=Depends(get_client_factory),
):
    return await run_sweep(ctx.tenant_id, True, session_factory, redis_client, client_factory)

@router.post("/labels")
async def sync_labels(
    ctx: TenantContext = Depends(require_scope("sync:write")),
    db: AsyncSession = Depends(get_db),
    client_factory=Depends(get_client_factory),
):
    tenant = await db.get(Tenant, ctx.tenant_id)
    if not tenant:
        raise HTTPException(404, "Tenant not found")
    try:
        credentials = credentials_for(tenant)
    except TenantNotConfigured as exc:
        raise HTTPException(400, str(exc))

    async with client_factory(credentials) as client:
        try:
            result = await LabelSynchronizer(db, client).sync(ctx.tenant_id)
        except RemoteAPIError as exc:
            raise HTTPException(502, f"Remote platform error: {exc}")
    return {
        "created": result.created,
        "updated": result.updated,
        "unchanged": result.unchanged,
        "total": result.total,
        "errors": result.errors,
    }
