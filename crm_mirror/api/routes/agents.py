from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Literal
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.deps_api import TenantContext, get_client_factory, get_dispatcher, require_scope
from crm_mirror.core.errors import TenantNotConfigured
from crm_mirror.db.models.tenant import Tenant
from crm_mirror.db.models.user import User
from crm_mirror.db.session import get_db
from crm_mirror.services.background import BackgroundDispatcher
from crm_mirror.services.chatwoot_client import credentials_for

router = APIRouter(prefix="/agents")

class AvailabilityIn(BaseModel):
    status: Literal["online", "offline"]

@router.post("/availability")
async def sync_availability(
    body: AvailabilityIn,
    ctx: TenantContext = Depends(require_scope("agents:write", preset="auth")),
    db: AsyncSession = Depends(get_db),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher),
    client_factory=Depends(get_client_factory),
):
    if ctx.user_id is None:
        raise HTTPException(400, "Availability is tied to a user session")

    user = await db.get(User, ctx.user_id)
    if not user or user.tenant_id != ctx.tenant_id:
        raise HTTPException(404, "User not found")
    tenant = await db.get(Tenant, ctx.tenant_id)
    if user.remote_agent_id is None or tenant is None:
        return {"ok": True, "synced": False}
    try:
        credentials = credentials_for(tenant)
    except TenantNotConfigured:
        return {"ok": True, "synced": False}

    agent_id = user.remote_agent_id

    async def push():
        async with client_factory(credentials) as client:
            await client.set_agent_availability(agent_id, body.status)

    dispatcher.dispatch("agent_availability", push)
    return {"ok": True, "synced": True}
