from fastapi import APIRouter
from crm_mirror.api.routes import agents, health, sync, webhooks_chatwoot, websocket

api = APIRouter(prefix="/api")
api.include_router(webhooks_chatwoot.router, tags=["webhooks"])
api.include_router(sync.router, tags=["sync"])
api.include_router(agents.router, tags=["agents"])
api.include_router(health.router, tags=["health"])
api.include_router(websocket.router, tags=["ws"])
