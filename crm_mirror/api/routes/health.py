from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.db.session import get_db
from crm_mirror.services.health import database_ok, webhook_health

router = APIRouter()

@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    checks = {"database": await database_ok(db), "timestamp": datetime.now(timezone.utc).isoformat()}
    if checks["database"]:
        checks["webhooks"] = await webhook_health(db)
    healthy = checks["database"] and checks["webhooks"]["healthy"]
    return JSONResponse(
        {"status": "healthy" if healthy else "degraded", "checks": checks},
        status_code=200 if healthy else 503,
    )
