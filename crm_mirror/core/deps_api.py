from dataclasses import dataclass
from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_mirror.core.config import settings
from crm_mirror.core.security import decode_token
from crm_mirror.db.session import get_db, get_session_factory
from crm_mirror.services.api_keys import ApiKeyRejected, touch_api_key, validate_api_key
from crm_mirror.services.background import BackgroundDispatcher
from crm_mirror.services.chatwoot_client import ChatwootClient
from crm_mirror.services.rate_limit import RateLimiterRegistry

bearer_scheme = HTTPBearer(auto_error=False)

@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    user_id: int | None = None
    api_key_id: int | None = None
    scopes: tuple[str, ...] = ("*",)

    def has_scope(self, scope: str) -> bool:
        return "*" in self.scopes or scope in self.scopes

    @property
    def caller(self) -> str:
        if self.api_key_id is not None:
            return f"key:{self.api_key_id}"
        return f"user:{self.user_id}"

def get_dispatcher(request: Request) -> BackgroundDispatcher:
    return request.app.state.dispatcher

def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    return request.app.state.rate_limiters

def get_client_factory():
    return ChatwootClient

def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"

def enforce_rate_limit(limiters: RateLimiterRegistry, preset: str, key: str) -> None:
    decision = limiters.check(preset, key)
    if not decision.allowed:
        raise HTTPException(status_code=429, detail="Too many requests", headers={"X-RateLimit-Limit": str(decision.limit)})

def rate_limit_by_ip(preset: str):
    async def dependency(request: Request, limiters: RateLimiterRegistry = Depends(get_rate_limiters)) -> None:
        enforce_rate_limit(limiters, preset, client_ip(request))
    return dependency

async def get_tenant_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_api_key: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher),
) -> TenantContext:
    token = credentials.credentials if credentials else x_api_key
    if not token:
        raise HTTPException(status_code=401, detail="Missing credentials")

    if token.startswith(settings.API_KEY_PREFIX) or not credentials:
        try:
            key = await validate_api_key(db, token, settings.API_KEY_PREFIX)
        except ApiKeyRejected as exc:
            raise HTTPException(status_code=401, detail=str(exc))
        key_id = key.id
        dispatcher.dispatch("api_key_touch", lambda: touch_api_key(session_factory, key_id))
        return TenantContext(tenant_id=key.tenant_id, api_key_id=key.id, scopes=tuple(key.scopes or ()))

    try:
        payload = decode_token(token)
        tenant_id = int(payload["tenant_id"])
        user_id = int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    return TenantContext(tenant_id=tenant_id, user_id=user_id)

def require_scope(scope: str, preset: str = "api"):
    async def dependency(
        ctx: TenantContext = Depends(get_tenant_context),
        limiters: RateLimiterRegistry = Depends(get_rate_limiters),
    ) -> TenantContext:
        enforce_rate_limit(limiters, preset, ctx.caller)
        if not ctx.has_scope(scope):
            raise HTTPException(status_code=403, detail=f"Missing required scope: {scope}")
        return ctx
    return dependency
