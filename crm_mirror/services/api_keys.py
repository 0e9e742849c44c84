import hashlib
from datetime import datetime, timezone
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_mirror.db.models.api_key import ApiKey

class ApiKeyRejected(Exception):
    pass

def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()

def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

async def validate_api_key(db: AsyncSession, raw_key: str, prefix: str) -> ApiKey:
    if not raw_key.startswith(prefix):
        raise ApiKeyRejected("Invalid API key format")
    key = (await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key)))).scalar_one_or_none()
    if key is None:
        raise ApiKeyRejected("Invalid API key")
    if not key.is_active:
        raise ApiKeyRejected("API key is disabled")
    if key.expires_at and _as_utc(key.expires_at) < datetime.now(timezone.utc):
        raise ApiKeyRejected("API key has expired")
    return key

async def touch_api_key(session_factory: async_sessionmaker[AsyncSession], key_id: int) -> None:
    async with session_factory() as db:
        await db.execute(update(ApiKey).where(ApiKey.id == key_id).values(last_used_at=datetime.now(timezone.utc)))
        await db.commit()
