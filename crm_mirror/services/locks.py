import redis.asyncio as redis
from crm_mirror.core.config import settings

r = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Compare-and-delete in one round trip: only the holder's token releases the lock.
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

def get_redis() -> redis.Redis:
    return r

def sweep_lock_key(tenant_id: int) -> str:
    return f"sweep_lock:{tenant_id}"

async def acquire_sweep_lock(client: redis.Redis, tenant_id: int, token: str, ttl_seconds: int = 600) -> bool:
    return await client.set(sweep_lock_key(tenant_id), token, nx=True, ex=ttl_seconds) is True

async def get_sweep_lock_owner(client: redis.Redis, tenant_id: int) -> str | None:
    return await client.get(sweep_lock_key(tenant_id))

async def release_sweep_lock(client: redis.Redis, tenant_id: int, token: str) -> bool:
    return await client.eval(RELEASE_SCRIPT, 1, sweep_lock_key(tenant_id), token) == 1
