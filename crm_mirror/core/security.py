from datetime import datetime, timedelta, timezone
from jose import jwt
from crm_mirror.core.config import settings

ALGORITHM = "HS256"

def create_access_token(sub: str, tenant_id: int, minutes: int = 60) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": sub, "tenant_id": tenant_id, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)

def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
