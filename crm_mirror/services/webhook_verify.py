import hmac
from fastapi import HTTPException, Request
from crm_mirror.core.config import settings

def verify_chatwoot_signature(request: Request) -> None:
    secret = settings.CHATWOOT_WEBHOOK_SECRET
    if not secret:
        return
    received = request.headers.get("X-Chatwoot-Signature")
    if not received:
        raise HTTPException(status_code=401, detail="Missing signature")
    if not hmac.compare_digest(secret.encode(), received.encode()):
        raise HTTPException(status_code=401, detail="Invalid signature")
