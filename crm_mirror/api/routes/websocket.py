from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from jose import JWTError
from crm_mirror.core.security import decode_token
from crm_mirror.services.broadcaster import broadcaster

router = APIRouter(prefix="/ws")

@router.websocket("")
async def tenant_notices(ws: WebSocket, token: str = Query(...)):
    try:
        tenant_id = int(decode_token(token)["tenant_id"])
    except (JWTError, KeyError, TypeError, ValueError):
        await ws.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await broadcaster.connect(tenant_id, ws)
    try:
        # Clients only listen; inbound frames keep the socket alive.
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        broadcaster.disconnect(tenant_id, ws)
