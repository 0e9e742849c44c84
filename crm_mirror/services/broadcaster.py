from fastapi import WebSocket

from crm_mirror.core.logging import get_logger

logger = get_logger(__name__)

CONVERSATION_UPDATED = "conversation:updated"

class TenantBroadcaster:
    """Websocket fan-out, one room per tenant."""

    def __init__(self):
        self.sockets: dict[int, set[WebSocket]] = {}

    async def connect(self, tenant_id: int, ws: WebSocket) -> None:
        await ws.accept()
        self.sockets.setdefault(tenant_id, set()).add(ws)

    def disconnect(self, tenant_id: int, ws: WebSocket) -> None:
        members = self.sockets.get(tenant_id)
        if members is None:
            return
        members.discard(ws)
        if not members:
            del self.sockets[tenant_id]

    async def publish(self, tenant_id: int, payload: dict) -> int:
        delivered = 0
        for ws in list(self.sockets.get(tenant_id, ())):
            try:
                await ws.send_json(payload)
                delivered += 1
            except Exception as exc:
                logger.debug("websocket_send_failed", tenant_id=tenant_id, error=repr(exc))
                self.disconnect(tenant_id, ws)
        return delivered

    async def conversation_updated(self, tenant_id: int, remote_conversation_id: int, outcome: str) -> int:
        return await self.publish(tenant_id, {
            "event": CONVERSATION_UPDATED,
            "remote_conversation_id": remote_conversation_id,
            "outcome": outcome,
        })

broadcaster = TenantBroadcaster()
