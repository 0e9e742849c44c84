from collections.abc import AsyncIterator
from dataclasses import dataclass
import httpx

from crm_mirror.core.config import settings
from crm_mirror.core.errors import RemoteAPIError, TenantNotConfigured
from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.tenant import Tenant

logger = get_logger(__name__)

@dataclass(frozen=True)
class ChatwootCredentials:
    account_id: int
    api_key: str
    base_url: str

def credentials_for(tenant: Tenant) -> ChatwootCredentials:
    base_url = (tenant.remote_base_url or settings.CHATWOOT_API_URL).rstrip("/")
    if not tenant.remote_account_id or not tenant.remote_api_key or not base_url:
        raise TenantNotConfigured(f"tenant {tenant.id} has no Chatwoot configuration")
    return ChatwootCredentials(account_id=tenant.remote_account_id, api_key=tenant.remote_api_key, base_url=base_url)

class ChatwootClient:
    def __init__(
        self,
        credentials: ChatwootCredentials,
        timeout: float | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.page_size = page_size or settings.REMOTE_PAGE_SIZE
        self.max_pages = max_pages or settings.REMOTE_MAX_PAGES
        self._client = httpx.AsyncClient(
            base_url=f"{credentials.base_url}/api/v1/accounts/{credentials.account_id}",
            headers={"Accept": "application/json", "api_access_token": credentials.api_key},
            timeout=timeout or settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatwootClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            r = await self._client.request(method, path, **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteAPIError(
                f"Chatwoot {method} {path} answered {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteAPIError(f"Chatwoot {method} {path} failed: {exc!r}") from exc
        if not r.content:
            return {}
        return r.json()

    async def list_conversations(self, status: str = "open", page: int = 1) -> list[dict]:
        body = await self._request("GET", "/conversations", params={"status": status, "page": page})
        return (body.get("data") or {}).get("payload") or []

    async def iter_conversation_pages(self, status: str = "open") -> AsyncIterator[list[dict]]:
        for page in range(1, self.max_pages + 1):
            conversations = await self.list_conversations(status=status, page=page)
            if conversations:
                yield conversations
            if len(conversations) < self.page_size:
                return
        logger.warning(
            "conversation_page_cap_reached",
            account_id=self.credentials.account_id,
            status=status,
            max_pages=self.max_pages,
        )

    async def list_labels(self) -> list[dict]:
        body = await self._request("GET", "/labels")
        return body.get("payload") or []

    async def create_label(self, title: str, color: str, description: str = "") -> dict:
        return await self._request("POST", "/labels", json={
            "title": title,
            "color": color,
            "description": description,
            "show_on_sidebar": True,
        })

    async def update_label(self, label_id: int, title: str, color: str, description: str = "") -> dict:
        return await self._request("PATCH", f"/labels/{label_id}", json={
            "title": title,
            "color": color,
            "description": description,
        })

    async def set_agent_availability(self, agent_id: int, availability: str) -> dict:
        payload: dict = {"availability": availability}
        if availability == "online":
            # Chatwoot overrides API-set availability while auto_offline is on.
            payload["auto_offline"] = False
        return await self._request("PUT", f"/agents/{agent_id}", json=payload)
