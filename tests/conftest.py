"""Shared fixtures: in-memory SQLite mirror, a fake Redis, and a scripted Chatwoot API."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SWEEP_ENABLED", "false")
os.environ.setdefault("SWEEP_CONCURRENCY", "1")
os.environ.setdefault("CHATWOOT_API_URL", "https://desk.test")

import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crm_mirror.core.deps_api import get_client_factory
from crm_mirror.db.base import Base
from crm_mirror.db import models  # noqa: F401
from crm_mirror.db.models import Conversation, PipelineStage, Tenant, User
from crm_mirror.db.session import get_db, get_session_factory
from crm_mirror.main import app
from crm_mirror.services.background import BackgroundDispatcher
from crm_mirror.services.chatwoot_client import ChatwootClient
from crm_mirror.services.locks import get_redis
from crm_mirror.services.rate_limit import RateLimiterRegistry


def utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def ts(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def expire(self, key, seconds):
        return key in self.data

    async def eval(self, script, numkeys, *args):
        # Only the compare-and-delete release script is ever evaluated.
        key, token = args[0], args[1]
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


class FakeSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


class FakeChatwoot:
    """Scripted stand-in for the Chatwoot account API behind httpx.MockTransport."""

    def __init__(self, page_size: int = 25):
        self.page_size = page_size
        self.conversations: list[dict] = []
        self.labels: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_on_page: int | None = None
        self.fail_label_create_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/api/v1/accounts/", 1)[1].split("/", 1)[1]
        if request.method == "GET" and path == "conversations":
            page = int(request.url.params.get("page", "1"))
            if self.fail_on_page == page:
                return httpx.Response(503, json={"error": "unavailable"})
            start = (page - 1) * self.page_size
            payload = self.conversations[start:start + self.page_size]
            return httpx.Response(200, json={"data": {"meta": {"count": len(self.conversations)}, "payload": payload}})
        if request.method == "GET" and path == "labels":
            return httpx.Response(200, json={"payload": self.labels})
        if request.method == "POST" and path == "labels":
            if self.fail_label_create_with:
                return httpx.Response(self.fail_label_create_with, json={"error": "rejected"})
            body = json.loads(request.content)
            label = {"id": len(self.labels) + 1, "title": body["title"], "color": body["color"]}
            self.labels.append(label)
            return httpx.Response(200, json=label)
        if request.method == "PATCH" and path.startswith("labels/"):
            label_id = int(path.split("/")[1])
            body = json.loads(request.content)
            for label in self.labels:
                if label["id"] == label_id:
                    label.update(color=body["color"], title=body["title"])
                    return httpx.Response(200, json=label)
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "PUT" and path.startswith("agents/"):
            return httpx.Response(200, json={"id": int(path.split("/")[1]), **json.loads(request.content)})
        return httpx.Response(404, json={"error": "no route"})

    def client_factory(self, credentials):
        return ChatwootClient(credentials, page_size=self.page_size, transport=httpx.MockTransport(self.handler))


def remote_conversation(
    conversation_id: int,
    last_activity: int,
    *,
    status: str = "open",
    assignee: int | None = None,
    content: str | None = "hello",
    unread: int = 0,
) -> dict:
    message = None
    if content is not None:
        message = {"id": conversation_id * 10, "content": content, "content_type": "text", "message_type": 0, "attachments": []}
    return {
        "id": conversation_id,
        "inbox_id": 3,
        "status": status,
        "unread_count": unread,
        "meta": {"sender": {"id": 99, "name": "Cliente"}, "assignee": {"id": assignee} if assignee else None},
        "last_non_activity_message": message,
        "timestamp": last_activity,
        "last_activity_at": last_activity,
    }


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def tenant(db):
    tenant = Tenant(name="Acme", remote_account_id=7, remote_api_key="cw-token", remote_base_url="https://desk.test")
    db.add(tenant)
    await db.flush()
    db.add_all([
        User(tenant_id=tenant.id, username="ana", name="Ana", remote_agent_id=501),
        User(tenant_id=tenant.id, username="bia", name="Bia", remote_agent_id=502),
        User(tenant_id=tenant.id, username="caio", name="Caio", remote_agent_id=None),
        PipelineStage(tenant_id=tenant.id, name="Novo", slug="novo", color="#6366f1", position=0, is_initial=True),
        PipelineStage(tenant_id=tenant.id, name="Triagem", slug="triagem", color="#f59e0b", position=1),
    ])
    await db.commit()
    return tenant


@pytest.fixture
async def other_tenant(db):
    tenant = Tenant(name="Other", remote_account_id=8, remote_api_key="cw-other", remote_base_url="https://desk.test")
    db.add(tenant)
    await db.flush()
    db.add(User(tenant_id=tenant.id, username="zed", name="Zed", remote_agent_id=777))
    await db.commit()
    return tenant


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def chatwoot():
    return FakeChatwoot(page_size=2)


@pytest.fixture
async def client(session_factory, fake_redis, chatwoot):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_client_factory] = lambda: chatwoot.client_factory

    app.state.rate_limiters = RateLimiterRegistry()
    app.state.dispatcher = BackgroundDispatcher()
    await app.state.dispatcher.start()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.dispatcher.stop()
    await app.state.rate_limiters.stop()
    app.dependency_overrides.clear()


async def fetch_conversation(session_factory, tenant_id: int, remote_conversation_id: int):
    async with session_factory() as session:
        return (await session.execute(
            select(Conversation).where(
                Conversation.tenant_id == tenant_id,
                Conversation.remote_conversation_id == remote_conversation_id,
            )
        )).scalar_one_or_none()
