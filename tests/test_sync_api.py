import pytest
from sqlalchemy import select

from crm_mirror.core.security import create_access_token
from crm_mirror.db.models import ApiKey, ConversationStatus, Tenant, User
from crm_mirror.services.api_keys import hash_api_key
from crm_mirror.services.locks import acquire_sweep_lock
from tests.conftest import fetch_conversation, remote_conversation

T = 1_700_000_000


@pytest.fixture
async def auth(db, tenant):
    user_id = (await db.execute(select(User.id).where(User.username == "ana"))).scalar_one()
    return {"Authorization": f"Bearer {create_access_token(str(user_id), tenant.id)}"}


async def test_conversation_sync_reports_counts(client, auth, chatwoot, tenant, session_factory):
    chatwoot.conversations = [remote_conversation(1, T, status="resolved"), remote_conversation(2, T)]

    r = await client.post("/api/sync/conversations", headers=auth)

    assert r.status_code == 200
    body = r.json()
    assert body["applied"] == 2
    assert body["created"] == 2
    assert body["assignment_only"] is False
    assert (await fetch_conversation(session_factory, tenant.id, 1)).status == ConversationStatus.resolved


async def test_assignment_sync(client, auth, chatwoot, tenant, session_factory):
    chatwoot.conversations = [remote_conversation(1, T, assignee=502)]

    r = await client.post("/api/sync/assignments", headers=auth)

    assert r.status_code == 200
    assert r.json()["assignment_only"] is True
    conv = await fetch_conversation(session_factory, tenant.id, 1)
    assert conv.assigned_agent_id is not None
    assert conv.last_message_preview == ""


async def test_overlapping_sync_is_refused(client, auth, tenant, fake_redis):
    await acquire_sweep_lock(fake_redis, tenant.id, "scheduler")
    r = await client.post("/api/sync/conversations", headers=auth)
    assert r.status_code == 409


async def test_remote_failure_maps_to_bad_gateway(client, auth, chatwoot, tenant):
    chatwoot.fail_on_page = 1
    r = await client.post("/api/sync/conversations", headers=auth)
    assert r.status_code == 502


async def test_unconfigured_tenant_is_bad_request(client, db):
    bare = Tenant(name="Bare")
    db.add(bare)
    await db.commit()
    token = create_access_token("1", bare.id)

    r = await client.post("/api/sync/labels", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 400
    r = await client.post("/api/sync/conversations", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 400


async def test_label_sync(client, auth, chatwoot, tenant):
    chatwoot.labels = [{"id": 1, "title": "novo", "color": "#6366f1"}]

    r = await client.post("/api/sync/labels", headers=auth)

    assert r.status_code == 200
    assert r.json() == {"created": 1, "updated": 0, "unchanged": 1, "total": 2, "errors": []}


async def test_sync_needs_write_scope(client, db, tenant):
    raw = "crm_readonly_0123456789"
    db.add(ApiKey(tenant_id=tenant.id, name="ro", key_hash=hash_api_key(raw), prefix=raw[:12], scopes=["webhooks:read"]))
    await db.commit()

    r = await client.post("/api/sync/conversations", headers={"X-API-Key": raw})
    assert r.status_code == 403
