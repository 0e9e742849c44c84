import pytest
from sqlalchemy import select

from crm_mirror.core.errors import RemoteAPIError, SweepInProgress, TenantNotConfigured
from crm_mirror.db.models import Contact, ConversationStatus, Tenant, User
from crm_mirror.services.deltas import ConversationDelta, DeltaSource, WriteOutcome
from crm_mirror.services.locks import acquire_sweep_lock, sweep_lock_key
from crm_mirror.services.mirror_writer import MirrorWriter
from crm_mirror.services.sweeper import Sweeper
from tests.conftest import fetch_conversation, remote_conversation, ts, utc

T = 1_700_000_000


@pytest.fixture
def sweeper(session_factory, fake_redis, chatwoot):
    return Sweeper(session_factory, fake_redis, client_factory=chatwoot.client_factory, concurrency=1)


async def test_sweep_creates_and_counts_across_pages(sweeper, chatwoot, session_factory, tenant):
    chatwoot.conversations = [
        remote_conversation(1, T, assignee=501),
        remote_conversation(2, T + 1, content=None),
        remote_conversation(3, T + 2, status="pending", unread=5),
    ]
    result = await sweeper.sweep(tenant.id)

    assert (result.scanned, result.created, result.updated, result.applied) == (3, 3, 0, 3)
    pages = [r.url.params["page"] for r in chatwoot.requests]
    assert pages == ["1", "2"]
    assert all(r.url.params["status"] == "open" for r in chatwoot.requests)
    assert all(r.headers["api_access_token"] == "cw-token" for r in chatwoot.requests)

    first = await fetch_conversation(session_factory, tenant.id, 1)
    assert first.last_message_preview == "hello"
    assert first.assigned_agent_id is not None
    third = await fetch_conversation(session_factory, tenant.id, 3)
    assert third.status == ConversationStatus.open
    assert third.unread_count == 5
    assert utc(third.last_activity_at) == ts(T + 2)


async def test_sweep_skips_conversations_a_webhook_already_advanced(sweeper, chatwoot, db, session_factory, tenant):
    await MirrorWriter(db).apply(ConversationDelta(
        tenant_id=tenant.id,
        remote_conversation_id=42,
        source=DeltaSource.webhook,
        observed_at=ts(T),
        status=ConversationStatus.open,
        last_message_preview="from webhook",
    ))
    chatwoot.conversations = [remote_conversation(42, T - 10, status="resolved", content="from sweep")]

    result = await sweeper.sweep(tenant.id)

    assert result.skipped_stale == 1
    assert result.outcomes[42] == WriteOutcome.skipped_stale
    conv = await fetch_conversation(session_factory, tenant.id, 42)
    assert conv.status == ConversationStatus.open
    assert conv.last_message_preview == "from webhook"


async def test_sweep_corrects_drift(sweeper, chatwoot, db, session_factory, tenant):
    await MirrorWriter(db).apply(ConversationDelta(
        tenant_id=tenant.id, remote_conversation_id=42, source=DeltaSource.webhook,
        observed_at=ts(T), status=ConversationStatus.open,
    ))
    chatwoot.conversations = [remote_conversation(42, T + 60, status="resolved")]

    result = await sweeper.sweep(tenant.id)

    assert result.updated == 1
    assert (await fetch_conversation(session_factory, tenant.id, 42)).status == ConversationStatus.resolved


async def test_assignment_only_sweep_leaves_preview_alone(sweeper, chatwoot, db, session_factory, tenant):
    await MirrorWriter(db).apply(ConversationDelta(
        tenant_id=tenant.id, remote_conversation_id=42, source=DeltaSource.webhook,
        observed_at=ts(T), last_message_preview="keep me", unread_count=3,
    ))
    chatwoot.conversations = [remote_conversation(42, T + 5, assignee=502, content="do not copy", unread=0)]

    result = await sweeper.sweep(tenant.id, assignment_only=True)

    assert result.assignment_only
    assert result.updated == 1
    conv = await fetch_conversation(session_factory, tenant.id, 42)
    bia = (await db.execute(select(User.id).where(User.username == "bia"))).scalar_one()
    assert conv.assigned_agent_id == bia
    assert conv.last_message_preview == "keep me"
    assert conv.unread_count == 3


async def test_remote_failure_aborts_but_keeps_applied_pages(sweeper, chatwoot, session_factory, tenant, fake_redis):
    chatwoot.conversations = [remote_conversation(i, T + i) for i in range(1, 6)]
    chatwoot.fail_on_page = 2

    with pytest.raises(RemoteAPIError) as excinfo:
        await sweeper.sweep(tenant.id)

    assert excinfo.value.status_code == 503
    assert await fetch_conversation(session_factory, tenant.id, 1) is not None
    assert await fetch_conversation(session_factory, tenant.id, 2) is not None
    assert await fetch_conversation(session_factory, tenant.id, 3) is None
    assert sweep_lock_key(tenant.id) not in fake_redis.data


async def test_malformed_remote_entries_are_counted_and_skipped(sweeper, chatwoot, session_factory, tenant):
    broken = {"id": 9, "status": "open"}
    chatwoot.conversations = [broken, remote_conversation(10, T)]

    result = await sweeper.sweep(tenant.id)

    assert result.scanned == 2
    assert result.malformed == 1
    assert result.created == 1
    assert await fetch_conversation(session_factory, tenant.id, 9) is None


async def test_overlapping_sweep_for_same_tenant_is_refused(sweeper, tenant, fake_redis):
    await acquire_sweep_lock(fake_redis, tenant.id, "someone-else")
    with pytest.raises(SweepInProgress, match="someone-else"):
        await sweeper.sweep(tenant.id)
    assert fake_redis.data[sweep_lock_key(tenant.id)] == "someone-else"


async def test_unconfigured_tenant_is_rejected(sweeper, db, fake_redis):
    bare = Tenant(name="Bare")
    db.add(bare)
    await db.commit()

    with pytest.raises(TenantNotConfigured):
        await sweeper.sweep(bare.id)
    assert sweep_lock_key(bare.id) not in fake_redis.data


async def test_sweep_all_isolates_tenant_failures(sweeper, chatwoot, session_factory, tenant, other_tenant, fake_redis):
    chatwoot.conversations = [remote_conversation(1, T)]
    await acquire_sweep_lock(fake_redis, other_tenant.id, "busy")

    results = await sweeper.sweep_all()

    assert list(results) == [tenant.id]
    assert results[tenant.id].created == 1


async def test_out_of_range_timestamp_is_malformed_not_fatal(sweeper, chatwoot, session_factory, tenant):
    millis = remote_conversation(11, T)
    millis["last_activity_at"] = millis["timestamp"] = T * 1000
    chatwoot.conversations = [remote_conversation(10, T), millis]

    result = await sweeper.sweep(tenant.id)

    assert result.scanned == 2
    assert result.malformed == 1
    assert result.created == 1
    assert await fetch_conversation(session_factory, tenant.id, 10) is not None
    assert await fetch_conversation(session_factory, tenant.id, 11) is None


async def test_sweep_links_conversations_of_one_contact_to_one_local_contact(sweeper, chatwoot, db, session_factory, tenant):
    chatwoot.conversations = [remote_conversation(1, T), remote_conversation(2, T + 1)]

    await sweeper.sweep(tenant.id)

    contacts = (await db.execute(select(Contact).where(Contact.tenant_id == tenant.id))).scalars().all()
    assert [(c.remote_contact_id, c.name) for c in contacts] == [(99, "Cliente")]
    first = await fetch_conversation(session_factory, tenant.id, 1)
    second = await fetch_conversation(session_factory, tenant.id, 2)
    assert first.contact_id == second.contact_id == contacts[0].id
