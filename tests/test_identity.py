from sqlalchemy import select

from crm_mirror.db.models import Contact, User
from crm_mirror.services.identity import IdentityResolver


async def test_resolves_mapped_agent(db, tenant):
    ana = (await db.execute(select(User.id).where(User.username == "ana"))).scalar_one()
    assert await IdentityResolver(db).resolve(tenant.id, 501) == ana


async def test_missing_mapping_is_none_not_error(db, tenant):
    resolver = IdentityResolver(db)
    assert await resolver.resolve(tenant.id, 12345) is None
    assert await resolver.resolve(tenant.id, None) is None


async def test_mapping_is_scoped_to_tenant(db, tenant, other_tenant):
    resolver = IdentityResolver(db)
    assert await resolver.resolve(tenant.id, 777) is None
    assert await resolver.resolve(other_tenant.id, 777) is not None


async def test_resolver_never_creates_users(db, tenant):
    before = len((await db.execute(select(User))).scalars().all())
    await IdentityResolver(db).resolve(tenant.id, 4242)
    after = len((await db.execute(select(User))).scalars().all())
    assert before == after


async def test_preload_answers_from_cache(db, tenant):
    resolver = IdentityResolver(db)
    assert await resolver.preload(tenant.id) == 2

    await db.close()
    assert await resolver.resolve(tenant.id, 502) is not None
    assert await resolver.resolve(tenant.id, 9999) is None


async def test_resolves_contact_within_tenant_only(db, tenant, other_tenant):
    maria = Contact(tenant_id=tenant.id, remote_contact_id=321, name="Maria")
    db.add(maria)
    await db.commit()

    resolver = IdentityResolver(db)
    assert await resolver.resolve_contact(tenant.id, 321) == maria.id
    assert await resolver.resolve_contact(other_tenant.id, 321) is None
    assert await resolver.resolve_contact(tenant.id, None) is None
    assert len((await db.execute(select(Contact))).scalars().all()) == 1


async def test_preloaded_contacts_and_remembered_ones_resolve_without_queries(db, tenant):
    db.add(Contact(tenant_id=tenant.id, remote_contact_id=321, name="Maria"))
    await db.commit()
    resolver = IdentityResolver(db)
    await resolver.preload(tenant.id)

    await db.close()
    assert await resolver.resolve_contact(tenant.id, 321) is not None
    assert await resolver.resolve_contact(tenant.id, 654) is None
    resolver.remember_contact(tenant.id, 654, 17)
    assert await resolver.resolve_contact(tenant.id, 654) == 17
