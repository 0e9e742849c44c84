from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from crm_mirror.db.models.contact import Contact
from crm_mirror.db.models.user import User

class IdentityResolver:
    """Read-only lookup from a tenant's remote actor ids (agents, contacts) to local ids.

    Mappings are immutable once provisioned, so resolved ids are cached for the
    lifetime of the resolver. A missing mapping is a valid answer (None), never
    an error, and is not cached unless the whole tenant was preloaded.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._agents: dict[tuple[int, int], int] = {}
        self._contacts: dict[tuple[int, int], int] = {}
        self._preloaded: set[int] = set()

    async def resolve(self, tenant_id: int, remote_agent_id: int | None) -> int | None:
        if remote_agent_id is None:
            return None
        key = (tenant_id, remote_agent_id)
        if key in self._agents:
            return self._agents[key]
        if tenant_id in self._preloaded:
            return None
        user_id = (await self.db.execute(
            select(User.id).where(User.tenant_id == tenant_id, User.remote_agent_id == remote_agent_id)
        )).scalar_one_or_none()
        if user_id is not None:
            self._agents[key] = user_id
        return user_id

    async def resolve_contact(self, tenant_id: int, remote_contact_id: int | None) -> int | None:
        if remote_contact_id is None:
            return None
        key = (tenant_id, remote_contact_id)
        if key in self._contacts:
            return self._contacts[key]
        if tenant_id in self._preloaded:
            return None
        contact_id = (await self.db.execute(
            select(Contact.id).where(Contact.tenant_id == tenant_id, Contact.remote_contact_id == remote_contact_id)
        )).scalar_one_or_none()
        if contact_id is not None:
            self._contacts[key] = contact_id
        return contact_id

    def remember_contact(self, tenant_id: int, remote_contact_id: int, contact_id: int) -> None:
        # Contacts appear while a sweep runs; later lookups in the same run must see them.
        self._contacts[(tenant_id, remote_contact_id)] = contact_id

    async def preload(self, tenant_id: int) -> int:
        agents = (await self.db.execute(
            select(User.remote_agent_id, User.id).where(User.tenant_id == tenant_id, User.remote_agent_id.is_not(None))
        )).all()
        for remote_agent_id, user_id in agents:
            self._agents[(tenant_id, remote_agent_id)] = user_id
        contacts = (await self.db.execute(
            select(Contact.remote_contact_id, Contact.id)
            .where(Contact.tenant_id == tenant_id, Contact.remote_contact_id.is_not(None))
        )).all()
        for remote_contact_id, contact_id in contacts:
            self._contacts[(tenant_id, remote_contact_id)] = contact_id
        self._preloaded.add(tenant_id)
        return len(agents)
