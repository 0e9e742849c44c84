from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_mirror.core.logging import get_logger
from crm_mirror.db.models.pipeline_stage import DEFAULT_STAGES, PipelineStage
from crm_mirror.db.models.tenant import Tenant
from crm_mirror.db.models.user import Role, User

logger = get_logger(__name__)

class ProvisioningError(ValueError):
    pass

async def provision_tenant(
    db: AsyncSession,
    name: str,
    remote_account_id: int | None = None,
    remote_api_key: str | None = None,
    remote_base_url: str | None = None,
) -> Tenant:
    """Create a tenant together with the default pipeline stages."""
    if remote_account_id is not None:
        taken = (await db.execute(select(Tenant.id).where(Tenant.remote_account_id == remote_account_id))).scalar_one_or_none()
        if taken is not None:
            raise ProvisioningError(f"Chatwoot account {remote_account_id} already belongs to tenant {taken}")

    tenant = Tenant(
        name=name,
        remote_account_id=remote_account_id,
        remote_api_key=remote_api_key,
        remote_base_url=remote_base_url,
    )
    db.add(tenant)
    await db.flush()
    db.add_all([PipelineStage(tenant_id=tenant.id, **stage) for stage in DEFAULT_STAGES])
    await db.commit()
    logger.info("tenant_provisioned", tenant_id=tenant.id, remote_account_id=remote_account_id, stages=len(DEFAULT_STAGES))
    return tenant

async def link_agent(
    db: AsyncSession,
    tenant_id: int,
    username: str,
    remote_agent_id: int | None,
    name: str | None = None,
    role: Role = Role.agent,
) -> User:
    """Create the local user if needed and record its remote agent id.

    A recorded link never changes; re-linking to the same id is a no-op.
    """
    user = (await db.execute(select(User).where(User.username == username))).scalar_one_or_none()
    if user is None:
        user = User(tenant_id=tenant_id, username=username, name=name or username, role=role)
        db.add(user)
    elif user.tenant_id != tenant_id:
        raise ProvisioningError(f"user {username} belongs to another tenant")
    elif user.remote_agent_id is not None and user.remote_agent_id != remote_agent_id:
        raise ProvisioningError(f"user {username} is already linked to remote agent {user.remote_agent_id}")

    if remote_agent_id is not None:
        holder = (await db.execute(
            select(User.username).where(User.tenant_id == tenant_id, User.remote_agent_id == remote_agent_id)
        )).scalar_one_or_none()
        if holder is not None and holder != username:
            raise ProvisioningError(f"remote agent {remote_agent_id} is already linked to {holder}")
    user.remote_agent_id = remote_agent_id
    await db.commit()
    return user
