import asyncio

from crm_mirror.db.session import AsyncSessionLocal, engine
from crm_mirror.db.base import Base
from crm_mirror.db import models  # noqa: F401
from crm_mirror.services.provisioning import ProvisioningError, link_agent, provision_tenant

async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    name = input("Tenant name: ").strip()
    account_id = input("Chatwoot account id (optional): ").strip()
    api_key = input("Chatwoot API access token (optional): ").strip() or None
    base_url = input("Chatwoot base URL (blank for CHATWOOT_API_URL): ").strip() or None

    async with AsyncSessionLocal() as db:
        try:
            tenant = await provision_tenant(db, name, int(account_id) if account_id else None, api_key, base_url)
        except ProvisioningError as exc:
            print(exc)
            return
        print("Tenant created:", tenant.id)

        while True:
            username = input("Agent username (blank to finish): ").strip()
            if not username:
                break
            remote_id = input("  Chatwoot agent id (optional): ").strip()
            try:
                await link_agent(db, tenant.id, username, int(remote_id) if remote_id else None)
            except ProvisioningError as exc:
                await db.rollback()
                print(" ", exc)

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
