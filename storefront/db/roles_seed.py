import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import  AsyncSession

from storefront.schema.full_schema import Role

DEFAULT_ROLES = [
    {"name": "customer", "description": "Registered shopper"},
    {"name": "admin", "description": "Store administrator"},
]


async def seed_roles(session: AsyncSession, roles=DEFAULT_ROLES):
    for r in roles:
        q = await session.execute(select(Role).where(Role.name == r["name"]))
        role = q.scalar_one_or_none()
        if not role:
            role = Role(name=r["name"], description=r["description"])
            session.add(role)
    await session.commit()


async def _main():
    from storefront.db.connection import async_engine, async_session

    async with async_session() as session:
        await seed_roles(session)
    await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(_main())
