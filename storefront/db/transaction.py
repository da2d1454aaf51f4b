import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config.settings import config_settings


@asynccontextmanager
async def identity_transaction(
    session: AsyncSession,
    *,
    timeout: Optional[float] = None,
    isolation_level: Optional[str] = None,
) -> AsyncIterator[AsyncSession]:
    """
    One bounded unit of work for identity mutations.

    Commits when the block exits normally. Any exception raised inside the block,
    including the TimeoutError raised once `timeout` elapses, rolls the whole
    transaction back and propagates.
    """
    timeout = config_settings.IDENTITY_TX_TIMEOUT_SECONDS if timeout is None else timeout
    if isolation_level is None:
        isolation_level = config_settings.IDENTITY_TX_ISOLATION

    async with asyncio.timeout(timeout):
        async with session.begin():
            if isolation_level:
                # must be the first statement of the transaction
                await session.connection(execution_options={"isolation_level": isolation_level})
            yield session
