# social_publisher/dependencies/db.py
from typing import AsyncGenerator

from sqlmodel.ext.asyncio.session import AsyncSession

from social_publisher.infrastructure.database import get_session


async def get_session_dep() -> AsyncGenerator[AsyncSession, None]:
    async with get_session() as session:
        yield session


def get_session_factory():
    """Session factory for work that outlives the request (background tasks)."""
    return get_session
