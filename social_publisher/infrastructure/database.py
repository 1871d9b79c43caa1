# social_publisher/infrastructure/database.py
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

# table modules register themselves on SQLModel.metadata
from social_publisher.models import post as _post_models  # noqa: F401
from social_publisher.models import connected_platform as _platform_models  # noqa: F401

logger = structlog.get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./social_publisher.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False)
session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(target: AsyncEngine = engine) -> None:
    async with target.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    logger.info("db_initialized")


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session
