"""Async engine and session factory."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from pricewatch.config import settings
from pricewatch.db.models import Base

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create missing tables. Production schemas are managed by Alembic."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def dispose_engine(bind: AsyncEngine = engine) -> None:
    await bind.dispose()
