"""Shared fixtures: in-memory SQLite database and repository."""

import os

# Configure before pricewatch.config builds its settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("METRICS_PUSHGATEWAY_URL", "")

from typing import AsyncGenerator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.db.models import Base
from pricewatch.db.repository import SqlAlchemyRepository


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    # File-backed database so each concurrent session gets its own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def repository(session_factory) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(session_factory)
