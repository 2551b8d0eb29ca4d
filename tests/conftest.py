"""
Shared pytest fixtures for the discount engine test suite.

Each test gets a fresh in-memory SQLite database with every table created.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ticketing import models  # noqa: F401
from ticketing.core.database import Base
from tests.factories import make_category, make_event, make_ticket_type


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def category(db):
    return await make_category(db, name="Concerts")


@pytest_asyncio.fixture
async def event(db, category):
    return await make_event(db, title="Summer Fest", category_id=category.id)


@pytest_asyncio.fixture
async def ticket_type(db, event):
    """General admission at 30000 CLP."""
    return await make_ticket_type(db, event_id=event.id, price=30000)


@pytest_asyncio.fixture
async def file_session_maker(tmp_path):
    """Sessions on a file-backed database, each with its own connection, for race tests."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
