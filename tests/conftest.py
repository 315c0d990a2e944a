"""Shared fixtures.

Hey future me - every DB test gets a FRESH in-memory SQLite database (StaticPool, so all
sessions share the one connection that holds it). Tables come from Base.metadata, not
alembic.
"""

from collections.abc import AsyncGenerator

import pytest
from helpers import FakeClock
from sqlalchemy.ext.asyncio import AsyncSession

from soundtrack.config import DatabaseSettings, Settings, SpotifySettings
from soundtrack.infrastructure.persistence import Database


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at an in-memory database and fake provider credentials."""
    return Settings(
        database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        spotify=SpotifySettings(
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_uri="http://localhost:3000/callback",
        ),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
async def session(db: Database) -> AsyncGenerator[AsyncSession, None]:
    """Session inside a transaction that is committed at the end (if no error)."""
    async with db.session_scope() as s:
        yield s


@pytest.fixture
def clock() -> FakeClock:
    """Wall clock frozen at FIXED_NOW (set .now to move it)."""
    return FakeClock()
