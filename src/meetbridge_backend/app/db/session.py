# src/meetbridge_backend/app/db/session.py
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from meetbridge_backend.app.core.config import Settings


# ------------------------------------------------------------
# Base class for ORM models
# ------------------------------------------------------------
class Base(DeclarativeBase):
    """Base for all ORM models."""
    pass


# ------------------------------------------------------------
# Engine / session factory (built from Settings, owned by the app)
# ------------------------------------------------------------
def make_engine(settings: Settings) -> AsyncEngine:
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        # concurrent logins wait on the sqlite write lock instead of failing fast
        connect_args["timeout"] = 30
    return create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        connect_args=connect_args,
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def test_connection(engine: AsyncEngine) -> int:
    """Verify DB connectivity (startup / health check)."""
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT 1"))
        return result.scalar_one()
