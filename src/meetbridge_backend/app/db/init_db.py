import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from meetbridge_backend.app.core.config import load_settings
from meetbridge_backend.app.db.session import Base, make_engine
from meetbridge_backend.app.db import models  # noqa: F401  ensure model classes are registered


async def init_models(engine: AsyncEngine) -> None:
    """
    Creates all tables defined in SQLAlchemy models.
    Safe to run multiple times due to CREATE IF NOT EXISTS behavior.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _main() -> None:
    engine = make_engine(load_settings())
    try:
        await init_models(engine)
    finally:
        await engine.dispose()


# Allows:
#   python -m meetbridge_backend.app.db.init_db
if __name__ == "__main__":
    asyncio.run(_main())
