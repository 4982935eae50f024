from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.models import Base
from libs.config import get_settings

settings = get_settings()

_engine_kwargs = {"echo": False}
if settings.database_url_async.startswith("postgresql"):
    _engine_kwargs["pool_size"] = 10

engine = create_async_engine(settings.database_url_async, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with SessionLocal() as sess:
        yield sess


async def init_models() -> None:
    """Create missing tables (dev / first run)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
