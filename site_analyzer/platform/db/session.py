from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from site_analyzer.platform.config import get_settings
from site_analyzer.platform.db.base import Base


def build_engine(database_url: Optional[str] = None, **engine_options) -> AsyncEngine:
    database_url = database_url or get_settings().DATABASE_URL
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Please set DATABASE_URL environment variable.")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://")

    if not database_url.startswith("sqlite"):
        engine_options.setdefault("pool_pre_ping", True)
        engine_options.setdefault("pool_recycle", 1800)
        engine_options.setdefault("pool_size", 20)
        engine_options.setdefault("max_overflow", 30)
        engine_options.setdefault("pool_timeout", 30)

    return create_async_engine(database_url, echo=False, future=True, **engine_options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create the analysis tables. Migrations own this in deployed environments."""
    import site_analyzer.features.analysis.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
