"""Async SQLAlchemy engine and session helpers.

Provides factories for the async engine and sessionmaker (built from the
application settings), the declarative ``Base`` shared by all models and
helpers for initializing the database and yielding sessions for dependency
injection.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from starlette.requests import Request

from tokenvault.config.config import Settings
from tokenvault.core.logging import logger

Base = declarative_base()


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by ``settings.DATABASE_URL_ASYNC``.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    url = settings.DATABASE_URL_ASYNC
    kwargs = {"echo": settings.DATABASE_ECHO}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return create_async_engine(url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def initialize_database(engine: AsyncEngine):
    """Create metadata tables for every model registered on ``Base``.

    Raises:
        Exception: Re-raises any exception encountered while initializing.
    """
    # NOTE: models register themselves on Base when imported.
    from tokenvault.models import auth  # noqa: F401

    logger.info("Initializing database tables")
    async with engine.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialization complete")
        except Exception:
            logger.exception("Database initialization failed")
            raise


async def get_db(request: Request):
    """Yield an async database session for FastAPI dependency injection.

    Usage:
        db: AsyncSession = Depends(get_db)

    Yields:
        AsyncSession: an asynchronous SQLAlchemy session.
    """

    async with request.app.state.sessionmaker() as session:
        yield session
