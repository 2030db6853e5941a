"""
Async database session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ledger.config import get_settings
from ledger.models import Base

# Global engine and session factory
_engine = None
_async_session_factory = None


def get_engine():
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.database_url.startswith("sqlite"):
            _engine = create_async_engine(settings.database_url, echo=False)
        else:
            _engine = create_async_engine(
                settings.database_url,
                echo=False,  # Set to True for SQL debugging
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_timeout=settings.pool_timeout,
            )
    return _engine


def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        engine = get_engine()
        _async_session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


# Convenience alias
def AsyncSessionLocal():
    """Create a new async session."""
    factory = get_session_factory()
    return factory()


async def init_db():
    """
    Initialize the database by creating all tables.

    This should be called at application startup.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting an async database session.

    Usage in FastAPI:
        @router.get("/accounts")
        async def list_accounts(session: AsyncSession = Depends(get_session)):
            ...
    """
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()


@asynccontextmanager
async def session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work: commit on success, roll back on any error.

    Approving a transaction and recomputing its balances inside one
    ``session_context()`` makes both visible together or not at all:

        async with session_context() as session:
            await TransactionWorkflow(session).approve(transaction_id)
    """
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

