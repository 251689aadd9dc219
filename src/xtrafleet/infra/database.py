"""Async database engine and session management.

TLA and driver-profile writers use compare-and-swap UPDATEs, so on SQLite
every pooled connection waits on the write lock instead of failing fast.
"""

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from xtrafleet.app.config import get_settings

SQLITE_BUSY_TIMEOUT_MS = 30000


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: str) -> AsyncEngine:
    """Create the async engine with per-backend connection settings."""
    if is_sqlite(url):
        engine = create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
            cursor.close()

        return engine

    return create_async_engine(url, echo=False, pool_size=5, max_overflow=10, pool_pre_ping=True)


settings = get_settings()

engine = build_engine(settings.database_url)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: yield an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create all tables (for local dev). Use migrations for production."""
    # Ensure models are registered with Base.metadata
    import xtrafleet.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        # WAL is stored in the database file; readers no longer block the single writer
        if is_sqlite(settings.database_url):
            await conn.execute(text("PRAGMA journal_mode=WAL"))
