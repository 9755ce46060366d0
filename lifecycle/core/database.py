from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from lifecycle.config import settings

# Transaction pooled connection for request handling (via Supabase pooler on port 6543)
# Note: Transaction pooler doesn't support prepared statements, so we disable them
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,  # Detects stale connections before use
    pool_recycle=300,  # Recycle connections every 5 min (Supabase pooler compatibility)
    pool_timeout=30,
    connect_args={
        "statement_cache_size": 0,
        "prepared_statement_cache_size": 0,
        "command_timeout": 60,  # Query timeout in seconds (prevents hung queries)
    },
)

# Direct connection for migrations, advisory locks and scheduled sweeps (port 5432)
# Session-level advisory locks need a stable backend connection, which the
# transaction pooler does not guarantee.
direct_engine = create_async_engine(
    settings.database_url_direct,
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_size=3,
    max_overflow=5,
    connect_args={
        "command_timeout": 300,
    },
)


def _session_factory(bind: AsyncEngine) -> sessionmaker:  # type: ignore[type-arg]
    # Rows stay readable after commit: services hand them to notifications
    # and response models once the unit of work has closed.
    return sessionmaker(  # type: ignore[call-overload]
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Request handlers and the per-request deletion units of work
async_session_maker = _session_factory(engine)

# Advisory locks, maintenance sweeps and one-off tasks
direct_session_maker = _session_factory(direct_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields an async database session.

    Commits when the request handler returns, rolls back on any exception.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables (for development only - use Alembic in production)."""
    async with direct_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
