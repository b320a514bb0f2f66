from contextlib import asynccontextmanager
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy import text

from config import get_settings
from people_merge.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "group_members",
    "group_people",
    "tasks",
    "recurring_tasks",
    "expenses",
    "expense_splits",
    "settlements",
    "people_merge_audit",
)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        try:
            database_url = settings.get_database_url()
        except ValueError as e:
            logger.error(f"Database not configured: {e}")
            raise ConfigurationError("Server misconfigured") from e

        connect_args = {}
        if settings.POSTGRES_SSLMODE and settings.POSTGRES_SSLMODE != "disable" and "ssl=" not in database_url:
            connect_args["ssl"] = settings.POSTGRES_SSLMODE

        _engine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args=connect_args,
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope():
    """Open a session on demand, for endpoints that check the request first"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_db():
    """Dependency to get database session"""
    async with session_scope() as session:
        yield session


async def init_db():
    """Verify the database is reachable and the merge tables exist"""
    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("PostgreSQL connection successful")

        result = await conn.execute(text("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public'
        """))
        tables = {row[0] for row in result.fetchall()}

    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        logger.warning(f"Missing tables: {missing}")
    return not missing


async def dispose_engine():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
