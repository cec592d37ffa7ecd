"""
Database Configuration and Session Management
============================================

This module provides the async database engine, session factory, and table
creation functionality for the swap relay ledger.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from config import Config
from models import Base
from services.relay_errors import RelayConfigurationError

logger = logging.getLogger(__name__)

_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker] = None


def to_async_database_url(database_url: str) -> str:
    """Convert a configured DATABASE_URL into an async driver URL"""
    if database_url.startswith('postgresql://'):
        async_url = database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
        # asyncpg uses 'ssl' instead of 'sslmode' parameter
        async_url = async_url.replace('sslmode=require', 'ssl=require')
        async_url = async_url.replace('sslmode=prefer', 'ssl=prefer')
        async_url = async_url.replace('sslmode=disable', 'ssl=disable')
        return async_url
    if database_url.startswith('sqlite://'):
        return database_url.replace('sqlite://', 'sqlite+aiosqlite://', 1)
    return database_url


def build_async_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL"""
    async_url = to_async_database_url(database_url)
    if async_url.startswith('postgresql+asyncpg://'):
        return create_async_engine(
            async_url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,
            echo=echo,
            connect_args={
                "server_settings": {
                    "application_name": "swap_relay_async",  # For monitoring in pg_stat_activity
                },
                "timeout": 10,
                "command_timeout": 30,
            }
        )
    return create_async_engine(async_url, echo=echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False  # Records are read after the session closes
    )


def get_async_engine() -> AsyncEngine:
    """Process-wide async engine built from Config.DATABASE_URL"""
    global _async_engine
    if _async_engine is None:
        if not Config.DATABASE_URL:
            raise RelayConfigurationError("DATABASE_URL environment variable is required")
        _async_engine = build_async_engine(Config.DATABASE_URL)
    return _async_engine


def get_session_factory() -> async_sessionmaker:
    """Process-wide async session factory"""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = build_session_factory(get_async_engine())
    return _async_session_factory


@asynccontextmanager
async def async_managed_session(session_factory: Optional[async_sessionmaker] = None):
    """Async context manager for database sessions"""
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables(engine: Optional[AsyncEngine] = None) -> bool:
    """Create all ledger tables if they don't exist"""
    target_engine = engine or get_async_engine()
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")
        async with target_engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}")
        return False


async def test_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """Test database connection"""
    target_engine = engine or get_async_engine()
    try:
        async with target_engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False


async def dispose_engine():
    """Close pooled connections on shutdown"""
    global _async_engine, _async_session_factory
    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_session_factory = None
