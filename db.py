# ===============================================================
# db.py — Central async SQLAlchemy setup (hosted Postgres)
# ===============================================================
import logging
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
)
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text

from config import DATABASE_URL as RAW_DATABASE_URL, SQL_ECHO

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Database URL setup
# -------------------------------------------------
def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver on plain postgres URLs."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_database_url(RAW_DATABASE_URL)

# -------------------------------------------------
# Engine & Async Session Factory
# -------------------------------------------------
engine = create_async_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    pool_pre_ping=True,     # checks if connection is alive
    pool_recycle=1800,      # hosted pooler drops idle connections
)

async_sessionmaker = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


# -------------------------------------------------
# FastAPI Dependencies
# -------------------------------------------------
async def get_session() -> AsyncSession:
    """FastAPI database session dependency."""
    async with async_sessionmaker() as session:
        yield session


@asynccontextmanager
async def get_async_session():
    """Use in background tasks or outside FastAPI context."""
    async with async_sessionmaker() as session:
        yield session


# -------------------------------------------------
# Health Check Utility
# -------------------------------------------------
async def test_connection():
    """Quick check if DB is reachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("🔌 Database connection OK")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise


async def dispose_engine():
    """Close pooled connections on shutdown."""
    await engine.dispose()
    logger.info("🔌 Database pool closed")
