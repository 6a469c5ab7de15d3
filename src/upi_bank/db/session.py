# upi_bank/db/session.py
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from upi_bank import config

DATABASE_URL = config.DATABASE_URL
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL not set (environment or .env)")

# Async engine
engine = create_async_engine(DATABASE_URL, echo=config.SQL_ECHO, future=True)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every TIMESTAMP column in the schema is stored in UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def create_tables(bind=None) -> None:
    """Create any missing tables on the given engine (defaults to the app engine)."""
    # models must be imported so their tables are registered on Base.metadata
    from upi_bank.db import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
