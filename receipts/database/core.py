from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from receipts.config import config

engine = create_async_engine(config.DATABASE_URL, echo=False)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

class Base(DeclarativeBase):
    # Load server defaults (upload_date, timestamps) right after INSERT, lazy loads are not possible under asyncio
    __mapper_args__ = {"eager_defaults": True}

async def init_models() -> None:
    """Create tables from ORM metadata (development only, use alembic otherwise)"""
    from receipts.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)