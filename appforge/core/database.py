# appforge/core/database.py
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from appforge.core.config import get_database_url


class Base(DeclarativeBase):
    pass


def make_engine(db_url: str) -> AsyncEngine:
    # Configure engine based on database type
    if "sqlite" in db_url:
        return create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = make_engine(get_database_url())
SessionLocal = make_session_factory(engine)


async def create_tables(target: AsyncEngine = engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    from appforge.models import project  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
