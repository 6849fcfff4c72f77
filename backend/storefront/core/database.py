import json

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from storefront.core.config import settings


def json_serializer(value) -> str:
    # Non-ASCII text stays literal in JSON columns; tag membership matches on that text
    return json.dumps(value, ensure_ascii=False)


def create_engine(url: str, **kwargs):
    return create_async_engine(url, json_serializer=json_serializer, **kwargs)


# Async engine for FastAPI and scripts
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that opens more than one session (import workers)."""
    return async_session_maker


async def init_db():
    """Create any missing tables."""
    import storefront.models  # noqa: F401  registers the mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
