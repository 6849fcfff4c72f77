"""Pytest configuration: a throwaway SQLite catalog per test and a scripted search index."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import storefront.models  # noqa: F401
from storefront.core.database import Base, create_engine
from storefront.core.exceptions import IndexDegradedError
from storefront.search.elasticsearch import IndexHits, SearchIndex


class FakeSearchIndex(SearchIndex):
    """
    Ranks whatever ids it was given, in that order, and records every call.
    Set `error` to make queries fail like an unreachable cluster.
    """

    def __init__(self, ranked_ids=(), facets=None, error=None):
        self.ranked_ids = [str(product_id) for product_id in ranked_ids]
        self.facets = facets
        self.error = error
        self.queries = []
        self.synced = []

    async def query(self, text, skip=0, limit=12, with_facets=False):
        self.queries.append({"text": text, "skip": skip, "limit": limit})
        if self.error:
            raise self.error
        return IndexHits(
            product_ids=self.ranked_ids[skip:skip + limit],
            total=len(self.ranked_ids),
            facets=self.facets,
        )

    async def sync_products(self, session, product_ids):
        self.synced.extend(product_ids)


@pytest.fixture
async def engine(tmp_path):
    # A file database so that import workers can hold separate connections
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_index():
    return FakeSearchIndex()


@pytest.fixture
def failing_index():
    return FakeSearchIndex(error=IndexDegradedError("connection refused"))


def feed_row(name="Yoga Mat", description="A mat", price=10, **fields):
    """A minimal valid feed row."""
    return {"name": name, "description": description, "price": price, **fields}
