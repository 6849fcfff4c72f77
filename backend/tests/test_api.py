"""End-to-end tests for the HTTP API over httpx's ASGI transport."""

import uuid

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import feed_row
from main import app
from storefront.core.config import settings
from storefront.core.database import get_db, get_session_factory
from storefront.models import Review
from storefront.search.elasticsearch import get_search_index


def override(session_factory, index):
    async def db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_search_index] = lambda: index


@pytest.fixture
async def client(session_factory, fake_index):
    override(session_factory, fake_index)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestImport:
    async def test_import_then_list(self, client, fake_index):
        response = await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="Yoga Mat", sku="S1", category="Fitness", brand="Zen"),
            feed_row(name="Mat Pro", sku="S2", category="Fitness"),
            feed_row(name="Broken", price=-3),
        ]})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["results"]["imported"] == 2
        assert body["results"]["failed"] == 1
        assert body["results"]["errors"] == [{"index": 3, "name": "Broken", "error": "Price cannot be negative"}]
        assert body["message"] == "Import completed: 2 imported, 0 updated, 1 failed"

        # The index sync ran as a background task
        assert len(fake_index.synced) == 2

        listing = (await client.get("/v1/products", params={"category": "fitness", "brand": "Zen"})).json()
        assert listing["success"] is True
        assert listing["count"] == 1
        assert listing["total"] == 1
        assert listing["facets"] is None
        product = listing["products"][0]
        assert product["slug"] == "yoga-mat"
        assert product["averageRating"] == 0
        assert product["reviewCount"] == 0

    @pytest.mark.parametrize("payload", [{}, {"products": []}, {"products": {"name": "x"}}])
    async def test_rejects_missing_or_empty_products(self, client, payload):
        response = await client.post("/v1/admin/products/import", json=payload)
        assert response.status_code == 400

    async def test_chunks_round_trip_the_category_cache(self, client):
        first = await client.post("/v1/admin/products/import-chunk", json={
            "products": [feed_row(name="One", category="Fitness")],
        })
        cache = first.json()["categoryCache"]
        assert [entry["slug"] for entry in cache] == ["fitness"]

        second = await client.post("/v1/admin/products/import-chunk", json={
            "products": [feed_row(name="Two", category=["Fitness", "Yoga"])],
            "categoryCache": cache,
        })
        body = second.json()
        assert body["results"]["imported"] == 1
        assert sorted(entry["slug"] for entry in body["categoryCache"]) == ["fitness", "yoga"]

    async def test_admin_key_is_enforced_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "s3cret")
        payload = {"products": [feed_row()]}

        denied = await client.post("/v1/admin/products/import", json=payload)
        allowed = await client.post("/v1/admin/products/import", json=payload, headers={"X-Admin-Key": "s3cret"})

        assert denied.status_code == 403
        assert allowed.status_code == 200

    async def test_storage_outage_is_a_500(self, tmp_path, fake_index):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'catalog.db'}")
        override(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), fake_index)
        try:
            async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post("/v1/admin/products/import", json={"products": [feed_row()]})
        finally:
            app.dependency_overrides.clear()
            await engine.dispose()

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert "Catalog storage unavailable" in response.json()["error"]


class TestProducts:
    async def test_detail_by_slug(self, client, session_factory):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(
                name="Yoga Mat", sku="S1", category="Fitness",
                variants=[{"name": "Blue", "sku": "V1", "price": 12, "color": "Blue"}],
                attributes={"Color": ["Blue", "Green"]},
                specifications={"Material": "TPE"},
            ),
        ]})
        product_id = (await client.get("/v1/products")).json()["products"][0]["id"]
        async with session_factory() as session:
            session.add_all([Review(product_id=uuid.UUID(product_id), rating=r) for r in (5, 4, 4, 4)])
            await session.commit()

        response = await client.get("/v1/products/yoga-mat")

        assert response.status_code == 200
        body = response.json()
        assert body["averageRating"] == 4.3
        assert body["reviewCount"] == 4
        assert body["categories"][0]["name"] == "Fitness"
        assert body["variants"][0]["sku"] == "V1"
        assert body["attributes"] == [{"attribute": "Color", "slug": "color", "value": "Blue, Green"}]
        assert body["specifications"] == {"Material": "TPE"}

    async def test_unknown_or_inactive_slug_is_404(self, client):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="Hidden", isActive=False),
        ]})

        assert (await client.get("/v1/products/missing")).status_code == 404
        assert (await client.get("/v1/products/hidden")).status_code == 404

    async def test_search_falls_back_when_the_index_fails(self, session_factory, failing_index):
        override(session_factory, failing_index)
        try:
            async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
                await client.post("/v1/admin/products/import", json={"products": [
                    feed_row(name="Wireless Headphones", tags=["audio"]),
                    feed_row(name="Yoga Mat"),
                ]})
                response = await client.get("/v1/products", params={"search": "headphones"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        body = response.json()
        assert [product["name"] for product in body["products"]] == ["Wireless Headphones"]
        assert "facets" in body

    async def test_attribute_value_pairs(self, client):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="Blue Mat", category="Fitness", attributes={"Color": ["Blue"]}),
            feed_row(name="Red Mat", category="Fitness", attributes={"Color": ["Red"]}),
        ]})

        response = await client.get("/v1/products", params=[("attribute", "Color"), ("value", "red")])
        assert [product["name"] for product in response.json()["products"]] == ["Red Mat"]

    async def test_autocomplete(self, client):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="Yoga Mat", category="Fitness", brand="Zen", images=["front.jpg", "back.jpg"]),
            feed_row(name="Mat Pro"),
            feed_row(name="Hidden Mat", isActive=False),
            feed_row(name="Band", description="Stretchy"),
        ]})

        body = (await client.get("/v1/products/autocomplete", params={"q": "mat"})).json()

        assert body["success"] is True
        assert body["count"] == 2
        by_name = {suggestion["name"]: suggestion for suggestion in body["suggestions"]}
        assert set(by_name) == {"Yoga Mat", "Mat Pro"}
        assert by_name["Yoga Mat"]["slug"] == "yoga-mat"
        assert by_name["Yoga Mat"]["image"] == "front.jpg"
        assert by_name["Yoga Mat"]["brand"] == "Zen"
        assert by_name["Yoga Mat"]["category"] == "Fitness"
        assert by_name["Mat Pro"]["image"] is None

        limited = (await client.get("/v1/products/autocomplete", params={"q": "mat", "limit": 1})).json()
        assert limited["count"] == 1

    async def test_autocomplete_without_a_query(self, client):
        body = (await client.get("/v1/products/autocomplete", params={"q": "  "})).json()
        assert body == {"success": True, "suggestions": [], "count": 0}

    async def test_non_ascii_tag_filter(self, client):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="Espresso Cup", tags=["café"]),
            feed_row(name="Tea Cup", tags=["tea"]),
        ]})

        response = await client.get("/v1/products", params={"tag": "café"})
        assert [product["name"] for product in response.json()["products"]] == ["Espresso Cup"]

    async def test_limit_is_capped(self, client):
        response = await client.get("/v1/products", params={"limit": settings.SEARCH_MAX_LIMIT + 1})
        assert response.status_code == 422

    async def test_categories(self, client):
        await client.post("/v1/admin/products/import", json={"products": [
            feed_row(name="One", category=["Yoga", "Fitness"]),
        ]})

        categories = (await client.get("/v1/categories")).json()
        assert [category["slug"] for category in categories] == ["fitness", "yoga"]


async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"status": "healthy"}
