"""Tests for the product repository boundary."""

from storefront.models import Category, Product
from storefront.repositories.products import ProductRepository


async def seed(repo):
    await repo.create(name="Red Shirt", description="d", price=1, slug="red-shirt", sku="S1", external_id="E1")
    await repo.create(name="Red Shirt", description="d", price=1, slug="red-shirt-1")
    await repo.create(name="Red_Shirt", description="d", price=1, slug="red_shirt")
    await repo.create(name="Blue Shirt", description="d", price=1, slug="blue-shirt", sku="S2")
    await repo.session.commit()


class TestLookups:
    async def test_find_by_each_identity_key(self, session):
        repo = ProductRepository(session)
        await seed(repo)

        assert (await repo.find_by_sku("S1")).slug == "red-shirt"
        assert (await repo.find_by_external_id("E1")).slug == "red-shirt"
        assert (await repo.find_by_slug("blue-shirt")).sku == "S2"
        assert await repo.find_by_sku("missing") is None

    async def test_find_by_identity_keys_is_one_or_query(self, session):
        repo = ProductRepository(session)
        await seed(repo)

        found = await repo.find_by_identity_keys(skus=["S2"], external_ids=["E1"], slugs=["red-shirt-1"])
        assert sorted(product.slug for product in found) == ["blue-shirt", "red-shirt", "red-shirt-1"]
        assert await repo.find_by_identity_keys() == []

    async def test_slug_prefix_scan_escapes_wildcards(self, session):
        repo = ProductRepository(session)
        await seed(repo)

        assert await repo.slugs_with_prefixes(["red-shirt"]) == {"red-shirt", "red-shirt-1"}
        # "_" must not act as a single-character wildcard
        assert await repo.slugs_with_prefixes(["red_shirt"]) == {"red_shirt"}
        assert await repo.slugs_with_prefixes(["", "green"]) == set()


class TestWrites:
    async def test_insert_ignoring_duplicates(self, session):
        repo = ProductRepository(session)
        await repo.insert_ignoring_duplicates(Category, [{"slug": "yoga", "name": "Yoga"}])
        await repo.insert_ignoring_duplicates(Category, [
            {"slug": "yoga", "name": "Yoga again"},
            {"slug": "fitness", "name": "Fitness"},
        ])
        await session.commit()

        categories = await repo.categories_by_slugs(["yoga", "fitness"])
        assert sorted((category.slug, category.name) for category in categories) == [
            ("fitness", "Fitness"), ("yoga", "Yoga"),
        ]

    async def test_update_delete_many_and_count(self, session):
        repo = ProductRepository(session)
        await seed(repo)

        product = await repo.find_by_sku("S2")
        await repo.update(product, {"price": 9.5, "brand": "Acme"})
        assert (await repo.get(product.id)).price == 9.5

        assert await repo.count(Product) == 4
        assert await repo.count(Product, Product.name == "Red Shirt") == 2

        await repo.delete_many(Product, Product.sku.is_(None))
        await session.commit()
        assert await repo.count(Product) == 2
