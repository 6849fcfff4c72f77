"""
Storage boundary for the catalog core.

Everything the import and search engines need from the relational store goes
through ProductRepository: lookups by identity key, slug prefix scans, create
and update, insert-ignoring-duplicates, delete-many and count.
"""

import uuid
from typing import Any, Iterable, Sequence
from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import (
    Product, ProductVariant, Category, Attribute,
)


def _insert_for(session: AsyncSession):
    """The dialect insert construct that supports ON CONFLICT DO NOTHING."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert ignoring duplicates is not supported on {dialect}")
    return insert


class ProductRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # Identity lookups

    async def find_by_sku(self, sku: str) -> Product | None:
        result = await self.session.execute(select(Product).where(Product.sku == sku))
        return result.scalar_one_or_none()

    async def find_by_external_id(self, external_id: str) -> Product | None:
        result = await self.session.execute(select(Product).where(Product.external_id == external_id))
        return result.scalar_one_or_none()

    async def find_by_slug(self, slug: str) -> Product | None:
        result = await self.session.execute(select(Product).where(Product.slug == slug))
        return result.scalar_one_or_none()

    async def find_by_identity_keys(
        self,
        skus: Iterable[str] = (),
        external_ids: Iterable[str] = (),
        slugs: Iterable[str] = (),
    ) -> Sequence[Product]:
        """All products holding any of the given SKUs, external ids or slugs (one query)."""
        filters = []
        skus, external_ids, slugs = set(skus), set(external_ids), set(slugs)
        if skus:
            filters.append(Product.sku.in_(skus))
        if external_ids:
            filters.append(Product.external_id.in_(external_ids))
        if slugs:
            filters.append(Product.slug.in_(slugs))
        if not filters:
            return []

        result = await self.session.execute(select(Product).where(or_(*filters)))
        return result.scalars().all()

    async def slugs_with_prefixes(self, base_slugs: Iterable[str]) -> set[str]:
        """Stored slugs starting with any of the base slugs, used to seed slug allocation."""
        prefixes = sorted({slug for slug in base_slugs if slug})
        if not prefixes:
            return set()

        result = await self.session.execute(
            select(Product.slug).where(
                or_(*(Product.slug.startswith(prefix, autoescape=True) for prefix in prefixes))
            )
        )
        return set(result.scalars().all())

    async def get(self, product_id: uuid.UUID) -> Product | None:
        return await self.session.get(Product, product_id)

    # Writes

    async def create(self, **fields: Any) -> Product:
        product = Product(**fields)
        self.session.add(product)
        await self.session.flush()
        return product

    async def update(self, product: Product, fields: dict[str, Any]) -> Product:
        for field, value in fields.items():
            setattr(product, field, value)
        await self.session.flush()
        return product

    async def insert_ignoring_duplicates(self, model, rows: list[dict[str, Any]]) -> None:
        """Bulk insert, skipping rows that hit a unique constraint."""
        if not rows:
            return
        rows = [{"id": uuid.uuid4(), **row} for row in rows]
        insert = _insert_for(self.session)
        stmt = insert(model.__table__).on_conflict_do_nothing()
        await self.session.execute(stmt, rows)

    async def delete_many(self, model, *criteria) -> None:
        await self.session.execute(delete(model).where(*criteria))

    async def count(self, model, *criteria) -> int:
        result = await self.session.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar() or 0

    # Variants

    async def find_variant(self, product_id: uuid.UUID, sku: str) -> ProductVariant | None:
        result = await self.session.execute(
            select(ProductVariant).where(
                ProductVariant.product_id == product_id,
                ProductVariant.sku == sku,
            )
        )
        return result.scalar_one_or_none()

    async def find_variant_by_sku(self, sku: str) -> ProductVariant | None:
        result = await self.session.execute(select(ProductVariant).where(ProductVariant.sku == sku))
        return result.scalar_one_or_none()

    async def create_variant(self, **fields: Any) -> ProductVariant:
        variant = ProductVariant(**fields)
        self.session.add(variant)
        await self.session.flush()
        return variant

    # Categories and attributes

    async def categories_by_slugs(self, slugs: Iterable[str]) -> Sequence[Category]:
        slugs = set(slugs)
        if not slugs:
            return []
        result = await self.session.execute(select(Category).where(Category.slug.in_(slugs)))
        return result.scalars().all()

    async def find_attribute(self, slug: str, category_id: uuid.UUID | None) -> Attribute | None:
        """Attribute by slug within one scope (category_id None = global scope)."""
        query = select(Attribute).where(Attribute.slug == slug)
        if category_id is None:
            query = query.where(Attribute.category_id.is_(None))
        else:
            query = query.where(Attribute.category_id == category_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def find_any_attribute(self, slug: str) -> Attribute | None:
        result = await self.session.execute(
            select(Attribute).where(Attribute.slug == slug).order_by(Attribute.created_at).limit(1)
        )
        return result.scalar_one_or_none()
