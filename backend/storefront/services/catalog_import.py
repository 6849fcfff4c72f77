"""
Catalog reconciliation: create-or-update of externally sourced product rows.

Each row is validated, resolved to an existing product (SKU > external id >
slug), merged or created, and then gets its categories, variants and attribute
values reconciled. A bad row never aborts the batch; it is recorded as
{index, name, error} and processing continues. Only storage connectivity
failures abort the call, as InfrastructureError.

Rows are processed sequentially by default. With concurrency > 1 the rows are
grouped by shared identity keys and the groups are pulled from a queue by
workers that each own a session; the category and attribute caches serialize
their get-or-create, and slug allocation never awaits, so it is atomic within
the event loop.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import settings
from storefront.core.exceptions import (
    ImportValidationError, IdentityConflictError, InfrastructureError,
)
from storefront.models import Product, ProductCategory, ProductAttributeValue
from storefront.repositories.products import ProductRepository
from storefront.schemas.catalog_import import (
    FeedProduct, FeedVariant, ImportResults, ImportRowError,
)
from storefront.services.catalog_cache import CategoryCache, AttributeCache
from storefront.services.identity import (
    IdentityIndex, ProductKeys, base_slug_for, coalesce, group_by_identity, merge_fields,
)
from storefront.services.slugs import SlugAllocator

logger = logging.getLogger(__name__)

INFRASTRUCTURE_ERRORS = (OperationalError, InterfaceError, ConnectionError)

IMPORTED = "imported"
UPDATED = "updated"
FAILED = "failed"


@dataclass
class RowOutcome:
    status: str
    name: str
    product_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ReplaceSet:
    """
    Full-authority replacement of a product's child rows: delete every row
    owned by the product, then insert the given set. Re-running it with the
    same input is a no-op, and rows missing from the input are removed.
    """
    model: type
    product_id: uuid.UUID
    rows: tuple[dict[str, Any], ...]

    async def apply(self, repo: ProductRepository) -> None:
        await repo.delete_many(self.model, self.model.product_id == self.product_id)
        await repo.insert_ignoring_duplicates(
            self.model,
            [{"product_id": self.product_id, **row} for row in self.rows],
        )


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def row_name(raw: Any, index: int) -> str:
    name = raw.get("name") if isinstance(raw, dict) else None
    if isinstance(name, str) and name.strip():
        return name
    return f"Product {index + 1}"


def parse_feed_row(raw: Any) -> FeedProduct:
    """Validate one raw feed row. Raises ImportValidationError."""
    if not isinstance(raw, dict):
        raise ImportValidationError("Invalid product row: expected an object")

    if any(_is_missing(raw.get(field)) for field in ("name", "description", "price")):
        raise ImportValidationError("Missing required fields: name, description, price")

    try:
        row = FeedProduct.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ImportValidationError(f"Invalid value for {location}: {first['msg']}") from e

    if row.price < 0:
        raise ImportValidationError("Price cannot be negative")

    if not base_slug_for(row):
        raise ImportValidationError("Cannot derive a slug from name or slug")

    return row


def _describe(error: Exception) -> str:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig)
    return str(error) or error.__class__.__name__


class CatalogReconciler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        concurrency: Optional[int] = None,
        default_source: Optional[str] = None,
        category_cache: Optional[CategoryCache] = None,
    ):
        self.session_factory = session_factory
        self.concurrency = max(1, concurrency or settings.IMPORT_CONCURRENCY)
        self.default_source = default_source or settings.IMPORT_DEFAULT_SOURCE
        self.category_cache = category_cache if category_cache is not None else CategoryCache()
        self.attribute_cache = AttributeCache()
        self.touched_product_ids: list[uuid.UUID] = []

    async def reconcile(self, rows: list[Any]) -> ImportResults:
        """Reconcile a batch of raw feed rows and return aggregate statistics."""
        outcomes: list[Optional[RowOutcome]] = [None] * len(rows)
        valid: list[tuple[int, FeedProduct]] = []

        for index, raw in enumerate(rows):
            try:
                valid.append((index, parse_feed_row(raw)))
            except ImportValidationError as e:
                logger.warning(f"Row {index + 1} rejected: {e}")
                outcomes[index] = RowOutcome(status=FAILED, name=row_name(raw, index), error=str(e))

        if valid:
            identities, allocator = await self._prepare(valid)

            if self.concurrency == 1:
                groups = [valid]
            else:
                groups = group_by_identity(valid)

            await self._run_workers(groups, outcomes, identities, allocator)

        results = self._summarize(outcomes)
        logger.info(
            f"Import finished: {results.imported} imported, {results.updated} updated, "
            f"{results.failed} failed ({len(rows)} rows, concurrency {self.concurrency})"
        )
        return results

    async def _prepare(self, valid: list[tuple[int, FeedProduct]]) -> tuple[IdentityIndex, SlugAllocator]:
        """Prefetch categories, identity maps and slug prefixes for the batch."""
        rows = [row for _, row in valid]
        try:
            async with self.session_factory() as session:
                repo = ProductRepository(session)
                await self.category_cache.prefetch(
                    repo, [name for row in rows for name in row.category_names]
                )
                existing = await repo.find_by_identity_keys(
                    skus=[row.sku for row in rows if row.sku],
                    external_ids=[row.external_id for row in rows if row.external_id is not None],
                    slugs=[base_slug_for(row) for row in rows],
                )
                identities = IdentityIndex(existing)
                allocator = SlugAllocator(
                    await repo.slugs_with_prefixes(base_slug_for(row) for row in rows)
                )
        except INFRASTRUCTURE_ERRORS as e:
            raise InfrastructureError(f"Catalog storage unavailable: {_describe(e)}") from e
        return identities, allocator

    async def _run_workers(
        self,
        groups: list[list[tuple[int, FeedProduct]]],
        outcomes: list[Optional[RowOutcome]],
        identities: IdentityIndex,
        allocator: SlugAllocator,
    ) -> None:
        queue: asyncio.Queue = asyncio.Queue()
        for group in groups:
            queue.put_nowait(group)

        async def worker():
            async with self.session_factory() as session:
                repo = ProductRepository(session)
                while True:
                    try:
                        group = queue.get_nowait()
                    except asyncio.QueueEmpty:
                        return
                    for index, row in group:
                        outcomes[index] = await self._reconcile_row(repo, index, row, identities, allocator)

        tasks = [asyncio.create_task(worker()) for _ in range(min(self.concurrency, len(groups)))]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _reconcile_row(
        self,
        repo: ProductRepository,
        index: int,
        row: FeedProduct,
        identities: IdentityIndex,
        allocator: SlugAllocator,
    ) -> RowOutcome:
        product_id = None
        try:
            product, status = await self._upsert_product(repo, row, identities, allocator)
            product_id = product.id
            await repo.session.commit()
            identities.register(ProductKeys.of(product))

            # The product write is committed; from here a failure marks the
            # row failed but leaves the product and its category set in place.
            category_ids = await self._resolve_categories(repo, row)
            primary_category_id = category_ids[0] if category_ids else None
            attribute_rows = await self._resolve_attribute_values(repo, row, primary_category_id)

            if category_ids:
                await ReplaceSet(
                    ProductCategory, product_id,
                    tuple({"category_id": category_id} for category_id in category_ids),
                ).apply(repo)
                await repo.session.commit()

            for variant in row.variants or []:
                await self._reconcile_variant(repo, product_id, variant)

            if attribute_rows is not None:
                await ReplaceSet(ProductAttributeValue, product_id, tuple(attribute_rows)).apply(repo)

            await repo.session.commit()
            return RowOutcome(status=status, name=row.name, product_id=product_id)

        except INFRASTRUCTURE_ERRORS as e:
            raise InfrastructureError(f"Catalog storage unavailable: {_describe(e)}") from e
        except Exception as e:
            await repo.session.rollback()
            logger.warning(f"Row {index + 1} ({row.name}) failed: {_describe(e)}")
            return RowOutcome(status=FAILED, name=row.name, product_id=product_id, error=_describe(e))

    async def _upsert_product(
        self,
        repo: ProductRepository,
        row: FeedProduct,
        identities: IdentityIndex,
        allocator: SlugAllocator,
    ) -> tuple[Product, str]:
        base_slug = base_slug_for(row)
        match = identities.resolve(row, base_slug)
        product = await repo.get(match.id) if match else None

        if product is not None:
            await repo.update(product, merge_fields(row, product))
            return product, UPDATED

        product = await repo.create(
            name=row.name,
            description=row.description,
            price=row.price,
            compare_price=row.compare_price,
            sku=row.sku,
            external_id=row.external_id,
            slug=allocator.allocate(base_slug),
            stock=coalesce(row.stock, 0),
            brand=row.brand,
            source=coalesce(row.source, self.default_source),
            tags=coalesce(row.tags, []),
            images=coalesce(row.images, []),
            video_url=row.video_url,
            weight=row.weight,
            dimensions=row.dimensions,
            specifications=row.specifications,
            meta_title=row.meta_title,
            meta_description=row.meta_description,
            is_digital=coalesce(row.is_digital, False),
            track_inventory=coalesce(row.track_inventory, True),
            is_featured=coalesce(row.is_featured, False),
            is_active=coalesce(row.is_active, True),
        )
        return product, IMPORTED

    async def _resolve_categories(self, repo: ProductRepository, row: FeedProduct) -> list[uuid.UUID]:
        """Category ids in feed order; the first one is the primary category."""
        category_ids: list[uuid.UUID] = []
        for name in row.category_names:
            cached = await self.category_cache.get_or_create(repo, name)
            category_id = uuid.UUID(cached.id)
            if category_id not in category_ids:
                category_ids.append(category_id)
        return category_ids

    async def _resolve_attribute_values(
        self,
        repo: ProductRepository,
        row: FeedProduct,
        primary_category_id: Optional[uuid.UUID],
    ) -> Optional[list[dict[str, Any]]]:
        """Attribute value rows for the product, or None when the row carries no attributes."""
        if not row.attributes:
            return None

        attribute_rows = []
        seen: set[uuid.UUID] = set()
        for attribute_name, attribute_values in row.attributes.items():
            values = [str(value) for value in attribute_values if value is not None]
            if not values:
                continue

            attribute = await self.attribute_cache.get_or_create(
                repo, attribute_name, values, primary_category_id
            )
            if attribute is None or attribute.id in seen:
                continue

            seen.add(attribute.id)
            attribute_rows.append({"attribute_id": attribute.id, "value": ", ".join(values)})
        return attribute_rows

    async def _reconcile_variant(self, repo: ProductRepository, product_id: uuid.UUID, variant: FeedVariant) -> None:
        stock = variant.stock if variant.stock is not None else (1 if variant.available else 0)
        existing = await repo.find_variant(product_id, variant.sku) if variant.sku else None

        if existing:
            existing.name = variant.name
            existing.price = variant.price
            existing.stock = stock
            existing.size = coalesce(variant.size, existing.size)
            existing.color = coalesce(variant.color, existing.color)
            existing.material = coalesce(variant.material, existing.material)
            existing.image = coalesce(variant.image, existing.image)
            await repo.session.flush()
            return

        if variant.sku and await repo.find_variant_by_sku(variant.sku):
            raise IdentityConflictError(f"Variant SKU '{variant.sku}' already exists for another product")

        await repo.create_variant(
            product_id=product_id,
            name=variant.name,
            sku=variant.sku,
            price=variant.price,
            stock=stock,
            size=variant.size,
            color=variant.color,
            material=variant.material,
            image=variant.image,
        )

    def _summarize(self, outcomes: list[Optional[RowOutcome]]) -> ImportResults:
        results = ImportResults()
        self.touched_product_ids = []

        for index, outcome in enumerate(outcomes):
            if outcome.product_id is not None and outcome.product_id not in self.touched_product_ids:
                self.touched_product_ids.append(outcome.product_id)

            if outcome.status == IMPORTED:
                results.imported += 1
            elif outcome.status == UPDATED:
                results.updated += 1
            else:
                results.failed += 1
                results.errors.append(
                    ImportRowError(index=index + 1, name=outcome.name, error=outcome.error or "Unknown error")
                )
        return results
