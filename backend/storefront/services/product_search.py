"""
Product search: index ranking combined with relational facet filtering.

The index (when configured) decides relevance order for free-text queries;
the relational store always decides which products pass the facet filters.
Paths:

- no query: relational filter, storage-side sort and pagination
- query, no facets: index page, products loaded by id in index rank
- query and facets: wide index window filtered relationally, then unioned
  with relational substring matches the index missed
- index down or unconfigured: relational substring search
"""

import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from sqlalchemy import Text, and_, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.database import json_serializer
from storefront.core.exceptions import IndexDegradedError
from storefront.models import (
    Attribute, Category, Product, ProductAttributeValue, ProductCategory, Review,
)
from storefront.schemas.product import ProductResponse
from storefront.schemas.search import ProductSearchParams, ProductSuggestion, SearchResult
from storefront.search.elasticsearch import IndexHits, NullSearchIndex, SearchIndex
from storefront.services.slugs import to_slug

logger = logging.getLogger(__name__)


def round_rating(value: Optional[float]) -> float:
    """Mean rating rounded half-up to one decimal (4.25 -> 4.3)."""
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def tag_member(tag: str):
    """Case-insensitive membership test against the JSON tags array."""
    return cast(Product.tags, Text).icontains(json_serializer(tag), autoescape=True)


def facet_filters(params: ProductSearchParams) -> list:
    filters = [Product.is_active.is_(True)]

    if params.categories:
        names = [name.lower() for name in params.categories]
        filters.append(
            Product.categories.any(
                ProductCategory.category.has(
                    or_(Category.slug.in_(params.categories), func.lower(Category.name).in_(names))
                )
            )
        )

    if params.brands:
        filters.append(Product.brand.in_(params.brands))

    if params.is_digital is not None:
        filters.append(Product.is_digital.is_(params.is_digital))

    if params.is_featured:
        filters.append(Product.is_featured.is_(True))

    if params.min_price is not None:
        filters.append(Product.price >= params.min_price)
    if params.max_price is not None:
        filters.append(Product.price <= params.max_price)

    if params.tag:
        filters.append(tag_member(params.tag))

    for attribute, value in params.attributes:
        filters.append(
            Product.attribute_values.any(
                and_(
                    ProductAttributeValue.attribute.has(Attribute.slug == to_slug(attribute)),
                    ProductAttributeValue.value.icontains(value, autoescape=True),
                )
            )
        )

    return filters


def text_filter(text: str):
    """Relational substring match used when the index cannot rank."""
    return or_(
        Product.name.icontains(text, autoescape=True),
        Product.description.icontains(text, autoescape=True),
        Product.brand.icontains(text, autoescape=True),
        tag_member(text),
        Product.categories.any(
            ProductCategory.category.has(Category.name.icontains(text, autoescape=True))
        ),
    )


def sort_order(sort: str) -> list:
    if sort == "price-low":
        return [Product.price.asc(), Product.id]
    if sort == "price-high":
        return [Product.price.desc(), Product.id]
    if sort == "popular":
        review_count = (
            select(func.count(Review.id))
            .where(Review.product_id == Product.id)
            .correlate(Product)
            .scalar_subquery()
        )
        return [review_count.desc(), Product.created_at.desc(), Product.id]
    # newest; rating is applied after assembly
    return [Product.created_at.desc(), Product.id]


def _parse_ids(raw_ids: Sequence[str]) -> list[uuid.UUID]:
    ids = []
    for raw in raw_ids:
        try:
            product_id = uuid.UUID(str(raw))
        except ValueError:
            logger.warning(f"Ignoring non-UUID id from search index: {raw}")
            continue
        if product_id not in ids:
            ids.append(product_id)
    return ids


class ProductSearchEngine:
    def __init__(
        self,
        session: AsyncSession,
        index: Optional[SearchIndex] = None,
        union_window: Optional[int] = None,
    ):
        self.session = session
        self.index = index or NullSearchIndex()
        self.union_window = union_window or settings.SEARCH_UNION_WINDOW

    async def search(self, params: ProductSearchParams) -> SearchResult:
        text = params.query
        if text is None:
            return await self._relational(params)

        if not self.index.enabled:
            return await self._relational(params, text)

        try:
            if params.has_facets():
                return await self._union(params, text)
            return await self._index_page(params, text)
        except IndexDegradedError as e:
            logger.warning(f"Search index unavailable, falling back to relational search: {e}")
            return await self._relational(params, text)

    async def suggest(self, text: str, limit: int) -> list[ProductSuggestion]:
        """Newest active products matching the text, for search-as-you-type."""
        text = text.strip()
        if not text:
            return []

        result = await self.session.execute(
            select(Product)
            .where(Product.is_active.is_(True), text_filter(text))
            .options(selectinload(Product.categories).selectinload(ProductCategory.category))
            .order_by(*sort_order("newest"))
            .limit(limit)
        )
        return [
            ProductSuggestion(
                id=product.id,
                name=product.name,
                slug=product.slug,
                price=product.price,
                image=product.images[0] if product.images else None,
                brand=product.brand,
                category=product.categories[0].category.name if product.categories else None,
            )
            for product in result.scalars().all()
        ]

    async def _relational(self, params: ProductSearchParams, text: Optional[str] = None) -> SearchResult:
        filters = facet_filters(params)
        if text is not None:
            filters.append(text_filter(text))

        total = (
            await self.session.execute(select(func.count()).select_from(Product).where(*filters))
        ).scalar() or 0

        result = await self.session.execute(
            select(Product)
            .where(*filters)
            .order_by(*sort_order(params.sort))
            .offset(params.skip)
            .limit(params.limit)
        )
        products = await self._assemble(result.scalars().all(), params.sort)
        return SearchResult(products=products, total=total, facets=None)

    async def _index_page(self, params: ProductSearchParams, text: str) -> SearchResult:
        hits = await self.index.query(text, skip=params.skip, limit=params.limit, with_facets=True)
        ids = _parse_ids(hits.product_ids)
        if not ids:
            return SearchResult(products=[], total=hits.total, facets=hits.facets)

        products = await self._load_in_order(ids)
        return SearchResult(
            products=await self._assemble(products, params.sort),
            total=hits.total,
            facets=hits.facets,
        )

    async def _union(self, params: ProductSearchParams, text: str) -> SearchResult:
        hits: IndexHits = await self.index.query(text, skip=0, limit=self.union_window, with_facets=True)
        ranked = _parse_ids(hits.product_ids)
        filters = facet_filters(params)

        ranked_matches: list[uuid.UUID] = []
        if ranked:
            passing = set(
                (await self.session.execute(
                    select(Product.id).where(Product.id.in_(ranked), *filters)
                )).scalars().all()
            )
            ranked_matches = [product_id for product_id in ranked if product_id in passing]

        relational_query = select(Product.id).where(*filters, text_filter(text))
        if ranked_matches:
            relational_query = relational_query.where(Product.id.not_in(ranked_matches))
        relational_matches = (
            await self.session.execute(relational_query.order_by(*sort_order(params.sort)))
        ).scalars().all()

        union = ranked_matches + [pid for pid in relational_matches if pid not in ranked_matches]
        page_ids = union[params.skip:params.skip + params.limit]

        products = await self._load_in_order(page_ids)
        return SearchResult(
            products=await self._assemble(products, params.sort),
            total=len(union),
            facets=hits.facets,
        )

    async def _load_in_order(self, ids: list[uuid.UUID]) -> list[Product]:
        if not ids:
            return []
        result = await self.session.execute(
            select(Product).where(Product.id.in_(ids), Product.is_active.is_(True))
        )
        by_id = {product.id: product for product in result.scalars().all()}
        return [by_id[product_id] for product_id in ids if product_id in by_id]

    async def ratings(self, ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, tuple[float, int]]:
        """Average rating and review count per product, for products with reviews."""
        if not ids:
            return {}
        result = await self.session.execute(
            select(Review.product_id, func.avg(Review.rating), func.count(Review.id))
            .where(Review.product_id.in_(ids))
            .group_by(Review.product_id)
        )
        return {
            product_id: (round_rating(average), count)
            for product_id, average, count in result.all()
        }

    async def _assemble(self, products: Sequence[Product], sort: str) -> list[ProductResponse]:
        ratings = await self.ratings([product.id for product in products])

        responses = []
        for product in products:
            average, count = ratings.get(product.id, (0.0, 0))
            response = ProductResponse.model_validate(product)
            response.average_rating = average
            response.review_count = count
            responses.append(response)

        if sort == "rating":
            # sorted() is stable, so equal ratings keep their incoming order
            responses = sorted(responses, key=lambda item: item.average_rating, reverse=True)
        return responses
