from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.models import Product, ProductCategory, ProductAttributeValue
from storefront.schemas.product import (
    ProductResponse, ProductDetailResponse, CategoryInfo, VariantResponse, AttributeValueResponse,
)
from storefront.schemas.search import (
    ProductSearchParams, ProductListResponse, SortOrder, AutocompleteResponse,
)
from storefront.search.elasticsearch import SearchIndex, get_search_index
from storefront.services.product_search import ProductSearchEngine

router = APIRouter()


@router.get("", response_model=ProductListResponse)
async def list_products(
    search: Optional[str] = None,
    category: list[str] = Query(default=[]),
    brand: list[str] = Query(default=[]),
    is_digital: Optional[bool] = Query(default=None, alias="isDigital"),
    is_featured: Optional[bool] = Query(default=None, alias="isFeatured"),
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    tag: Optional[str] = None,
    attribute: list[str] = Query(default=[]),
    value: list[str] = Query(default=[]),
    sort: SortOrder = "newest",
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.SEARCH_DEFAULT_LIMIT, ge=1, le=settings.SEARCH_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
):
    """List active products with free-text search, facet filters and sorting."""
    params = ProductSearchParams(
        search=search,
        categories=category,
        brands=brand,
        is_digital=is_digital,
        is_featured=is_featured,
        min_price=min_price,
        max_price=max_price,
        tag=tag,
        # attribute and value are paired by position
        attributes=list(zip(attribute, value)),
        sort=sort,
        skip=skip,
        limit=limit,
    )
    result = await ProductSearchEngine(db, index).search(params)

    return ProductListResponse(
        products=result.products,
        count=len(result.products),
        total=result.total,
        facets=result.facets,
    )


@router.get("/autocomplete", response_model=AutocompleteResponse)
async def autocomplete(
    q: Optional[str] = None,
    limit: int = Query(default=settings.AUTOCOMPLETE_DEFAULT_LIMIT, ge=1, le=settings.SEARCH_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """Suggestions for the search box; an empty query returns none."""
    suggestions = await ProductSearchEngine(db).suggest(q or "", limit)
    return AutocompleteResponse(suggestions=suggestions, count=len(suggestions))


@router.get("/{slug}", response_model=ProductDetailResponse)
async def get_product(
    slug: str,
    db: AsyncSession = Depends(get_db),
):
    """Get an active product by slug with its categories, variants and attributes."""
    result = await db.execute(
        select(Product)
        .where(Product.slug == slug, Product.is_active == True)
        .options(
            selectinload(Product.categories).selectinload(ProductCategory.category),
            selectinload(Product.variants),
            selectinload(Product.attribute_values).selectinload(ProductAttributeValue.attribute),
        )
    )
    product = result.scalar_one_or_none()

    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        )

    average, count = (await ProductSearchEngine(db).ratings([product.id])).get(product.id, (0.0, 0))

    fields = ProductResponse.model_validate(product).model_dump()
    fields.update(
        average_rating=average,
        review_count=count,
        weight=product.weight,
        dimensions=product.dimensions,
        specifications=product.specifications,
        meta_title=product.meta_title,
        meta_description=product.meta_description,
        track_inventory=product.track_inventory,
        categories=[CategoryInfo.model_validate(entry.category) for entry in product.categories],
        variants=[VariantResponse.model_validate(variant) for variant in product.variants],
        attributes=[
            AttributeValueResponse(
                attribute=entry.attribute.name,
                slug=entry.attribute.slug,
                value=entry.value,
            )
            for entry in product.attribute_values
        ],
    )
    return ProductDetailResponse(**fields)
