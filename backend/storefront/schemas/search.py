from uuid import UUID
from typing import Optional, Literal
from pydantic import BaseModel, Field

from storefront.schemas.product import ApiModel, ProductResponse

SortOrder = Literal["newest", "price-low", "price-high", "popular", "rating"]


class ProductSearchParams(BaseModel):
    """Free-text query plus facet filters for the product listing."""
    search: Optional[str] = None
    categories: list[str] = []
    brands: list[str] = []
    is_digital: Optional[bool] = None
    is_featured: Optional[bool] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    tag: Optional[str] = None
    attributes: list[tuple[str, str]] = []  # (attribute, value) pairs
    sort: SortOrder = "newest"
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=12, ge=1)

    @property
    def query(self) -> Optional[str]:
        text = (self.search or "").strip()
        return text or None

    def has_facets(self) -> bool:
        """True when any filter other than the free-text query is active."""
        return bool(
            self.categories
            or self.brands
            or self.is_digital is not None
            or self.is_featured
            or self.min_price is not None
            or self.max_price is not None
            or self.tag
            or self.attributes
        )


class FacetBucket(BaseModel):
    value: str
    count: int


class PriceRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class FacetSummary(BaseModel):
    brands: list[FacetBucket] = []
    categories: list[FacetBucket] = []
    price: Optional[PriceRange] = None


class SearchResult(BaseModel):
    products: list[ProductResponse] = []
    total: int = 0
    facets: Optional[FacetSummary] = None


class ProductListResponse(BaseModel):
    success: bool = True
    products: list[ProductResponse]
    count: int
    total: int
    facets: Optional[FacetSummary] = None


class ProductSuggestion(ApiModel):
    id: UUID
    name: str
    slug: str
    price: float
    image: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None


class AutocompleteResponse(BaseModel):
    success: bool = True
    suggestions: list[ProductSuggestion]
    count: int
