from storefront.schemas.catalog_import import (
    FeedProduct, FeedVariant, CachedCategory, ImportRowError, ImportResults,
    ImportRequest, ImportChunkRequest, ImportResponse, ImportChunkResponse,
)
from storefront.schemas.product import (
    CategoryInfo, VariantResponse, AttributeValueResponse,
    ProductResponse, ProductDetailResponse,
)
from storefront.schemas.search import (
    ProductSearchParams, FacetBucket, PriceRange, FacetSummary,
    SearchResult, ProductListResponse, ProductSuggestion, AutocompleteResponse,
)
from storefront.schemas.availability import (
    SupplierProduct, SupplierVariant, AvailabilitySyncRequest,
    AvailabilitySyncResult, AvailabilitySyncResponse,
)

__all__ = [
    # Import
    "FeedProduct", "FeedVariant", "CachedCategory", "ImportRowError", "ImportResults",
    "ImportRequest", "ImportChunkRequest", "ImportResponse", "ImportChunkResponse",
    # Product
    "CategoryInfo", "VariantResponse", "AttributeValueResponse",
    "ProductResponse", "ProductDetailResponse",
    # Search
    "ProductSearchParams", "FacetBucket", "PriceRange", "FacetSummary",
    "SearchResult", "ProductListResponse", "ProductSuggestion", "AutocompleteResponse",
    # Availability
    "SupplierProduct", "SupplierVariant", "AvailabilitySyncRequest",
    "AvailabilitySyncResult", "AvailabilitySyncResponse",
]
