from typing import Optional, Any, Union, Annotated
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def normalize_external_id(value: Any) -> Optional[str]:
    """
    Coerce a feed external id to a string, keeping falsy-but-valid ids.
    None and blank strings are absent; 0 becomes "0".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    value = str(value).strip()
    return value or None


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class FeedModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class FeedVariant(FeedModel):
    name: str
    sku: OptionalText = None
    price: float
    compare_price: Optional[float] = None
    stock: Optional[int] = None
    available: Optional[bool] = None
    size: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    image: Optional[str] = None


class FeedProduct(FeedModel):
    """One externally sourced product row, as submitted to the catalog import."""
    name: str
    description: str
    price: float
    compare_price: Optional[float] = None
    sku: OptionalText = None
    external_id: Optional[str] = None
    slug: OptionalText = None
    stock: Optional[int] = None
    brand: Optional[str] = None
    tags: Optional[list[str]] = None
    category: Optional[Union[str, list[str]]] = None
    images: Optional[list[str]] = None
    video_url: Optional[str] = None
    weight: Optional[float] = None
    dimensions: Optional[dict[str, Any]] = None
    specifications: Optional[dict[str, Any]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    is_digital: Optional[bool] = None
    track_inventory: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    source: Optional[str] = None
    variants: Optional[list[FeedVariant]] = None
    attributes: Optional[dict[str, list[Any]]] = None

    @field_validator("external_id", mode="before")
    @classmethod
    def coerce_external_id(cls, value: Any) -> Optional[str]:
        return normalize_external_id(value)

    @property
    def category_names(self) -> list[str]:
        if self.category is None:
            return []
        names = [self.category] if isinstance(self.category, str) else self.category
        return [name for name in (n.strip() for n in names) if name]


class CachedCategory(BaseModel):
    id: str
    slug: str
    name: str


class ImportRowError(BaseModel):
    index: int
    name: str
    error: str


class ImportResults(BaseModel):
    imported: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[ImportRowError] = []


class ImportRequest(BaseModel):
    # Rows stay untyped here; each one is validated on its own so a bad row
    # fails alone instead of rejecting the request.
    products: Any = None


class ImportChunkRequest(ImportRequest):
    model_config = ConfigDict(populate_by_name=True)

    category_cache: Optional[list[CachedCategory]] = Field(default=None, alias="categoryCache")


class ImportResponse(BaseModel):
    success: bool = True
    results: ImportResults
    message: Optional[str] = None


class ImportChunkResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    results: ImportResults
    category_cache: list[CachedCategory] = Field(default_factory=list, serialization_alias="categoryCache")
