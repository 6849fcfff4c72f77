from uuid import UUID
from datetime import datetime
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CategoryInfo(ApiModel):
    id: UUID
    name: str
    slug: str


class VariantResponse(ApiModel):
    id: UUID
    name: str
    sku: Optional[str] = None
    price: float
    stock: int = 0
    size: Optional[str] = None
    color: Optional[str] = None
    material: Optional[str] = None
    image: Optional[str] = None


class AttributeValueResponse(ApiModel):
    attribute: str
    slug: str
    value: str


class ProductResponse(ApiModel):
    id: UUID
    name: str
    slug: str
    description: str
    price: float
    compare_price: Optional[float] = None
    sku: Optional[str] = None
    external_id: Optional[str] = None
    stock: Optional[int] = None
    brand: Optional[str] = None
    source: Optional[str] = None
    tags: list[str] = []
    images: list[str] = []
    video_url: Optional[str] = None
    is_digital: bool = False
    is_featured: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None

    # Computed from reviews at read time
    average_rating: float = 0
    review_count: int = 0


class ProductDetailResponse(ProductResponse):
    weight: Optional[float] = None
    dimensions: Optional[dict[str, Any]] = None
    specifications: Optional[dict[str, Any]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    track_inventory: bool = True
    categories: list[CategoryInfo] = []
    variants: list[VariantResponse] = []
    attributes: list[AttributeValueResponse] = []
