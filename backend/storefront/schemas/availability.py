from typing import Optional, Any
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SupplierVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    available: Optional[bool] = None


class SupplierProduct(BaseModel):
    """A product as listed in a supplier's paged products.json feed."""
    model_config = ConfigDict(extra="ignore")

    id: Any = None
    status: Optional[str] = None
    available: Optional[bool] = None
    published_at: Optional[str] = None
    variants: list[SupplierVariant] = []

    @property
    def is_available(self) -> bool:
        if self.available is not None:
            return self.available
        if self.status and self.status != "active":
            return False
        if self.variants:
            return any(variant.available is True for variant in self.variants)
        if "published_at" in self.model_fields_set and self.published_at is None:
            return False
        return True


class AvailabilitySyncRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    urls: list[str] = []
    deactivate_missing: bool = False
    source: Optional[str] = None


class AvailabilitySyncResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source: str
    feeds_processed: int = 0
    products_seen_in_feeds: int = 0
    unique_external_ids_in_feeds: int = 0
    db_products_checked: int = 0
    matched_products: int = 0
    activated: int = 0
    deactivated: int = 0
    unchanged: int = 0
    missing_in_feeds: int = 0


class AvailabilitySyncResponse(BaseModel):
    success: bool = True
    message: str
    result: AvailabilitySyncResult
