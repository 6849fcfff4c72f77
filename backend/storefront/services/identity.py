"""
Identity resolution for feed rows.

A feed row maps to at most one stored product, by precedence:

1. SKU: the real-world identifier, survives renames
2. external id: the feed's own id, survives local edits
3. base slug: weakest, used only as a last resort

Resolution stops at the first hit. A lower-precedence hit is updated even when
the row carries a new SKU or external id; the SKU and external id lookups
missed, so neither value is held by another product.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from storefront.schemas.catalog_import import FeedProduct
from storefront.services.slugs import to_slug

# Fields merged with coalesce on update. name, description and price are
# required on every row and always overwrite.
MERGED_FIELDS = (
    "compare_price",
    "sku",
    "external_id",
    "stock",
    "brand",
    "source",
    "tags",
    "images",
    "video_url",
    "weight",
    "dimensions",
    "specifications",
    "meta_title",
    "meta_description",
    "is_digital",
    "track_inventory",
    "is_featured",
    "is_active",
)


def coalesce(incoming: Any, existing: Any) -> Any:
    """
    Prefer the incoming value unless the feed omitted it.
    None and blank strings count as omitted; 0, False and [] are real values.
    """
    if incoming is None:
        return existing
    if isinstance(incoming, str) and not incoming.strip():
        return existing
    return incoming


def merge_fields(row: FeedProduct, product: Any) -> dict[str, Any]:
    fields = {
        "name": row.name,
        "description": row.description,
        "price": row.price,
    }
    for field in MERGED_FIELDS:
        fields[field] = coalesce(getattr(row, field), getattr(product, field))
    return fields


def base_slug_for(row: FeedProduct) -> str:
    return to_slug(row.slug or row.name)


@dataclass(frozen=True)
class ProductKeys:
    id: uuid.UUID
    sku: Optional[str]
    external_id: Optional[str]
    slug: str

    @classmethod
    def of(cls, product: Any) -> "ProductKeys":
        return cls(id=product.id, sku=product.sku, external_id=product.external_id, slug=product.slug)


class IdentityIndex:
    """
    Identity maps for one batch, loaded with a single query up front.

    Slugs reflect the catalog as it stood when the batch started. Products
    created during the batch are registered by SKU and external id only, so a
    repeated SKU updates the new product while two rows that merely share a
    name become two products with distinct slugs.
    """

    def __init__(self, products: Iterable[Any] = ()):
        self.by_sku: dict[str, ProductKeys] = {}
        self.by_external_id: dict[str, ProductKeys] = {}
        self.by_slug: dict[str, ProductKeys] = {}
        for product in products:
            keys = ProductKeys.of(product)
            self.register(keys)
            self.by_slug[keys.slug] = keys

    def register(self, keys: ProductKeys) -> None:
        if keys.sku:
            self.by_sku[keys.sku] = keys
        if keys.external_id is not None:
            self.by_external_id[keys.external_id] = keys

    def resolve(self, row: FeedProduct, base_slug: str) -> Optional[ProductKeys]:
        if row.sku:
            hit = self.by_sku.get(row.sku)
            if hit:
                return hit

        if row.external_id is not None:
            hit = self.by_external_id.get(row.external_id)
            if hit:
                return hit

        if base_slug:
            hit = self.by_slug.get(base_slug)
            if hit:
                return hit

        return None


def identity_keys(row: FeedProduct) -> list[tuple[str, str]]:
    keys = []
    if row.sku:
        keys.append(("sku", row.sku))
    if row.external_id is not None:
        keys.append(("external_id", row.external_id))
    slug = base_slug_for(row)
    if slug:
        keys.append(("slug", slug))
    return keys


def group_by_identity(rows: list[tuple[int, FeedProduct]]) -> list[list[tuple[int, FeedProduct]]]:
    """
    Partition rows so that rows sharing any identity key land in one group,
    in their original order. Groups can be reconciled in parallel.
    """
    parent = list(range(len(rows)))

    def find(pos: int) -> int:
        while parent[pos] != pos:
            parent[pos] = parent[parent[pos]]
            pos = parent[pos]
        return pos

    owner: dict[tuple[str, str], int] = {}
    for pos, (_, row) in enumerate(rows):
        for key in identity_keys(row):
            if key in owner:
                parent[find(pos)] = find(owner[key])
            else:
                owner[key] = pos

    groups: dict[int, list[tuple[int, FeedProduct]]] = {}
    for pos, item in enumerate(rows):
        groups.setdefault(find(pos), []).append(item)
    return list(groups.values())
