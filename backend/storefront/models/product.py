"""
Catalog product records.

A Product carries three identity keys with different uniqueness semantics:

- sku: globally unique when present, the authoritative merge key
- external_id: globally unique when present, the supplier feed's own id
- slug: always present and unique, derived from the name, also the URL key

Products are created and updated by the catalog import and never deleted by it.
"""

import uuid
from datetime import datetime
from typing import Optional, List, Any
from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, ForeignKey, Text, JSON, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.database import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Identity keys
    sku: Mapped[str | None] = mapped_column(String(100), unique=True)
    external_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    slug: Mapped[str] = mapped_column(String(300), unique=True, nullable=False)

    # Business fields
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    compare_price: Mapped[float | None] = mapped_column(Float)
    stock: Mapped[int | None] = mapped_column(Integer, default=0)
    brand: Mapped[str | None] = mapped_column(String(200))
    source: Mapped[str | None] = mapped_column(String(100))
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    images: Mapped[list[str]] = mapped_column(JSON, default=list)
    video_url: Mapped[str | None] = mapped_column(String(500))
    weight: Mapped[float | None] = mapped_column(Float)
    dimensions: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    specifications: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    # SEO
    meta_title: Mapped[str | None] = mapped_column(String(300))
    meta_description: Mapped[str | None] = mapped_column(Text)

    # Flags
    is_digital: Mapped[bool] = mapped_column(Boolean, default=False)
    track_inventory: Mapped[bool] = mapped_column(Boolean, default=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    variants: Mapped[List["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )
    categories: Mapped[List["ProductCategory"]] = relationship(
        "ProductCategory", back_populates="product", cascade="all, delete-orphan"
    )
    attribute_values: Mapped[List["ProductAttributeValue"]] = relationship(
        "ProductAttributeValue", back_populates="product", cascade="all, delete-orphan"
    )
    reviews: Mapped[List["Review"]] = relationship(
        "Review", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_products_active_created", "is_active", "created_at"),
        Index("ix_products_brand", "brand"),
        Index("ix_products_source", "source"),
    )


class ProductVariant(Base):
    """A purchasable variant (size, color, material) of one product."""
    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), unique=True)  # Unique across all products
    price: Mapped[float] = mapped_column(Float, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    size: Mapped[str | None] = mapped_column(String(100))
    color: Mapped[str | None] = mapped_column(String(100))
    material: Mapped[str | None] = mapped_column(String(100))
    image: Mapped[str | None] = mapped_column(String(500))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    __table_args__ = (
        Index("ix_product_variants_product", "product_id"),
    )


class Review(Base):
    """Customer review. Average ratings are computed from these rows on read."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-5
    title: Mapped[str | None] = mapped_column(String(200))
    comment: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    product: Mapped["Product"] = relationship("Product", back_populates="reviews")

    __table_args__ = (
        Index("ix_reviews_product", "product_id"),
    )
