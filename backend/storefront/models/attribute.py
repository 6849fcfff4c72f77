import enum
import uuid
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, JSON, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from storefront.core.database import Base


class AttributeType(str, enum.Enum):
    TEXT = "text"
    SELECT = "select"
    MULTISELECT = "multiselect"
    COLOR = "color"
    SIZE = "size"


class Attribute(Base):
    """
    A filterable product attribute, scoped to a category.
    category_id NULL means the attribute is global.
    """
    __tablename__ = "attributes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    category_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default=AttributeType.TEXT.value)
    options: Mapped[list[str] | None] = mapped_column(JSON)
    filterable: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    values: Mapped[list["ProductAttributeValue"]] = relationship("ProductAttributeValue", back_populates="attribute")

    __table_args__ = (
        UniqueConstraint("category_id", "slug", name="uq_attribute_category_slug"),
        Index("ix_attributes_slug", "slug"),
    )


class ProductAttributeValue(Base):
    __tablename__ = "product_attribute_values"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    attribute_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # Multiple values joined with ", "

    product: Mapped["Product"] = relationship("Product", back_populates="attribute_values")
    attribute: Mapped["Attribute"] = relationship("Attribute", back_populates="values")

    __table_args__ = (
        UniqueConstraint("product_id", "attribute_id", name="uq_product_attribute"),
    )
