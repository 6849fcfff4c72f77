from storefront.models.category import Category, ProductCategory
from storefront.models.attribute import Attribute, AttributeType, ProductAttributeValue
from storefront.models.product import Product, ProductVariant, Review

__all__ = [
    # Catalog
    "Product",
    "ProductVariant",
    "Review",
    # Taxonomy
    "Category",
    "ProductCategory",
    # Attributes
    "Attribute",
    "AttributeType",
    "ProductAttributeValue",
]
