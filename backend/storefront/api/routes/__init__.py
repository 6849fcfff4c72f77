from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from storefront.api.routes import products, admin
from storefront.core.database import get_db
from storefront.models import Category

api_router = APIRouter()

api_router.include_router(products.router, prefix="/products", tags=["products"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])


@api_router.get("/categories", tags=["categories"])
async def list_categories(db: AsyncSession = Depends(get_db)):
    """List all active categories."""
    result = await db.execute(
        select(Category).where(Category.is_active == True).order_by(Category.display_order, Category.name)
    )
    categories = result.scalars().all()
    return [
        {
            "id": str(c.id),
            "name": c.name,
            "slug": c.slug,
            "parentId": str(c.parent_id) if c.parent_id else None,
            "isActive": c.is_active,
        }
        for c in categories
    ]
