import secrets
from typing import Optional
from fastapi import Header, HTTPException, status
from storefront.core.config import settings


async def get_current_admin(x_admin_key: Optional[str] = Header(default=None)) -> bool:
    """Guard admin routes with a shared key when ADMIN_API_KEY is configured."""
    if not settings.ADMIN_API_KEY:
        return True

    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized",
        )
    return True
