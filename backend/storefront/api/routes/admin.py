import logging
from typing import Any
import httpx
from fastapi import APIRouter, Depends, HTTPException, status, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from storefront.core.config import settings
from storefront.core.database import get_db, get_session_factory
from storefront.core.exceptions import InfrastructureError
from storefront.core.security import get_current_admin
from storefront.schemas.availability import AvailabilitySyncRequest, AvailabilitySyncResponse
from storefront.schemas.catalog_import import (
    ImportRequest, ImportChunkRequest, ImportResponse, ImportChunkResponse,
)
from storefront.search.elasticsearch import (
    ElasticsearchIndex, SearchIndex, get_search_index, sync_products_in_background,
)
from storefront.services.availability_sync import AvailabilitySync
from storefront.services.catalog_cache import CategoryCache
from storefront.services.catalog_import import CatalogReconciler

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_admin)])


def require_rows(products: Any) -> list:
    if not isinstance(products, list) or not products:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid products data. Expected a non-empty array.",
        )
    return products


@router.post("/products/import", response_model=ImportResponse)
async def import_products(
    request: ImportRequest,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    index: SearchIndex = Depends(get_search_index),
):
    """Reconcile a whole feed in one call."""
    rows = require_rows(request.products)

    reconciler = CatalogReconciler(session_factory)
    results = await reconciler.reconcile(rows)

    background_tasks.add_task(
        sync_products_in_background, index, session_factory, reconciler.touched_product_ids
    )

    return ImportResponse(
        results=results,
        message=(
            f"Import completed: {results.imported} imported, "
            f"{results.updated} updated, {results.failed} failed"
        ),
    )


@router.post("/products/import-chunk", response_model=ImportChunkResponse)
async def import_products_chunk(
    request: ImportChunkRequest,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    index: SearchIndex = Depends(get_search_index),
):
    """
    Reconcile one chunk of a larger feed, sequentially.

    The category cache is returned to the caller, who sends it back with the
    next chunk.
    """
    rows = require_rows(request.products)

    category_cache = CategoryCache(request.category_cache or [])
    reconciler = CatalogReconciler(session_factory, concurrency=1, category_cache=category_cache)
    results = await reconciler.reconcile(rows)

    background_tasks.add_task(
        sync_products_in_background, index, session_factory, reconciler.touched_product_ids
    )

    return ImportChunkResponse(results=results, category_cache=category_cache.export())


@router.post("/products/availability-sync", response_model=AvailabilitySyncResponse)
async def sync_availability(
    background_tasks: BackgroundTasks,
    request: AvailabilitySyncRequest = AvailabilitySyncRequest(),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    index: SearchIndex = Depends(get_search_index),
):
    """Activate or deactivate products to match supplier feed availability."""
    sync = AvailabilitySync(db)
    result = await sync.run(
        urls=request.urls or None,
        deactivate_missing=request.deactivate_missing,
        source=request.source,
    )

    background_tasks.add_task(
        sync_products_in_background, index, session_factory, sync.changed_product_ids
    )

    return AvailabilitySyncResponse(message="Availability sync completed.", result=result)


@router.post("/search/reindex")
async def reindex_search(
    db: AsyncSession = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
):
    """Rebuild the search index from the catalog."""
    if not isinstance(index, ElasticsearchIndex):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search index is not configured",
        )

    try:
        await index.ensure_index()
        indexed = await index.reindex(db, batch_size=settings.REINDEX_BATCH_SIZE)
    except httpx.HTTPError as e:
        raise InfrastructureError(f"Search index unavailable: {e}") from e
    logger.info(f"Reindex finished: {indexed} products")

    return {"success": True, "indexed": indexed}
