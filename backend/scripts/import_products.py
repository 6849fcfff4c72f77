#!/usr/bin/env python
"""
Import a product feed (JSON array, or an object with a "products" array).

The feed is reconciled in chunks; the category cache built by one chunk is
carried into the next, the same way API clients round-trip it through
/admin/products/import-chunk.

Usage:
    python scripts/import_products.py feed.json
    python scripts/import_products.py feed.json --chunk-size 50 --init-db
    python scripts/import_products.py feed.json --api-url http://localhost:8000/v1
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path

import httpx

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront.core.config import settings
from storefront.core.database import async_session_maker, init_db
from storefront.schemas.catalog_import import ImportResults
from storefront.search.elasticsearch import create_search_index, sync_products_in_background
from storefront.services.catalog_cache import CategoryCache
from storefront.services.catalog_import import CatalogReconciler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def load_rows(path: Path) -> list:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("products")
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a JSON array of products")
    return data


def add_results(totals: ImportResults, chunk: ImportResults, offset: int) -> None:
    totals.imported += chunk.imported
    totals.updated += chunk.updated
    totals.failed += chunk.failed
    for error in chunk.errors:
        # Chunk indexes are 1-based within the chunk
        totals.errors.append(error.model_copy(update={"index": error.index + offset}))


async def import_local(rows: list, chunk_size: int) -> ImportResults:
    totals = ImportResults()
    category_cache = CategoryCache()
    index = create_search_index()

    for offset in range(0, len(rows), chunk_size):
        chunk = rows[offset:offset + chunk_size]
        reconciler = CatalogReconciler(async_session_maker, concurrency=1, category_cache=category_cache)
        add_results(totals, await reconciler.reconcile(chunk), offset)
        await sync_products_in_background(index, async_session_maker, reconciler.touched_product_ids)
        print(f"  rows {offset + 1}-{offset + len(chunk)}: {totals.imported} imported, "
              f"{totals.updated} updated, {totals.failed} failed, {len(category_cache)} categories cached")

    return totals


async def import_remote(rows: list, chunk_size: int, api_url: str) -> ImportResults:
    totals = ImportResults()
    category_cache: list = []
    headers = {"X-Admin-Key": settings.ADMIN_API_KEY} if settings.ADMIN_API_KEY else {}

    async with httpx.AsyncClient(base_url=api_url.rstrip("/"), headers=headers, timeout=120.0) as client:
        for offset in range(0, len(rows), chunk_size):
            chunk = rows[offset:offset + chunk_size]
            response = await client.post(
                "/admin/products/import-chunk",
                json={"products": chunk, "categoryCache": category_cache},
            )
            response.raise_for_status()
            payload = response.json()
            category_cache = payload.get("categoryCache", [])
            add_results(totals, ImportResults.model_validate(payload["results"]), offset)
            print(f"  rows {offset + 1}-{offset + len(chunk)}: {totals.imported} imported, "
                  f"{totals.updated} updated, {totals.failed} failed")

    return totals


async def main():
    parser = argparse.ArgumentParser(description='Import a product feed')
    parser.add_argument('path', type=Path, help='JSON feed file')
    parser.add_argument('--chunk-size', type=int, default=settings.IMPORT_CHUNK_SIZE, help='Rows per chunk')
    parser.add_argument('--api-url', help='Submit chunks to a running API instead of the local database')
    parser.add_argument('--init-db', action='store_true', help='Create missing tables first')
    args = parser.parse_args()

    rows = load_rows(args.path)
    print(f"Importing {len(rows)} products from {args.path} in chunks of {args.chunk_size}")

    if args.api_url:
        totals = await import_remote(rows, args.chunk_size, args.api_url)
    else:
        if args.init_db:
            await init_db()
        totals = await import_local(rows, args.chunk_size)

    print("\n" + "=" * 50)
    print(f"Imported: {totals.imported}")
    print(f"Updated:  {totals.updated}")
    print(f"Failed:   {totals.failed}")
    for error in totals.errors[:20]:
        print(f"  #{error.index} {error.name}: {error.error}")
    if len(totals.errors) > 20:
        print(f"  ... and {len(totals.errors) - 20} more")


if __name__ == '__main__':
    asyncio.run(main())
