#!/usr/bin/env python
"""
Activate or deactivate imported products to match supplier feed availability.

Usage:
    python scripts/sync_availability.py
    python scripts/sync_availability.py --deactivate-missing
    python scripts/sync_availability.py --url https://supplier.example/collections/all/products.json
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from storefront.core.config import settings
from storefront.core.database import async_session_maker
from storefront.search.elasticsearch import create_search_index, sync_products_in_background
from storefront.services.availability_sync import AvailabilitySync

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description='Sync product availability from supplier feeds')
    parser.add_argument('--url', action='append', dest='urls', help='Feed URL (repeatable, defaults to FEED_URLS)')
    parser.add_argument('--source', default=settings.IMPORT_DEFAULT_SOURCE, help='Product source to sync')
    parser.add_argument('--deactivate-missing', action='store_true', help='Deactivate products absent from all feeds')
    args = parser.parse_args()

    async with async_session_maker() as session:
        sync = AvailabilitySync(session)
        result = await sync.run(urls=args.urls, deactivate_missing=args.deactivate_missing, source=args.source)

    await sync_products_in_background(create_search_index(), async_session_maker, sync.changed_product_ids)

    print("\n" + "=" * 50)
    for key, value in result.model_dump(by_alias=True).items():
        print(f"  {key:28} {value}")


if __name__ == '__main__':
    asyncio.run(main())
