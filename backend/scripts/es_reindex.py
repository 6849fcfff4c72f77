#!/usr/bin/env python
"""
Create the Elasticsearch products index if missing and push every product.

Usage:
    python scripts/es_reindex.py
    python scripts/es_reindex.py --batch-size 500
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
from storefront.search.elasticsearch import ElasticsearchIndex, create_search_index

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description='Rebuild the product search index')
    parser.add_argument('--batch-size', type=int, default=settings.REINDEX_BATCH_SIZE, help='Products per bulk request')
    args = parser.parse_args()

    index = create_search_index()
    if not isinstance(index, ElasticsearchIndex):
        raise SystemExit("ELASTICSEARCH_URL is required")

    try:
        await index.ensure_index()
        async with async_session_maker() as session:
            indexed = await index.reindex(session, batch_size=args.batch_size)
    finally:
        await index.close()

    print(f"Reindex complete. Indexed {indexed} products into \"{index.index_name}\".")


if __name__ == '__main__':
    asyncio.run(main())
