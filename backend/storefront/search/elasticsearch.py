"""
Elasticsearch client for product search.

The index only ranks: it returns product ids in relevance order (plus optional
facet aggregations). Relational storage stays the source of truth, so index
writes are best effort and a failed or slow query degrades to relational
search instead of failing the request.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.exceptions import IndexDegradedError, InfrastructureError
from storefront.core.retry import create_retry_decorator
from storefront.models import Product, ProductCategory
from storefront.schemas.search import FacetBucket, FacetSummary, PriceRange

logger = logging.getLogger(__name__)

SEARCH_FIELDS = [
    "name^5",
    "description^2",
    "brand^2",
    "tags^3",
    "categoryNames^2",
]

INDEX_MAPPING = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "productId": {"type": "keyword"},
            "name": {"type": "text"},
            "description": {"type": "text"},
            "brand": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
            "tags": {"type": "keyword"},
            "categoryNames": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
            "isActive": {"type": "boolean"},
            "price": {"type": "float"},
        }
    }
}

FACET_AGGREGATIONS = {
    "brands": {"terms": {"field": "brand.keyword", "size": 20}},
    "categories": {"terms": {"field": "categoryNames.keyword", "size": 20}},
    "price_min": {"min": {"field": "price"}},
    "price_max": {"max": {"field": "price"}},
}


@dataclass
class IndexHits:
    product_ids: list[str] = field(default_factory=list)
    total: int = 0
    facets: Optional[FacetSummary] = None


class SearchIndex(ABC):
    """Ranking collaborator of the search engine."""

    enabled: bool = True

    @abstractmethod
    async def query(self, text: str, skip: int = 0, limit: int = 12, with_facets: bool = False) -> IndexHits:
        """Ranked product ids for a free-text query. Raises IndexDegradedError."""
        pass

    @abstractmethod
    async def sync_products(self, session: AsyncSession, product_ids: Iterable[uuid.UUID]) -> None:
        """Push the current relational state of products to the index. Never raises."""
        pass


class NullSearchIndex(SearchIndex):
    """Used when no index is configured: search runs purely relational."""

    enabled = False

    async def query(self, text: str, skip: int = 0, limit: int = 12, with_facets: bool = False) -> IndexHits:
        raise IndexDegradedError("Search index is not configured")

    async def sync_products(self, session: AsyncSession, product_ids: Iterable[uuid.UUID]) -> None:
        return None


def build_document(product: Product) -> dict[str, Any]:
    return {
        "id": str(product.id),
        "productId": str(product.id),
        "name": product.name,
        "description": product.description,
        "brand": product.brand,
        "tags": product.tags or [],
        "categoryNames": [entry.category.name for entry in product.categories],
        "isActive": product.is_active,
        "price": product.price,
    }


async def load_documents(session: AsyncSession, product_ids: Iterable[uuid.UUID]) -> list[dict[str, Any]]:
    unique_ids = list(dict.fromkeys(pid for pid in product_ids if pid))
    if not unique_ids:
        return []

    result = await session.execute(
        select(Product)
        .where(Product.id.in_(unique_ids))
        .options(selectinload(Product.categories).selectinload(ProductCategory.category))
    )
    return [build_document(product) for product in result.scalars().all()]


def _parse_facets(aggregations: dict[str, Any]) -> FacetSummary:
    def buckets(name: str) -> list[FacetBucket]:
        return [
            FacetBucket(value=str(bucket["key"]), count=bucket.get("doc_count", 0))
            for bucket in aggregations.get(name, {}).get("buckets", [])
        ]

    return FacetSummary(
        brands=buckets("brands"),
        categories=buckets("categories"),
        price=PriceRange(
            min=aggregations.get("price_min", {}).get("value"),
            max=aggregations.get("price_max", {}).get("value"),
        ),
    )


class ElasticsearchIndex(SearchIndex):
    def __init__(
        self,
        base_url: str,
        index_name: str = "products",
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 3.0,
        retry_attempts: int = 3,
        retry_wait: float = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.index_name = index_name
        headers = {"Content-Type": "application/json"}
        auth = None
        if api_key:
            headers["Authorization"] = f"ApiKey {api_key}"
        elif username and password:
            auth = httpx.BasicAuth(username, password)

        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )
        self._retry = create_retry_decorator(max_attempts=retry_attempts, min_wait=retry_wait, max_wait=retry_wait * 10)

    async def close(self) -> None:
        await self.client.aclose()

    async def query(self, text: str, skip: int = 0, limit: int = 12, with_facets: bool = False) -> IndexHits:
        body: dict[str, Any] = {
            "from": skip,
            "size": limit,
            "track_total_hits": True,
            "_source": ["id", "productId"],
            "query": {
                "bool": {
                    "must": [
                        {
                            "multi_match": {
                                "query": text,
                                "fields": SEARCH_FIELDS,
                                "fuzziness": "AUTO",
                                "operator": "and",
                            }
                        }
                    ],
                    "filter": [{"term": {"isActive": True}}],
                }
            },
        }
        if with_facets:
            body["aggs"] = FACET_AGGREGATIONS

        try:
            response = await self.client.post(f"/{self.index_name}/_search", json=body)
        except httpx.HTTPError as e:
            raise IndexDegradedError(f"Elasticsearch search failed: {e.__class__.__name__}: {e}") from e

        if response.status_code >= 400:
            raise IndexDegradedError(f"Elasticsearch search failed: {response.status_code} {response.text}")

        try:
            data = response.json()
            hits = data["hits"]
        except (ValueError, KeyError) as e:
            raise IndexDegradedError(f"Elasticsearch returned an unreadable response: {e}") from e

        product_ids = []
        for hit in hits.get("hits", []):
            source = hit.get("_source") or {}
            product_id = source.get("id") or source.get("productId") or hit.get("_id")
            if product_id:
                product_ids.append(str(product_id))

        total = hits.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)

        facets = _parse_facets(data["aggregations"]) if with_facets and data.get("aggregations") else None
        return IndexHits(product_ids=product_ids, total=int(total), facets=facets)

    async def _post_bulk(self, lines: list[str]) -> None:
        response = await self.client.post(
            f"/{self.index_name}/_bulk",
            content="\n".join(lines) + "\n",
            headers={"Content-Type": "application/x-ndjson"},
        )
        response.raise_for_status()

        data = response.json()
        if data.get("errors"):
            first_error = next(
                (
                    item for item in data.get("items", [])
                    if any(op.get("status", 200) >= 300 for op in item.values())
                ),
                None,
            )
            raise InfrastructureError(f"Elasticsearch bulk sync item error: {json.dumps(first_error)}")

    async def index_documents(self, documents: list[dict[str, Any]]) -> None:
        """Bulk upsert documents. Raises on failure after retries."""
        if not documents:
            return
        lines = []
        for document in documents:
            lines.append(json.dumps({"index": {"_id": document["id"]}}))
            lines.append(json.dumps(document))
        await self._retry(self._post_bulk)(lines)

    async def sync_products(self, session: AsyncSession, product_ids: Iterable[uuid.UUID]) -> None:
        product_ids = list(product_ids)
        try:
            documents = await load_documents(session, product_ids)
            await self.index_documents(documents)
            logger.info(f"Synced {len(documents)} products to Elasticsearch")
        except Exception as e:
            logger.error(f"[Elasticsearch sync] Failed to sync {len(product_ids)} products: {e}")

    async def ensure_index(self) -> None:
        response = await self.client.head(f"/{self.index_name}")
        if response.status_code == 200:
            return
        if response.status_code != 404:
            raise InfrastructureError(f"Failed checking index existence: {response.status_code} {response.text}")

        response = await self.client.put(f"/{self.index_name}", json=INDEX_MAPPING)
        if response.status_code >= 400:
            raise InfrastructureError(
                f'Failed creating index "{self.index_name}": {response.status_code} {response.text}'
            )
        logger.info(f"Created Elasticsearch index {self.index_name}")

    async def reindex(self, session: AsyncSession, batch_size: int = 200) -> int:
        """Push every product to the index in id order. Returns the number indexed."""
        indexed = 0
        last_id = None
        while True:
            query = select(Product.id).order_by(Product.id).limit(batch_size)
            if last_id is not None:
                query = query.where(Product.id > last_id)
            ids = (await session.execute(query)).scalars().all()
            if not ids:
                break

            await self.index_documents(await load_documents(session, ids))
            indexed += len(ids)
            last_id = ids[-1]
            logger.info(f"Reindexed {indexed} products")
        return indexed


def create_search_index() -> SearchIndex:
    if not settings.ELASTICSEARCH_URL:
        return NullSearchIndex()
    return ElasticsearchIndex(
        base_url=settings.ELASTICSEARCH_URL,
        index_name=settings.ELASTICSEARCH_INDEX,
        api_key=settings.ELASTICSEARCH_API_KEY,
        username=settings.ELASTICSEARCH_USERNAME,
        password=settings.ELASTICSEARCH_PASSWORD,
        timeout=settings.SEARCH_TIMEOUT_SECONDS,
    )


_search_index: Optional[SearchIndex] = None


def get_search_index() -> SearchIndex:
    """FastAPI dependency: one index client per process."""
    global _search_index
    if _search_index is None:
        _search_index = create_search_index()
    return _search_index


async def sync_products_in_background(
    index: SearchIndex,
    session_factory: async_sessionmaker[AsyncSession],
    product_ids: list[uuid.UUID],
) -> None:
    """Fire-and-forget sync after an import commits; runs in its own session."""
    if not index.enabled or not product_ids:
        return
    async with session_factory() as session:
        await index.sync_products(session, product_ids)
