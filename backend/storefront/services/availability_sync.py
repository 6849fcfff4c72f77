"""
Supplier feed availability sync.

Pages through each supplier products feed and flips is_active on the matching
catalog products (matched by external id within one source). A feed page that
cannot be fetched aborts the whole run; nothing is written in that case.
"""

import logging
import uuid
from typing import Optional

import httpx
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import InfrastructureError
from storefront.core.retry import create_retry_decorator
from storefront.models import Product
from storefront.schemas.availability import AvailabilitySyncResult, SupplierProduct

logger = logging.getLogger(__name__)


class AvailabilitySync:
    def __init__(
        self,
        session: AsyncSession,
        page_limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_attempts: int = 3,
        retry_wait: float = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self.page_limit = page_limit or settings.FEED_PAGE_LIMIT
        self.max_pages = max_pages or settings.FEED_MAX_PAGES
        self.timeout = timeout or settings.FEED_TIMEOUT_SECONDS
        self.transport = transport
        self._retry = create_retry_decorator(max_attempts=retry_attempts, min_wait=retry_wait, max_wait=retry_wait * 10)
        self.changed_product_ids: list[uuid.UUID] = []

    async def _get_page(self, client: httpx.AsyncClient, url: str, page: int) -> list[dict]:
        response = await client.get(url, params={"limit": self.page_limit, "page": page})
        response.raise_for_status()
        payload = response.json()
        products = payload.get("products") if isinstance(payload, dict) else None
        return products if isinstance(products, list) else []

    async def fetch_feed(self, client: httpx.AsyncClient, url: str) -> list[SupplierProduct]:
        """All products of one feed. Raises InfrastructureError when a page fails."""
        products = []
        for page in range(1, self.max_pages + 1):
            try:
                items = await self._retry(self._get_page)(client, url, page)
            except (httpx.HTTPError, ValueError) as e:
                raise InfrastructureError(f"Feed request failed for {url} (page {page}): {e}") from e

            if not items:
                break

            for item in items:
                try:
                    products.append(SupplierProduct.model_validate(item))
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable feed product in {url}: {e.error_count()} errors")

            if len(items) < self.page_limit:
                break

        logger.info(f"Fetched {len(products)} products from {url}")
        return products

    async def collect_availability(self, urls: list[str]) -> tuple[dict[str, bool], int]:
        """External id -> available, OR'd across feeds, plus the number of products seen."""
        availability: dict[str, bool] = {}
        seen = 0
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self.transport,
        ) as client:
            for url in urls:
                for product in await self.fetch_feed(client, url):
                    if product.id is None:
                        continue
                    external_id = str(product.id)
                    # Available in any feed keeps the product active
                    availability[external_id] = availability.get(external_id, False) or product.is_available
                    seen += 1
        return availability, seen

    async def run(
        self,
        urls: Optional[list[str]] = None,
        deactivate_missing: bool = False,
        source: Optional[str] = None,
    ) -> AvailabilitySyncResult:
        source = source or settings.IMPORT_DEFAULT_SOURCE
        urls = urls or settings.FEED_URLS
        if not urls:
            raise InfrastructureError("No supplier feed URLs configured")

        availability, seen = await self.collect_availability(urls)

        result = await self.session.execute(
            select(Product.id, Product.external_id, Product.is_active).where(
                Product.source == source,
                Product.external_id.is_not(None),
            )
        )
        rows = result.all()

        to_activate: list[uuid.UUID] = []
        to_deactivate: list[uuid.UUID] = []
        matched = unchanged = missing = 0

        for product_id, external_id, is_active in rows:
            if external_id not in availability:
                missing += 1
                if deactivate_missing and is_active:
                    to_deactivate.append(product_id)
                else:
                    unchanged += 1
                continue

            matched += 1
            should_be_active = availability[external_id]
            if should_be_active == is_active:
                unchanged += 1
            elif should_be_active:
                to_activate.append(product_id)
            else:
                to_deactivate.append(product_id)

        if to_activate:
            await self.session.execute(
                update(Product).where(Product.id.in_(to_activate)).values(is_active=True)
            )
        if to_deactivate:
            await self.session.execute(
                update(Product).where(Product.id.in_(to_deactivate)).values(is_active=False)
            )
        await self.session.commit()

        self.changed_product_ids = to_activate + to_deactivate
        summary = AvailabilitySyncResult(
            source=source,
            feeds_processed=len(urls),
            products_seen_in_feeds=seen,
            unique_external_ids_in_feeds=len(availability),
            db_products_checked=len(rows),
            matched_products=matched,
            activated=len(to_activate),
            deactivated=len(to_deactivate),
            unchanged=unchanged,
            missing_in_feeds=missing,
        )
        logger.info(
            f"Availability sync for {source}: {summary.activated} activated, "
            f"{summary.deactivated} deactivated, {summary.unchanged} unchanged"
        )
        return summary
