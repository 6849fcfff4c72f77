"""
Per-batch memoization of category and attribute get-or-create.

The caches are plain objects owned by the caller. The chunked import hands the
category cache back to the client, who resubmits it with the next chunk, so no
server-side state survives between requests.

Get-or-create runs: cache -> lookup -> insert ignoring duplicate keys -> re-read.
A lock serializes the storage round trips so concurrent import workers never
race two creates of the same row. Creates are committed right away: other
workers reference the new ids from their own sessions.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from storefront.core.exceptions import ImportValidationError
from storefront.models import Category, Attribute, AttributeType
from storefront.repositories.products import ProductRepository
from storefront.schemas.catalog_import import CachedCategory
from storefront.services.slugs import to_slug

logger = logging.getLogger(__name__)


class CategoryCache:
    def __init__(self, entries: Iterable[CachedCategory] = ()):
        self._by_slug: dict[str, CachedCategory] = {entry.slug: entry for entry in entries}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._by_slug)

    def export(self) -> list[CachedCategory]:
        return list(self._by_slug.values())

    def _store(self, category: Category) -> CachedCategory:
        cached = CachedCategory(id=str(category.id), slug=category.slug, name=category.name)
        self._by_slug[cached.slug] = cached
        return cached

    async def prefetch(self, repo: ProductRepository, names: Iterable[str]) -> None:
        """Resolve every category named in a chunk with three queries instead of one per row."""
        name_by_slug: dict[str, str] = {}
        for name in names:
            slug = to_slug(name)
            if slug and slug not in name_by_slug:
                name_by_slug[slug] = name

        missing = [slug for slug in name_by_slug if slug not in self._by_slug]
        if not missing:
            return

        async with self._lock:
            for category in await repo.categories_by_slugs(missing):
                self._store(category)

            to_create = [slug for slug in missing if slug not in self._by_slug]
            if to_create:
                await repo.insert_ignoring_duplicates(
                    Category,
                    [{"slug": slug, "name": name_by_slug[slug]} for slug in to_create],
                )
                for category in await repo.categories_by_slugs(to_create):
                    self._store(category)
                await repo.session.commit()
                logger.info(f"Created {len(to_create)} categories")

    async def get_or_create(self, repo: ProductRepository, name: str) -> CachedCategory:
        slug = to_slug(name)
        if not slug:
            raise ImportValidationError(f"Invalid category name '{name}'")

        cached = self._by_slug.get(slug)
        if cached:
            return cached

        async with self._lock:
            cached = self._by_slug.get(slug)
            if cached:
                return cached

            existing = await repo.categories_by_slugs([slug])
            if not existing:
                await repo.insert_ignoring_duplicates(Category, [{"slug": slug, "name": name}])
                existing = await repo.categories_by_slugs([slug])
                await repo.session.commit()
            return self._store(existing[0])


@dataclass(frozen=True)
class CachedAttribute:
    id: uuid.UUID
    slug: str
    category_id: Optional[uuid.UUID]


class AttributeCache:
    """Attributes keyed by "<category scope>:<slug>"."""

    def __init__(self):
        self._by_key: dict[str, CachedAttribute] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def key(slug: str, category_id: Optional[uuid.UUID]) -> str:
        return f"{category_id or 'global'}:{slug}"

    def _store(self, key: str, attribute: Attribute) -> CachedAttribute:
        cached = CachedAttribute(id=attribute.id, slug=attribute.slug, category_id=attribute.category_id)
        self._by_key[key] = cached
        return cached

    async def get_or_create(
        self,
        repo: ProductRepository,
        name: str,
        values: list[str],
        category_id: Optional[uuid.UUID],
    ) -> Optional[CachedAttribute]:
        """
        Resolve an attribute for the product's primary category.

        With a category: scoped attribute, else a global one, else create it in
        the category scope. Without a category only an existing attribute is
        used; nothing is created.
        """
        slug = to_slug(name)
        if not slug:
            return None

        key = self.key(slug, category_id)
        cached = self._by_key.get(key)
        if cached:
            return cached

        async with self._lock:
            cached = self._by_key.get(key)
            if cached:
                return cached

            if category_id is None:
                attribute = await repo.find_any_attribute(slug)
                return self._store(key, attribute) if attribute else None

            attribute = await repo.find_attribute(slug, category_id)
            if attribute is None:
                attribute = await repo.find_attribute(slug, None)
            if attribute is None:
                await repo.insert_ignoring_duplicates(
                    Attribute,
                    [{
                        "category_id": category_id,
                        "name": name,
                        "slug": slug,
                        "type": AttributeType.MULTISELECT.value,
                        "filterable": True,
                        "options": values,
                    }],
                )
                attribute = await repo.find_attribute(slug, category_id)
                await repo.session.commit()
            return self._store(key, attribute)
