import re
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^\w-]", flags=re.ASCII)
_HYPHEN_RUNS = re.compile(r"-+")


def to_slug(value: str | None) -> str:
    """
    Normalize a name or slug input into a URL slug.
    Example: "  Red  Shirt (XL)!" -> "red-shirt-xl"
    """
    if not value:
        return ""
    slug = _WHITESPACE.sub("-", str(value).lower())
    slug = _NON_SLUG.sub("", slug)
    slug = _HYPHEN_RUNS.sub("-", slug)
    return slug.strip("-")


class SlugAllocator:
    """
    Hands out collision-free slugs for products created within one batch.

    Seeded with every stored slug sharing a prefix with the batch's base slugs.
    A candidate is reserved as soon as it is returned, so two rows of the same
    batch never receive the same slug even though neither is persisted yet.
    """

    def __init__(self, existing_slugs: Iterable[str] = ()):
        self.reserved: set[str] = set(existing_slugs)
        self.counters: dict[str, int] = {}

    def allocate(self, base_slug: str) -> str:
        if not base_slug:
            return base_slug

        counter = self.counters.get(base_slug, 0)
        candidate = base_slug if counter == 0 else f"{base_slug}-{counter}"

        while candidate in self.reserved:
            counter += 1
            candidate = f"{base_slug}-{counter}"

        self.counters[base_slug] = counter
        self.reserved.add(candidate)
        return candidate
