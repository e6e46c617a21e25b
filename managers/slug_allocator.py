"""Unique, URL-safe slug allocation scoped to one build pass"""

import re
from typing import Dict, Iterable, Optional, Set, Tuple

SLUG_INVALID_CHARS = re.compile(r"[^a-z0-9\-_.]+")
SLUG_DASH_RUNS = re.compile(r"-+")
FALLBACK_SLUG = "asset"


def normalize_slug(candidate: str) -> str:
    """Lowercase, collapse disallowed characters and dash runs, trim dashes"""
    slug = SLUG_INVALID_CHARS.sub("-", str(candidate).lower())
    slug = SLUG_DASH_RUNS.sub("-", slug)
    return slug.strip("-")


def slug_base_for(category: str, stem: str, category_is_fallback: bool = False) -> str:
    """Base candidate for an asset: "<category>-<stem>", or the stem for uncategorised files"""
    base = normalize_slug(stem if category_is_fallback else f"{category}-{stem}")
    return base or FALLBACK_SLUG


class SlugAllocator:
    """Hands out slugs; the first request for a base gets the base, later ones base-1, base-2...

    Seed it with slugs assigned in earlier builds so repeated allocation never
    collides with them. Instances are plain data and pickle cleanly, so each
    parallel worker receives its own copy.
    """

    def __init__(self):
        self._next_suffix: Dict[str, int] = {}
        self._taken: Set[str] = set()

    @classmethod
    def seeded(cls, assignments: Iterable[Tuple[Optional[str], str]]) -> "SlugAllocator":
        allocator = cls()
        for base, slug in assignments:
            allocator.seed(base, slug)
        return allocator

    def seed(self, base: Optional[str], slug: str):
        """Record an existing assignment of `slug` derived from `base`"""
        self._taken.add(slug)
        if not base:
            return
        if slug == base:
            self._next_suffix.setdefault(base, 1)
            return
        prefix = base + "-"
        if slug.startswith(prefix) and slug[len(prefix):].isdigit():
            used = int(slug[len(prefix):])
            self._next_suffix[base] = max(self._next_suffix.get(base, 1), used + 1)

    def is_taken(self, slug: str) -> bool:
        return slug in self._taken

    def reserve(self, slug: str):
        self._taken.add(slug)

    def allocate(self, candidate: str) -> str:
        base = normalize_slug(candidate) or FALLBACK_SLUG
        if base not in self._next_suffix and base not in self._taken:
            self._next_suffix[base] = 1
            self._taken.add(base)
            return base

        n = self._next_suffix.get(base, 1)
        while f"{base}-{n}" in self._taken:
            n += 1
        slug = f"{base}-{n}"
        self._next_suffix[base] = n + 1
        self._taken.add(slug)
        return slug

    @property
    def taken(self) -> Set[str]:
        return set(self._taken)
