"""AliasRegistry: alternate names resolving to one canonical slug.

Built once per run from the persisted alias table and passed explicitly
through the reconciliation context. Keys are normalized search keys;
the first registration of a key wins and nothing is ever removed.
"""

from __future__ import annotations

from collections.abc import Iterable

from herovault.core.logging import get_logger
from herovault.schemas.alias import AliasEntry, AliasGroup
from herovault.services.normalization import normalize_search_key, normalize_slug

logger = get_logger(__name__)


def canonical_slug_for(group: AliasGroup) -> str:
    """Explicit canonical_slug if set, else a slug derived from canonical_name."""
    explicit = group.canonical_slug.strip().lower()
    if explicit:
        return explicit
    return normalize_slug(group.canonical_name)


def build_terms_by_slug(entries: Iterable[AliasEntry]) -> dict[str, list[str]]:
    """Inverse index: slug -> normalized alias terms, in registration order."""
    terms: dict[str, list[str]] = {}
    for entry in entries:
        key = normalize_search_key(entry.alias)
        if not key:
            continue
        existing = terms.setdefault(entry.canonical_slug, [])
        if key not in existing:
            existing.append(key)
    return terms


class AliasRegistry:
    """In-memory alias index over the persisted alias groups."""

    def __init__(self) -> None:
        self._lookup: dict[str, str] = {}  # normalized key -> canonical slug
        self._groups: list[AliasGroup] = []
        self._group_by_slug: dict[str, AliasGroup] = {}
        self.added: list[AliasEntry] = []

    @classmethod
    def from_groups(cls, groups: Iterable[AliasGroup]) -> AliasRegistry:
        reg = cls()
        for group in groups:
            reg._load_group(group)
        logger.debug("alias_registry_loaded", groups=reg.group_count, keys=reg.key_count)
        return reg

    @property
    def key_count(self) -> int:
        return len(self._lookup)

    @property
    def group_count(self) -> int:
        return len(self._groups)

    def _load_group(self, group: AliasGroup) -> None:
        slug = canonical_slug_for(group)
        self._groups.append(group)
        if not slug:
            logger.warning("alias_group_without_slug", canonical_name=group.canonical_name)
            return
        self._group_by_slug.setdefault(slug, group)
        self._index(slug, slug)
        self._index(group.canonical_name, slug)
        for alias in group.aliases:
            self._index(alias, slug)

    def _index(self, text: str, slug: str) -> bool:
        key = normalize_search_key(text)
        if not key or key in self._lookup:
            return False
        self._lookup[key] = slug
        return True

    def lookup(self, free_text: str | None) -> str | None:
        """Resolve free text to a canonical slug, or None."""
        key = normalize_search_key(free_text)
        if not key:
            return None
        return self._lookup.get(key)

    def register(self, alias: str, slug: str, canonical_name: str = "") -> bool:
        """Register an alias for a slug. Never overwrites an existing key.

        Returns:
            True if the alias was new and has been appended.
        """
        slug = slug.strip().lower()
        key = normalize_search_key(alias)
        if not key or not slug:
            return False

        existing = self._lookup.get(key)
        if existing is not None:
            if existing != slug:
                logger.info(
                    "alias_conflict_kept_first",
                    alias=alias,
                    registered_slug=existing,
                    rejected_slug=slug,
                )
            return False

        group = self._group_by_slug.get(slug)
        if group is None:
            group = AliasGroup(aliases=[], canonical_name=canonical_name, canonical_slug=slug)
            self._groups.append(group)
            self._group_by_slug[slug] = group
        group.aliases.append(alias.strip())
        self._lookup[key] = slug
        self.added.append(AliasEntry(alias=alias.strip(), canonical_slug=slug))
        logger.info("alias_registered", alias=alias, slug=slug)
        return True

    def entries(self) -> list[AliasEntry]:
        """Flattened alias entries across all groups."""
        result: list[AliasEntry] = []
        for group in self._groups:
            slug = canonical_slug_for(group)
            if slug:
                result.extend(group.entries(slug))
        return result

    def terms_by_slug(self) -> dict[str, list[str]]:
        return build_terms_by_slug(self.entries())

    def canonical_slugs(self) -> list[str]:
        """Distinct canonical slugs in table order."""
        return list(self._group_by_slug)

    def group_for(self, slug: str) -> AliasGroup | None:
        return self._group_by_slug.get(slug)

    def to_groups(self) -> list[AliasGroup]:
        return list(self._groups)
