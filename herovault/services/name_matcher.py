"""Tiered cross-source name matching: slug -> name -> alias -> prefix -> substring.

Resolves a name seen in another source (asset wiki, quote pages) to one of
the already-known canonical identities. Tiers are evaluated in strict
order and the first hit wins; scores are never combined across tiers.

  Tier 1: Exact slug equality (normalized, so legacy slugs compare stably)
  Tier 2: Exact normalized display name
  Tier 3: Registered alias pointing at a known identity
  Tier 4: Token prefix ("tiki_*") for compound names with differing epithets
  Tier 5: Whole-word substring containment on display names

No tier -> explicit no-match. The caller logs it to the unresolved
worklist and must not create an identity from it.
"""

from __future__ import annotations

from collections.abc import Iterable

from thefuzz import fuzz

from herovault.core.logging import get_logger
from herovault.schemas.hero import CanonicalRecord
from herovault.schemas.reconciliation import MatchResult, MatchTier
from herovault.services.alias_registry import AliasRegistry
from herovault.services.normalization import derive_slug, normalize_search_key, normalize_slug

logger = get_logger(__name__)

SUGGESTION_THRESHOLD = 80  # token_sort_ratio needed to suggest a slug to the operator


class IdentityIndex:
    """Lookup tables over the known identities, in snapshot order."""

    def __init__(self, records: Iterable[CanonicalRecord]) -> None:
        self.records: list[CanonicalRecord] = list(records)
        self._by_slug: dict[str, str] = {}
        self._by_name: dict[str, str] = {}
        for record in self.records:
            slug_key = normalize_slug(record.slug)
            if slug_key:
                self._by_slug.setdefault(slug_key, record.slug)
            name_key = normalize_search_key(record.display_name)
            if name_key:
                self._by_name.setdefault(name_key, record.slug)

    def __len__(self) -> int:
        return len(self.records)

    def slug_for_slug_key(self, slug_key: str) -> str | None:
        return self._by_slug.get(slug_key)

    def slug_for_name_key(self, name_key: str) -> str | None:
        return self._by_name.get(name_key)


def _contains_words(haystack: str, needle: str) -> bool:
    return f" {needle} " in f" {haystack} "


def match_identity(
    candidate_name: str,
    candidate_slug_guess: str | None,
    known: IdentityIndex | Iterable[CanonicalRecord],
    alias_index: AliasRegistry | None = None,
) -> MatchResult:
    """Find the canonical identity a foreign name refers to.

    Args:
        candidate_name: Name as written by the foreign source.
        candidate_slug_guess: The source's own slug for it, if any.
        known: Known canonical identities.
        alias_index: Registered aliases, consulted at tier 3.

    Returns:
        MatchResult with slug and tier set, or a no-match with a reason.
    """
    index = known if isinstance(known, IdentityIndex) else IdentityIndex(known)
    name_key = normalize_search_key(candidate_name)
    slug_key = normalize_slug(candidate_slug_guess) or derive_slug(candidate_name)

    result = MatchResult(candidate_name=candidate_name, candidate_slug=slug_key)
    if not name_key and not slug_key:
        result.reason = "empty_key"
        return result

    def hit(slug: str, tier: MatchTier) -> MatchResult:
        result.slug = slug
        result.tier = tier
        result.reason = tier.name.lower()
        return result

    # Tier 1
    if slug_key and (slug := index.slug_for_slug_key(slug_key)):
        return hit(slug, MatchTier.EXACT_SLUG)

    # Tier 2
    if name_key and (slug := index.slug_for_name_key(name_key)):
        return hit(slug, MatchTier.EXACT_NAME)

    # Tier 3
    if alias_index is not None and name_key:
        alias_slug = alias_index.lookup(candidate_name)
        if alias_slug and (slug := index.slug_for_slug_key(normalize_slug(alias_slug))):
            return hit(slug, MatchTier.ALIAS)

    # Tier 4
    if "_" in slug_key:
        prefix = slug_key.split("_", 1)[0] + "_"
        for record in index.records:
            if normalize_slug(record.slug).startswith(prefix):
                return hit(record.slug, MatchTier.TOKEN_PREFIX)

    # Tier 5
    if name_key:
        for record in index.records:
            known_key = normalize_search_key(record.display_name)
            if known_key and (
                _contains_words(known_key, name_key) or _contains_words(name_key, known_key)
            ):
                return hit(record.slug, MatchTier.SUBSTRING)

    result.reason = "no_match"
    return result


def suggest_identity(
    candidate_name: str,
    known: IdentityIndex,
    threshold: int = SUGGESTION_THRESHOLD,
) -> str | None:
    """Closest known slug by fuzzy score, for operator triage only."""
    name_key = normalize_search_key(candidate_name)
    if not name_key:
        return None

    best_slug: str | None = None
    best_score = 0
    for record in known.records:
        score = fuzz.token_sort_ratio(name_key, normalize_search_key(record.display_name))
        if score > best_score:
            best_slug, best_score = record.slug, score

    if best_score >= threshold:
        logger.debug("match_suggestion", candidate=candidate_name, slug=best_slug, score=best_score)
        return best_slug
    return None
