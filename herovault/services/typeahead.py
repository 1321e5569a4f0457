"""Typeahead ranking over canonical identities.

Read-only consumer of the index and alias table. Ranks by
exact (0) > prefix (1) > substring (2) against display name, slug and
alias terms; ties break alphabetically by display name.
"""

from __future__ import annotations

from collections.abc import Iterable

from herovault.schemas.hero import CanonicalRecord
from herovault.services.normalization import normalize_search_key, normalize_slug

DEFAULT_MAX_RESULTS = 50


def _score(
    record: CanonicalRecord,
    aliases: list[str],
    query: str,
    slug_query: str,
) -> int | None:
    name = normalize_search_key(record.display_name)
    slug = record.slug.lower()

    def any_term(check) -> bool:
        return bool(
            (query and check(name, query))
            or (slug_query and check(slug, slug_query))
            or (query and any(check(alias, query) for alias in aliases))
        )

    if any_term(str.__eq__):
        return 0
    if any_term(str.startswith):
        return 1
    if any_term(str.__contains__):
        return 2
    return None


def rank_suggestions(
    records: Iterable[CanonicalRecord],
    alias_terms_by_slug: dict[str, list[str]],
    query: str,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> tuple[list[CanonicalRecord], int]:
    """Rank identities for a typed query.

    Returns:
        (top ``max_results`` records, total number of matches).
    """
    records = list(records)
    normalized = normalize_search_key(query)
    slug_query = normalize_slug(query)
    if not normalized and not slug_query:
        return records[:max_results], len(records)

    scored: list[tuple[int, str, CanonicalRecord]] = []
    for record in records:
        score = _score(record, alias_terms_by_slug.get(record.slug, []), normalized, slug_query)
        if score is not None:
            scored.append((score, record.display_name.lower(), record))

    scored.sort(key=lambda item: (item[0], item[1]))
    return [record for _, _, record in scored[:max_results]], len(scored)
