"""Identity upsert: decide created / updated_by_url / updated_by_slug / rejected.

For each incoming record:

1. URL match    - an existing record with the same source URL is the target
2. Slug match   - else an existing record with the derived slug is the target
3. Create       - else a new identity, only with an authoritative source URL
4. Reject       - anything else (unverifiable scrape fragments)

Merge policy on an existing target: null attributes are filled, existing
values always win, and only a refresh pass may replace a placeholder tag.
Slugs and provenance are never rewritten.

All state lives in a ReconciliationContext built once per run; there is
no module-level mutable state.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from herovault.config import Settings
from herovault.core.logging import get_logger
from herovault.schemas.alias import AliasGroup
from herovault.schemas.hero import (
    ATTRIBUTE_FIELDS,
    CanonicalRecord,
    CandidateRecord,
    utc_now_iso,
)
from herovault.schemas.reconciliation import (
    MatchResult,
    RunStats,
    UnresolvedEntry,
    UpsertOutcome,
    UpsertResult,
)
from herovault.services.alias_registry import AliasRegistry
from herovault.services.name_matcher import IdentityIndex, match_identity, suggest_identity
from herovault.services.normalization import (
    clean_guide_name,
    derive_slug,
    extract_archive_id,
    normalize_search_key,
    normalize_slug,
)

logger = get_logger(__name__)


@dataclass
class ReconciliationContext:
    """Everything one run reads and mutates, passed explicitly."""

    records: list[CanonicalRecord]
    aliases: AliasRegistry
    unresolved: list[UnresolvedEntry] = field(default_factory=list)
    url_pattern: re.Pattern[str] = field(
        default_factory=lambda: re.compile(Settings().source_url_pattern, re.IGNORECASE)
    )
    placeholder_tags: frozenset[str] = frozenset({"old hero", "legacy id snipe", "legacy", "unverified"})
    default_tag: str | None = "Old Hero"
    stats: RunStats = field(default_factory=RunStats)
    clock: Callable[[], str] = utc_now_iso

    def __post_init__(self) -> None:
        self._by_url: dict[str, CanonicalRecord] = {}
        self._by_slug: dict[str, CanonicalRecord] = {}
        self._by_slug_key: dict[str, CanonicalRecord] = {}
        self._identity_index: IdentityIndex | None = None
        for record in self.records:
            self._index(record)

    @classmethod
    def build(
        cls,
        records: Iterable[CanonicalRecord],
        alias_groups: Iterable[AliasGroup],
        unresolved: Iterable[UnresolvedEntry] = (),
        settings: Settings | None = None,
    ) -> ReconciliationContext:
        settings = settings or Settings()
        return cls(
            records=list(records),
            aliases=AliasRegistry.from_groups(alias_groups),
            unresolved=list(unresolved),
            url_pattern=re.compile(settings.source_url_pattern, re.IGNORECASE),
            placeholder_tags=frozenset(t.lower() for t in settings.placeholder_tags),
            default_tag=settings.default_tag or None,
        )

    def _index(self, record: CanonicalRecord) -> None:
        if record.source_url:
            self._by_url.setdefault(record.source_url, record)
        self._by_slug.setdefault(record.slug, record)
        slug_key = normalize_slug(record.slug)
        if slug_key:
            self._by_slug_key.setdefault(slug_key, record)

    def add_record(self, record: CanonicalRecord) -> None:
        self.records.append(record)
        self._index(record)
        self._identity_index = None

    def set_source_url(self, record: CanonicalRecord, url: str) -> None:
        record.source_url = url
        self._by_url.setdefault(url, record)

    def find_by_url(self, url: str | None) -> CanonicalRecord | None:
        if not url:
            return None
        return self._by_url.get(url)

    def find_by_slug(self, slug: str | None) -> CanonicalRecord | None:
        if not slug:
            return None
        return self._by_slug.get(slug) or self._by_slug_key.get(normalize_slug(slug))

    def is_authoritative_url(self, url: str | None) -> bool:
        return bool(url) and self.url_pattern.match(url) is not None

    def is_placeholder_tag(self, tag: str | None) -> bool:
        return tag is not None and tag.strip().lower() in self.placeholder_tags

    def identity_index(self) -> IdentityIndex:
        if self._identity_index is None:
            self._identity_index = IdentityIndex(self.records)
        return self._identity_index


class IdentityReconciler:
    """Applies upserts and cross-source matches to a ReconciliationContext."""

    def __init__(self, ctx: ReconciliationContext) -> None:
        self.ctx = ctx

    # ── Upsert ─────────────────────────────────────────────────────────

    def upsert(self, candidate: CandidateRecord) -> UpsertResult:
        """Reconcile one incoming record and record the outcome in run stats."""
        result = self._upsert(candidate)
        self.ctx.stats.record(result)
        return result

    def upsert_many(self, candidates: Iterable[CandidateRecord]) -> list[UpsertResult]:
        return [self.upsert(candidate) for candidate in candidates]

    def _upsert(self, candidate: CandidateRecord) -> UpsertResult:
        name = clean_guide_name(candidate.name)

        target = self.ctx.find_by_url(candidate.url)
        if target is not None:
            return self._merge(target, candidate, name, UpsertOutcome.UPDATED_BY_URL)

        # An explicit slug (alias canonical, unit file name) is kept as given
        slug = candidate.slug.strip().lower() if candidate.slug else derive_slug(name)
        if not normalize_slug(slug):
            self.ctx.stats.skipped_empty_key += 1
            logger.info("identity_rejected", name=candidate.name, reason="empty_key")
            return UpsertResult(outcome=UpsertOutcome.REJECTED, reason="empty_key")

        target = self.ctx.find_by_slug(slug)
        if target is not None:
            return self._merge(target, candidate, name, UpsertOutcome.UPDATED_BY_SLUG)

        return self._create(candidate, name, slug)

    def _create(self, candidate: CandidateRecord, name: str, slug: str) -> UpsertResult:
        if not candidate.url:
            reason = "missing_source_url"
        elif not self.ctx.is_authoritative_url(candidate.url):
            reason = "invalid_source_url"
        else:
            reason = ""

        if reason:
            logger.info(
                "identity_rejected",
                name=candidate.name,
                url=candidate.url,
                source=candidate.source,
                reason=reason,
            )
            return UpsertResult(outcome=UpsertOutcome.REJECTED, slug=slug, reason=reason)

        attributes = candidate.attributes.model_copy()
        if attributes.archive_id is None:
            attributes.archive_id = extract_archive_id(candidate.url)
        if attributes.tag is None:
            attributes.tag = self.ctx.default_tag

        record = CanonicalRecord(
            slug=slug,
            display_name=name or candidate.name.strip(),
            source_url=candidate.url,
            attributes=attributes,
            discovered_via=candidate.source,
            discovered_at=self.ctx.clock(),
        )
        self.ctx.add_record(record)
        logger.info("identity_created", slug=slug, url=candidate.url, source=candidate.source)
        return UpsertResult(
            outcome=UpsertOutcome.CREATED,
            slug=slug,
            filled_fields=sorted(attributes.populated()),
        )

    # ── Merge ──────────────────────────────────────────────────────────

    def _merge(
        self,
        target: CanonicalRecord,
        candidate: CandidateRecord,
        name: str,
        outcome: UpsertOutcome,
    ) -> UpsertResult:
        filled: list[str] = []
        conflicts: list[str] = []

        self._merge_source_url(target, candidate, filled, conflicts)

        # archive_id is only derived from a URL the target actually owns
        incoming = candidate.attributes.model_copy()
        if incoming.archive_id is None and candidate.url and candidate.url == target.source_url:
            incoming.archive_id = extract_archive_id(candidate.url)

        for attr in ATTRIBUTE_FIELDS:
            new_value = getattr(incoming, attr)
            current = getattr(target.attributes, attr)
            if new_value is None or new_value == current:
                continue
            if current is None:
                setattr(target.attributes, attr, new_value)
                filled.append(attr)
            elif (
                attr == "tag"
                and candidate.refresh
                and self.ctx.is_placeholder_tag(current)
                and not self.ctx.is_placeholder_tag(new_value)
            ):
                setattr(target.attributes, attr, new_value)
                filled.append(attr)
            else:
                conflicts.append(attr)

        self._tidy_display_name(target, name)

        alias_added = False
        if outcome is UpsertOutcome.UPDATED_BY_URL and name:
            same_name = normalize_search_key(name) == normalize_search_key(target.display_name)
            if not same_name and derive_slug(name) != target.slug:
                owner = self._other_identity_named(name, target)
                if owner is not None:
                    logger.warning(
                        "alias_skipped_known_identity",
                        alias=name,
                        slug=target.slug,
                        owner_slug=owner,
                    )
                else:
                    alias_added = self.ctx.aliases.register(name, target.slug, target.display_name)

        if conflicts:
            logger.debug(
                "merge_conflicts_kept_existing",
                slug=target.slug,
                fields=conflicts,
                source=candidate.source,
            )
        logger.debug("identity_merged", slug=target.slug, outcome=outcome.value, filled=filled)
        return UpsertResult(
            outcome=outcome,
            slug=target.slug,
            filled_fields=filled,
            conflicts=conflicts,
            alias_added=alias_added,
        )

    def _merge_source_url(
        self,
        target: CanonicalRecord,
        candidate: CandidateRecord,
        filled: list[str],
        conflicts: list[str],
    ) -> None:
        url = candidate.url
        if not url or url == target.source_url:
            return
        if target.source_url:
            conflicts.append("source_url")
            logger.warning(
                "source_url_conflict",
                slug=target.slug,
                existing=target.source_url,
                incoming=url,
            )
            return
        if not self.ctx.is_authoritative_url(url):
            return
        owner = self.ctx.find_by_url(url)
        if owner is not None and owner is not target:
            conflicts.append("source_url")
            return
        self.ctx.set_source_url(target, url)
        filled.append("source_url")

    def _other_identity_named(self, name: str, target: CanonicalRecord) -> str | None:
        """Slug of a different known identity whose name or slug is ``name``."""
        slug = self.ctx.identity_index().slug_for_name_key(normalize_search_key(name))
        if slug is not None and slug != target.slug:
            return slug
        owner = self.ctx.find_by_slug(derive_slug(name))
        if owner is not None and owner is not target:
            return owner.slug
        return None

    @staticmethod
    def _tidy_display_name(target: CanonicalRecord, name: str) -> None:
        """Strip guide suffixes from the stored name; never swap in another source's name."""
        if not target.display_name:
            target.display_name = name
            return
        cleaned = clean_guide_name(target.display_name)
        if cleaned and cleaned != target.display_name:
            logger.info("display_name_cleaned", slug=target.slug, before=target.display_name, after=cleaned)
            target.display_name = cleaned

    # ── Cross-source matching ──────────────────────────────────────────

    def resolve(
        self,
        candidate_name: str,
        candidate_slug_guess: str | None = None,
        source: str = "",
    ) -> MatchResult:
        """Match a foreign name; misses go to the unresolved worklist."""
        result = match_identity(
            candidate_name,
            candidate_slug_guess,
            self.ctx.identity_index(),
            self.ctx.aliases,
        )
        if result.matched:
            return result

        if result.reason == "empty_key":
            self.ctx.stats.skipped_empty_key += 1
            return result

        self.ctx.stats.unresolved += 1
        self._record_unresolved(result, source)
        return result

    def _record_unresolved(self, result: MatchResult, source: str) -> None:
        entry = UnresolvedEntry(
            source_name=result.candidate_name,
            source_slug_guess=result.candidate_slug,
            reason=result.reason,
            source=source,
            suggestion=suggest_identity(result.candidate_name, self.ctx.identity_index()),
            first_seen_at=self.ctx.clock(),
        )
        if any(existing.key == entry.key for existing in self.ctx.unresolved):
            return
        self.ctx.unresolved.append(entry)
        logger.info(
            "match_unresolved",
            name=entry.source_name,
            slug_guess=entry.source_slug_guess,
            suggestion=entry.suggestion,
            source=source,
        )

    def retry_unresolved(self) -> list[MatchResult]:
        """Explicit re-run of the worklist; entries that now match are consumed."""
        resolved: list[MatchResult] = []
        remaining: list[UnresolvedEntry] = []
        index = self.ctx.identity_index()

        for entry in self.ctx.unresolved:
            result = match_identity(
                entry.source_name, entry.source_slug_guess, index, self.ctx.aliases
            )
            if result.matched:
                resolved.append(result)
                logger.info(
                    "worklist_entry_resolved",
                    name=entry.source_name,
                    slug=result.slug,
                    tier=result.reason,
                )
            else:
                remaining.append(entry)

        self.ctx.unresolved[:] = remaining
        self.ctx.stats.resolved_from_worklist += len(resolved)
        return resolved
