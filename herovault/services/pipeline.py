"""Reconciliation pipeline: one full run over the local data lake.

Stages, in order:
  1. Load snapshot (index, alias table, worklist)
  2. Tier-list refresh: upsert every scraped tier-list row
  3. Alias backfill: canonical identities named in the alias table but
     missing from the index are rebuilt from their unit files
  4. Archive seeding: explicit archive URLs are fetched and upserted
  5. Foreign names: names seen by another source are matched; misses
     land on the unresolved worklist
  6. Optional worklist retry
  7. Atomic snapshot write (skipped on dry runs) and report
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from herovault.config import Settings
from herovault.core.exceptions import HeroVaultError, SnapshotReadError
from herovault.core.logging import get_logger, pipeline_stage_var, run_id_var, source_var
from herovault.repositories.snapshot_repo import Snapshot, SnapshotRepository
from herovault.schemas.hero import CanonicalRecord, CandidateRecord, HeroAttributes, TierListRow
from herovault.schemas.reconciliation import (
    MatchResult,
    MatchTier,
    ReconciliationReport,
    UpsertResult,
)
from herovault.services.alias_registry import AliasRegistry
from herovault.services.archive_client import ARCHIVE_SOURCE, ArchiveClient
from herovault.services.legacy_extractor import LegacyExtractor
from herovault.services.name_matcher import IdentityIndex, match_identity
from herovault.services.normalization import (
    clean_guide_name,
    lookup_keys,
    normalize_search_key,
    normalize_slug,
    to_image_base,
)
from herovault.services.reconciler import IdentityReconciler, ReconciliationContext

logger = get_logger(__name__)

ALIAS_BACKFILL_SOURCE = "alias_canonical_backfill"
FOREIGN_NAME_SOURCE = "asset_wiki"


# ── Inputs ─────────────────────────────────────────────────────────────


def load_tier_list(path: str | Path) -> list[TierListRow]:
    """Read tier-list scraper output (a JSON list of rows)."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise SnapshotReadError(f"Cannot read tier list {path.name}: {e}", context={"path": str(path)}) from e
    if not isinstance(data, list):
        raise SnapshotReadError("Tier list must be a JSON list", context={"path": str(path)})

    rows: list[TierListRow] = []
    for position, item in enumerate(data):
        try:
            rows.append(TierListRow.model_validate(item))
        except ValidationError as e:
            logger.warning("tier_list_row_skipped", position=position, error=str(e))
    return rows


def load_name_list(path: str | Path) -> list[str]:
    """Read a JSON list of foreign names (strings, or objects with a ``name``)."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise SnapshotReadError(f"Cannot read name list {path.name}: {e}", context={"path": str(path)}) from e

    names: list[str] = []
    for item in data if isinstance(data, list) else []:
        name = item.get("name") if isinstance(item, dict) else item
        if isinstance(name, str) and name.strip():
            names.append(name.strip())
    return names


# ── Stages ─────────────────────────────────────────────────────────────


def refresh_from_tier_list(
    reconciler: IdentityReconciler, rows: Iterable[TierListRow]
) -> list[UpsertResult]:
    pipeline_stage_var.set("tier_list_refresh")
    source_var.set("tier_list")
    results = reconciler.upsert_many(row.to_candidate() for row in rows)
    logger.info("tier_list_refresh_completed", rows=len(results))
    return results


def candidate_from_unit(
    unit: dict[str, Any],
    slug: str,
    fallback_name: str,
    extractor: LegacyExtractor,
    ctx: ReconciliationContext,
) -> CandidateRecord | None:
    """Rebuild an identity candidate from a unit detail document.

    Structured unit fields win over values recovered from the guide prose.
    Returns None when the unit has no authoritative URL.
    """
    url = str(unit.get("url") or "").strip()
    if not ctx.is_authoritative_url(url):
        return None

    legacy = extractor.extract(unit.get("raw_text_data"))
    name = (
        clean_guide_name(unit.get("name"))
        or clean_guide_name(legacy.hero_name)
        or clean_guide_name(fallback_name)
        or slug
    )
    tag = unit.get("tag")
    if ctx.is_placeholder_tag(tag):
        tag = None

    attributes = HeroAttributes(
        tier=unit.get("tier") if unit.get("tier") is not None else legacy.tier,
        weapon=unit.get("weapon") or legacy.weapon,
        move=unit.get("move") or legacy.move,
        rarity=unit.get("rarity") or legacy.rarity,
        illustrator=unit.get("illustrator") or legacy.illustrator,
        img_url=unit.get("img_url"),
        tag=tag,
    )
    return CandidateRecord(
        name=name,
        url=url,
        slug=slug,
        attributes=attributes,
        source=str(unit.get("discovered_via") or ALIAS_BACKFILL_SOURCE),
    )


def backfill_alias_canonicals(
    reconciler: IdentityReconciler,
    repo: SnapshotRepository,
    extractor: LegacyExtractor,
) -> list[UpsertResult]:
    """Upsert alias-table canonicals that the index does not know yet."""
    pipeline_stage_var.set("alias_backfill")
    source_var.set(ALIAS_BACKFILL_SOURCE)
    ctx = reconciler.ctx
    results: list[UpsertResult] = []

    for slug in ctx.aliases.canonical_slugs():
        if ctx.find_by_slug(slug) is not None:
            continue
        group = ctx.aliases.group_for(slug)
        fallback_name = group.canonical_name if group else ""

        unit = repo.load_unit(slug)
        candidate = (
            candidate_from_unit(unit, slug, fallback_name, extractor, ctx) if unit else None
        )
        if candidate is None:
            ctx.stats.backfill_skipped += 1
            logger.info("alias_backfill_skipped", slug=slug, unit_found=unit is not None)
            continue
        results.append(reconciler.upsert(candidate))

    logger.info(
        "alias_backfill_completed",
        upserted=len(results),
        skipped=ctx.stats.backfill_skipped,
    )
    return results


async def seed_archive_urls(
    reconciler: IdentityReconciler,
    client: ArchiveClient,
    urls: Sequence[str],
) -> list[UpsertResult]:
    """Fetch each archive page and upsert it; failed URLs are skipped."""
    pipeline_stage_var.set("archive_seed")
    source_var.set(ARCHIVE_SOURCE)
    stats = reconciler.ctx.stats
    results: list[UpsertResult] = []

    for url in urls:
        stats.archives_requested += 1
        try:
            candidate = await client.fetch_candidate(url)
        except HeroVaultError as e:
            stats.archives_failed += 1
            logger.warning("archive_url_skipped", url=url, error=e.detail)
            continue
        result = reconciler.upsert(candidate)
        logger.info("archive_seeded", url=candidate.url, slug=result.slug, outcome=result.outcome.value)
        results.append(result)
    return results


def resolve_foreign_names(
    reconciler: IdentityReconciler,
    names: Iterable[str],
    source: str = FOREIGN_NAME_SOURCE,
) -> list[MatchResult]:
    pipeline_stage_var.set("foreign_names")
    source_var.set(source)
    results = [reconciler.resolve(name, None, source) for name in names]
    logger.info(
        "foreign_names_resolved",
        total=len(results),
        matched=sum(1 for r in results if r.matched),
    )
    return results


# ── Asset names ────────────────────────────────────────────────────────


@dataclass
class AssetNameMapping:
    """Slug -> asset base name, plus the identities that found no asset."""

    mapped: dict[str, str] = field(default_factory=dict)
    missing: list[CanonicalRecord] = field(default_factory=list)


def map_asset_names(
    records: Iterable[CanonicalRecord],
    asset_bases: Iterable[str],
    name_map: dict[str, str] | None = None,
    max_tier: MatchTier = MatchTier.EXACT_NAME,
) -> AssetNameMapping:
    """Map canonical identities onto the asset wiki's file base names.

    Order per identity: the generated name map, then lookup-key variants of
    the display name, then the name matcher up to ``max_tier``.
    """
    bases = list(asset_bases)
    base_by_key: dict[str, str] = {}
    for base in bases:
        key = normalize_search_key(base)
        if key:
            base_by_key.setdefault(key, base)

    known_bases = set(bases)
    base_records = [
        CanonicalRecord(slug=normalize_slug(base), display_name=base)
        for base in bases
        if normalize_slug(base)
    ]
    base_for_slug = {record.slug: record.display_name for record in base_records}
    index = IdentityIndex(base_records)

    mapping = AssetNameMapping()
    for record in records:
        mapped = (name_map or {}).get(record.slug)
        if mapped not in known_bases:
            mapped = next(
                (base_by_key[key] for key in lookup_keys(record.display_name) if key in base_by_key),
                None,
            )
        if mapped is None:
            match = match_identity(record.display_name, None, index)
            if match.matched and match.tier is not None and match.tier <= max_tier:
                mapped = base_for_slug[match.slug]

        if mapped is None:
            mapping.missing.append(record)
            logger.debug("asset_name_missing", slug=record.slug, name=record.display_name)
        else:
            mapping.mapped[record.slug] = mapped

    logger.info("asset_names_mapped", mapped=len(mapping.mapped), missing=len(mapping.missing))
    return mapping


def build_name_map(repo: SnapshotRepository, extractor: LegacyExtractor) -> tuple[dict[str, str], int]:
    """Slug -> asset base name from each unit's legacy hero name.

    Returns:
        (map sorted by slug, number of units skipped)
    """
    name_map: dict[str, str] = {}
    skipped = 0
    for slug in repo.iter_unit_slugs():
        unit = repo.load_unit(slug)
        hero_name = extractor.extract_field(unit.get("raw_text_data"), "hero_name") if unit else None
        if not hero_name:
            skipped += 1
            continue
        name_map[slug] = to_image_base(hero_name)
    return dict(sorted(name_map.items())), skipped


# ── Illustrator coverage ───────────────────────────────────────────────

_SOLO_WEAPONS = ("Sword", "Lance", "Axe", "Staff")
_COLORED_WEAPONS = ("Bow", "Dagger", "Tome", "Breath", "Beast")
HERO_WEAPON_TYPES = frozenset(
    [
        *_SOLO_WEAPONS,
        *_COLORED_WEAPONS,
        *(
            f"{color} {weapon}"
            for color in ("Red", "Blue", "Green", "Colorless")
            for weapon in _COLORED_WEAPONS
        ),
    ]
)
HERO_MOVE_TYPES = frozenset({"Infantry", "Armored", "Cavalry", "Flying"})


def is_likely_hero_unit(unit: dict[str, Any]) -> bool:
    """Unit documents for playable heroes, not scraped side pages."""
    if not str(unit.get("name") or "").strip():
        return False
    if not str(unit.get("url") or "").strip().lower().startswith(("http://", "https://")):
        return False
    if str(unit.get("tag") or "").strip() == "Legacy ID Snipe":
        return False
    return (
        str(unit.get("weapon") or "").strip() in HERO_WEAPON_TYPES
        and str(unit.get("move") or "").strip() in HERO_MOVE_TYPES
    )


@dataclass
class IllustratorCoverage:
    """How many unit files yield an illustrator under one rule set."""

    mode: str
    total: int = 0
    with_artist: int = 0
    missing: list[str] = field(default_factory=list)
    heroes_only: bool = False

    @property
    def evaluated(self) -> int:
        return self.with_artist + len(self.missing)

    @property
    def coverage_pct(self) -> float:
        if not self.evaluated:
            return 0.0
        return round(self.with_artist / self.evaluated * 100, 2)

    def to_dict(self, sample: int) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "total": self.total,
            "evaluated": self.evaluated,
            "heroes_only": self.heroes_only,
            "with_artist": self.with_artist,
            "without_artist": len(self.missing),
            "coverage_pct": self.coverage_pct,
            "sample_missing": self.missing[:sample],
        }


def illustrator_coverage(
    repo: SnapshotRepository,
    mode: str = "improved",
    heroes_only: bool = False,
    extractor: LegacyExtractor | None = None,
) -> IllustratorCoverage:
    """Audit illustrator extraction over every unit file.

    ``mode="legacy"`` runs only the pre-anchor pattern; ``"improved"`` runs
    the full rule set with its last-match policy. Unreadable units count as
    misses.
    """
    if mode == "legacy":
        extractor = LegacyExtractor.legacy_illustrator()
    else:
        extractor = extractor or LegacyExtractor.default()

    slugs = repo.iter_unit_slugs()
    coverage = IllustratorCoverage(mode=mode, total=len(slugs), heroes_only=heroes_only)
    for slug in slugs:
        unit = repo.load_unit(slug)
        if unit is not None and heroes_only and not is_likely_hero_unit(unit):
            continue
        artist = extractor.extract_field(unit.get("raw_text_data"), "illustrator") if unit else None
        if artist:
            coverage.with_artist += 1
        else:
            coverage.missing.append(slug)

    logger.info(
        "illustrator_coverage_measured",
        mode=mode,
        with_artist=coverage.with_artist,
        without_artist=len(coverage.missing),
    )
    return coverage


def classify_queries(
    records: Sequence[CanonicalRecord],
    aliases: AliasRegistry,
    queries: Iterable[str],
) -> list[tuple[str, str, CanonicalRecord | None]]:
    """Label each query FOUND, ALIAS, PARTIAL or MISS by the tier it matches at."""
    index = IdentityIndex(records)
    by_slug = {record.slug: record for record in records}
    labelled: list[tuple[str, str, CanonicalRecord | None]] = []
    for query in queries:
        result = match_identity(query, None, index, aliases)
        if result.tier in (MatchTier.EXACT_SLUG, MatchTier.EXACT_NAME):
            label = "FOUND"
        elif result.tier is MatchTier.ALIAS:
            label = "ALIAS"
        elif result.matched:
            label = "PARTIAL"
        else:
            label = "MISS"
        labelled.append((label, query, by_slug.get(result.slug) if result.slug else None))
    return labelled


# ── Run ────────────────────────────────────────────────────────────────


def build_report(ctx: ReconciliationContext, settings: Settings, dry_run: bool) -> ReconciliationReport:
    return ReconciliationReport(
        stats=ctx.stats,
        index_rows=len(ctx.records),
        alias_groups=len(ctx.aliases.to_groups()),
        worklist_size=len(ctx.unresolved),
        unresolved_sample=[
            entry.source_name for entry in ctx.unresolved[: settings.unresolved_sample_size]
        ],
        dry_run=dry_run,
    )


async def run_reconciliation(
    settings: Settings,
    *,
    tier_list: Sequence[TierListRow] = (),
    archive_urls: Sequence[str] = (),
    foreign_names: Sequence[str] = (),
    retry_unresolved: bool = False,
    dry_run: bool = False,
    repo: SnapshotRepository | None = None,
    archive_client: ArchiveClient | None = None,
    extractor: LegacyExtractor | None = None,
) -> ReconciliationReport:
    """Run every reconciliation stage over the snapshot and write it back.

    Raises:
        SnapshotReadError: The snapshot could not be loaded; nothing is written.
        SnapshotWriteError: The snapshot could not be written back.
    """
    run_id_var.set(uuid.uuid4().hex[:12])
    repo = repo or SnapshotRepository(settings)
    extractor = extractor or LegacyExtractor.default()

    pipeline_stage_var.set("load")
    snapshot = repo.load()
    ctx = ReconciliationContext.build(
        snapshot.records, snapshot.alias_groups, snapshot.unresolved, settings
    )
    reconciler = IdentityReconciler(ctx)

    if tier_list:
        refresh_from_tier_list(reconciler, tier_list)
    backfill_alias_canonicals(reconciler, repo, extractor)

    if archive_urls:
        client = archive_client or ArchiveClient(settings, extractor=extractor)
        try:
            await seed_archive_urls(reconciler, client, archive_urls)
        finally:
            if archive_client is None:
                await client.aclose()

    if foreign_names:
        resolve_foreign_names(reconciler, foreign_names)

    if retry_unresolved:
        source_var.set(None)
        pipeline_stage_var.set("worklist_retry")
        reconciler.retry_unresolved()

    source_var.set(None)
    pipeline_stage_var.set("write")
    if dry_run:
        logger.info("snapshot_write_skipped", reason="dry_run")
    else:
        repo.write(
            Snapshot(
                records=ctx.records,
                alias_groups=ctx.aliases.to_groups(),
                unresolved=ctx.unresolved,
            )
        )

    report = build_report(ctx, settings, dry_run)
    logger.info("reconciliation_completed", **ctx.stats.model_dump())
    return report
