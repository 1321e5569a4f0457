"""Tests for herovault.services.pipeline: full runs over a tmp data lake."""

from __future__ import annotations

import pytest

from herovault.core.exceptions import ArchiveFetchError, SnapshotReadError
from herovault.core.logging import source_var
from herovault.repositories.snapshot_repo import SnapshotRepository
from herovault.schemas.alias import AliasGroup
from herovault.schemas.hero import CandidateRecord, TierListRow
from herovault.schemas.reconciliation import MatchTier
from herovault.services.alias_registry import AliasRegistry
from herovault.services.archive_client import ARCHIVE_SOURCE
from herovault.services.legacy_extractor import LegacyExtractor
from herovault.services.pipeline import (
    backfill_alias_canonicals,
    build_name_map,
    classify_queries,
    illustrator_coverage,
    is_likely_hero_unit,
    load_name_list,
    load_tier_list,
    map_asset_names,
    resolve_foreign_names,
    run_reconciliation,
    seed_archive_urls,
)
from herovault.services.reconciler import IdentityReconciler, ReconciliationContext
from tests.fixtures.heroes import archive_url, guide_text, read_json, write_json


@pytest.fixture
def data_lake(settings):
    """Index with two heroes, an alias table naming a third, and its unit file."""
    write_json(
        settings.index_path,
        [
            {
                "name": "Summer Tiki (Adult)",
                "url": archive_url(1002),
                "hero_slug": "summer_tiki__adult_",
                "tag": "Old Hero",
            },
            {
                "name": "Marth - Enigmatic Blade",
                "url": archive_url(1003),
                "hero_slug": "marth_enigmatic_blade",
                "tier": 7,
            },
        ],
    )
    write_json(
        settings.alias_path,
        {
            "entries": [
                {
                    "aliases": ["NY Fjorm"],
                    "canonical_name": "Fjorm: New Traditions",
                    "canonical_slug": "fjorm_new_traditions",
                },
                {
                    "aliases": ["Ghost"],
                    "canonical_name": "Ghost Hero",
                    "canonical_slug": "ghost_hero",
                },
            ]
        },
    )
    write_json(
        settings.units_path / "fjorm_new_traditions.json",
        {
            "name": "Fjorm: New Traditions Builds",
            "url": archive_url(2001),
            "tag": "Legacy ID Snipe",
            "raw_text_data": guide_text("Fjorm - New Traditions", "Colorless / Bow / Infantry"),
        },
    )
    return settings


class TestRunReconciliation:

    async def test_full_run(self, data_lake):
        settings = data_lake
        report = await run_reconciliation(
            settings,
            tier_list=[
                TierListRow(name="Marth - Enigmatic Blade", url=archive_url(1003), tier="Tier: 3"),
                TierListRow(name="Scraped Fragment", url="https://example.com/x"),
            ],
            foreign_names=["Tiki Summering Scion", "Marth Enigmatic Blade"],
        )

        stats = report.stats
        assert stats.updated_by_url == 1
        assert stats.rejected == 1
        assert stats.created == 1
        assert stats.backfill_skipped == 1
        assert stats.unresolved == 1
        assert report.index_rows == 3
        assert report.unresolved_sample == ["Tiki Summering Scion"]

        rows = {row["hero_slug"]: row for row in read_json(settings.index_path)}
        fjorm = rows["fjorm_new_traditions"]
        assert fjorm["name"] == "Fjorm: New Traditions"
        assert fjorm["weapon"] == "Colorless Bow"
        assert fjorm["tag"] == "Old Hero"
        assert fjorm["tier"] == 8.5
        assert fjorm["illustrator"] == "Mayo"
        assert fjorm["discovered_via"] == "alias_canonical_backfill"
        assert rows["marth_enigmatic_blade"]["tier"] == 7.0

        worklist = read_json(settings.unresolved_path)["entries"]
        assert [e["source_name"] for e in worklist] == ["Tiki Summering Scion"]

    async def test_retry_after_alias_added(self, data_lake):
        settings = data_lake
        await run_reconciliation(settings, foreign_names=["Tiki Summering Scion"])

        aliases = read_json(settings.alias_path)
        aliases["entries"].append(
            {
                "aliases": ["Tiki Summering Scion"],
                "canonical_name": "Summer Tiki (Adult)",
                "canonical_slug": "summer_tiki__adult_",
            }
        )
        write_json(settings.alias_path, aliases)

        report = await run_reconciliation(settings, retry_unresolved=True)

        assert report.stats.resolved_from_worklist == 1
        assert report.worklist_size == 0
        assert read_json(settings.unresolved_path)["entries"] == []

    async def test_dry_run_writes_nothing(self, data_lake):
        settings = data_lake
        before = settings.index_path.read_text(encoding="utf-8")

        report = await run_reconciliation(settings, dry_run=True)

        assert report.dry_run is True
        assert report.stats.created == 1
        assert report.to_lines()[0] == "RECONCILE_DRY_RUN"
        assert settings.index_path.read_text(encoding="utf-8") == before
        assert not settings.unresolved_path.exists()


class _FakeArchiveClient:
    def __init__(self, pages: dict[str, CandidateRecord]) -> None:
        self.pages = pages

    async def fetch_candidate(self, url: str) -> CandidateRecord:
        if url not in self.pages:
            raise ArchiveFetchError(f"Fetching {url} failed", context={"url": url})
        return self.pages[url]


class TestArchiveSeeding:

    async def test_failed_url_skipped(self, settings):
        ctx = ReconciliationContext.build([], [], settings=settings)
        reconciler = IdentityReconciler(ctx)
        client = _FakeArchiveClient(
            {
                archive_url(2001): CandidateRecord(
                    name="Fjorm - New Traditions",
                    url=archive_url(2001),
                    source="archive_url_backfill",
                )
            }
        )

        results = await seed_archive_urls(reconciler, client, [archive_url(2001), archive_url(404)])

        assert [r.slug for r in results] == ["fjorm_new_traditions"]
        assert ctx.stats.archives_requested == 2
        assert ctx.stats.archives_failed == 1
        assert source_var.get() == ARCHIVE_SOURCE


class TestStages:

    def test_foreign_names_tag_log_source(self, reconciler):
        results = resolve_foreign_names(reconciler, ["Fjorm Princess of Ice"], source="asset_wiki")

        assert results[0].slug == "fjorm_princess_of_ice"
        assert source_var.get() == "asset_wiki"

    def test_backfill_keeps_legacy_canonical_slug(self, settings):
        group = AliasGroup(
            aliases=["Tiki Summering Scion"],
            canonical_name="Summer Tiki (Young)",
            canonical_slug="summer_tiki__young_",
        )
        write_json(
            settings.units_path / "summer_tiki__young_.json",
            {
                "name": "Summer Tiki (Young)",
                "url": archive_url(5001),
                "raw_text_data": guide_text("Tiki - Summering Scion"),
            },
        )
        ctx = ReconciliationContext.build([], [group], settings=settings)
        reconciler = IdentityReconciler(ctx)

        results = backfill_alias_canonicals(
            reconciler, SnapshotRepository(settings), LegacyExtractor.default()
        )

        assert [r.slug for r in results] == ["summer_tiki__young_"]
        assert ctx.find_by_slug("summer_tiki__young_") is not None
        assert source_var.get() == "alias_canonical_backfill"

        match = reconciler.resolve("Tiki Summering Scion")
        assert match.slug == "summer_tiki__young_"
        assert match.tier == MatchTier.ALIAS
        assert ctx.unresolved == []


class TestAssetNames:

    def test_lookup_keys_then_name_map(self, known_records):
        bases = ["Fjorm Princess of Ice", "Tiki Summering Scion", "Marth Enigmatic Blade"]

        without_map = map_asset_names(known_records, bases)
        assert without_map.mapped == {
            "fjorm_princess_of_ice": "Fjorm Princess of Ice",
            "marth_enigmatic_blade": "Marth Enigmatic Blade",
        }
        assert [r.slug for r in without_map.missing] == ["summer_tiki__adult_"]

        with_map = map_asset_names(
            known_records, bases, name_map={"summer_tiki__adult_": "Tiki Summering Scion"}
        )
        assert with_map.mapped["summer_tiki__adult_"] == "Tiki Summering Scion"
        assert with_map.missing == []

    def test_build_name_map(self, settings):
        write_json(
            settings.units_path / "summer_tiki__adult_.json",
            {"raw_text_data": guide_text("Tiki - Summering Scion")},
        )
        write_json(settings.units_path / "no_text.json", {"name": "No Text"})

        name_map, skipped = build_name_map(SnapshotRepository(settings), LegacyExtractor.default())

        assert name_map == {"summer_tiki__adult_": "Tiki Summering Scion"}
        assert skipped == 1

    def test_index_identities_checked_against_asset_list(self, data_lake, tmp_path):
        settings = data_lake
        write_json(
            settings.units_path / "summer_tiki__adult_.json",
            {"raw_text_data": guide_text("Tiki - Summering Scion")},
        )
        assets = tmp_path / "asset_names.json"
        write_json(assets, ["Tiki Summering Scion", "Alfonse Prince of Askr"])
        repo = SnapshotRepository(settings)

        name_map, _ = build_name_map(repo, LegacyExtractor.default())
        mapping = map_asset_names(repo.load_records(), load_name_list(assets), name_map=name_map)

        assert mapping.mapped == {"summer_tiki__adult_": "Tiki Summering Scion"}
        assert [r.slug for r in mapping.missing] == ["marth_enigmatic_blade"]


class TestIllustratorCoverage:

    @pytest.fixture
    def units(self, settings):
        write_json(
            settings.units_path / "alfonse.json",
            {
                "name": "Alfonse",
                "url": archive_url(3001),
                "weapon": "Sword",
                "move": "Infantry",
                "raw_text_data": "Illustrator: Hidari Distribution Date 2020",
            },
        )
        write_json(
            settings.units_path / "fjorm.json",
            {
                "name": "Fjorm",
                "url": archive_url(2001),
                "weapon": "Colorless Bow",
                "move": "Infantry",
                "raw_text_data": guide_text("Fjorm - New Traditions"),
            },
        )
        write_json(
            settings.units_path / "tier_list_page.json",
            {"name": "Tier List", "url": archive_url(9), "weapon": "Tier", "move": "List"},
        )
        return settings

    def test_improved_rules(self, units):
        coverage = illustrator_coverage(SnapshotRepository(units))

        assert coverage.total == 3
        assert coverage.with_artist == 2
        assert coverage.missing == ["tier_list_page"]
        assert coverage.coverage_pct == 66.67

    def test_legacy_pattern_misses_colon_form(self, units):
        coverage = illustrator_coverage(SnapshotRepository(units), mode="legacy")

        assert coverage.with_artist == 1
        assert coverage.missing == ["alfonse", "tier_list_page"]

    def test_heroes_only_skips_side_pages(self, units):
        coverage = illustrator_coverage(SnapshotRepository(units), heroes_only=True)
        report = coverage.to_dict(sample=5)

        assert report["total"] == 3
        assert report["evaluated"] == 2
        assert report["without_artist"] == 0
        assert report["coverage_pct"] == 100.0
        assert report["sample_missing"] == []

    def test_unreadable_unit_counts_as_missing(self, settings):
        settings.units_path.mkdir(parents=True)
        (settings.units_path / "broken.json").write_text("{", encoding="utf-8")

        report = illustrator_coverage(SnapshotRepository(settings)).to_dict(sample=0)

        assert report["without_artist"] == 1
        assert report["sample_missing"] == []

    @pytest.mark.parametrize(
        ("unit", "expected"),
        [
            ({"name": "Ike", "url": archive_url(1), "weapon": "Sword", "move": "Armored"}, True),
            ({"name": "Ike", "url": archive_url(1), "weapon": "Red Bow", "move": "Flying"}, True),
            ({"name": "Ike", "url": "/archives/1", "weapon": "Sword", "move": "Armored"}, False),
            ({"name": "", "url": archive_url(1), "weapon": "Sword", "move": "Armored"}, False),
            (
                {
                    "name": "Ike",
                    "url": archive_url(1),
                    "weapon": "Sword",
                    "move": "Armored",
                    "tag": "Legacy ID Snipe",
                },
                False,
            ),
            ({"name": "Ike", "url": archive_url(1), "weapon": "Red Sword", "move": "Armored"}, False),
        ],
    )
    def test_is_likely_hero_unit(self, unit, expected):
        assert is_likely_hero_unit(unit) is expected


class TestClassifyQueries:

    def test_labels(self, known_records):
        aliases = AliasRegistry.from_groups(
            [AliasGroup(aliases=["Tiki Summering Scion"], canonical_slug="summer_tiki__adult_")]
        )
        labelled = classify_queries(
            known_records,
            aliases,
            ["Fjorm Princess of Ice", "Tiki Summering Scion", "Fjorm", "Zelgius"],
        )
        assert [(label, query) for label, query, _ in labelled] == [
            ("FOUND", "Fjorm Princess of Ice"),
            ("ALIAS", "Tiki Summering Scion"),
            ("PARTIAL", "Fjorm"),
            ("MISS", "Zelgius"),
        ]
        assert labelled[1][2].display_name == "Summer Tiki (Adult)"


class TestInputs:

    def test_load_tier_list_skips_bad_rows(self, tmp_path):
        path = tmp_path / "tier_list.json"
        write_json(path, [{"name": "Hector", "url": archive_url(7)}, {"url": "no name"}])
        rows = load_tier_list(path)
        assert [row.name for row in rows] == ["Hector"]

    def test_load_name_list(self, tmp_path):
        path = tmp_path / "names.json"
        write_json(path, ["Tiki Summering Scion", {"name": "Hector"}, 3, "  "])
        assert load_name_list(path) == ["Tiki Summering Scion", "Hector"]

    @pytest.mark.parametrize("loader", [load_tier_list, load_name_list])
    def test_undecodable_input_raises(self, tmp_path, loader):
        path = tmp_path / "input.json"
        path.write_bytes(b'["Ren\xe9"]')
        with pytest.raises(SnapshotReadError):
            loader(path)
