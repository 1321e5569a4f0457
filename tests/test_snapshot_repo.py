"""Tests for herovault.repositories.snapshot_repo."""

from __future__ import annotations

import os

import pytest

from herovault.core.exceptions import SnapshotReadError, SnapshotWriteError
from herovault.repositories.snapshot_repo import Snapshot, SnapshotRepository
from herovault.schemas.alias import AliasGroup
from herovault.schemas.reconciliation import UnresolvedEntry
from tests.fixtures.heroes import archive_url, make_record, read_json, write_json


@pytest.fixture
def repo(settings) -> SnapshotRepository:
    return SnapshotRepository(settings)


class TestLoad:

    def test_missing_files_give_empty_snapshot(self, repo):
        snapshot = repo.load()
        assert snapshot.records == []
        assert snapshot.alias_groups == []
        assert snapshot.unresolved == []

    def test_rows_without_slug_get_derived_slug(self, repo, settings):
        write_json(
            settings.index_path,
            [
                {"name": "Fjorm: New Traditions", "url": archive_url(2001), "tier": "Tier: 8.5"},
                {"name": "Summer Tiki (Adult)", "url": archive_url(1002), "hero_slug": "summer_tiki__adult_"},
                {"name": "!!!", "url": ""},
                "not a row",
            ],
        )
        records = repo.load_records()

        assert [r.slug for r in records] == ["fjorm_new_traditions", "summer_tiki__adult_"]
        assert records[0].attributes.tier == 8.5
        assert records[0].discovered_via == "legacy_index"

    def test_unknown_row_keys_carried_through(self, repo, settings):
        write_json(
            settings.index_path,
            [{"name": "Hector", "url": archive_url(7), "hero_slug": "hector", "notes": "keep"}],
        )
        record = repo.load_records()[0]
        assert record.extra == {"notes": "keep"}
        assert record.to_row()["notes"] == "keep"

    def test_invalid_json_raises(self, repo, settings):
        settings.index_path.parent.mkdir(parents=True)
        settings.index_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotReadError):
            repo.load()

    def test_undecodable_index_raises(self, repo, settings):
        settings.index_path.parent.mkdir(parents=True)
        settings.index_path.write_bytes(b'[{"name": "\xff\xfe"}]')
        with pytest.raises(SnapshotReadError):
            repo.load()

    def test_index_must_be_a_list(self, repo, settings):
        write_json(settings.index_path, {"rows": []})
        with pytest.raises(SnapshotReadError):
            repo.load_records()

    def test_alias_table_structure_validated(self, repo, settings):
        write_json(settings.alias_path, {"entries": "oops"})
        with pytest.raises(SnapshotReadError):
            repo.load_alias_groups()

    def test_alias_and_worklist_files(self, repo, settings):
        write_json(
            settings.alias_path,
            {"entries": [{"aliases": ["Summer Tiki"], "canonical_name": "Summer Tiki (Adult)"}]},
        )
        write_json(
            settings.unresolved_path,
            {"updated_at": "x", "entries": [{"source_name": "Tiki Summering Scion"}]},
        )
        snapshot = repo.load()
        assert snapshot.alias_groups[0].aliases == ["Summer Tiki"]
        assert snapshot.unresolved[0].source_name == "Tiki Summering Scion"


class TestUnits:

    def test_load_unit(self, repo, settings):
        write_json(settings.units_path / "hector.json", {"name": "Hector", "url": archive_url(7)})
        (settings.units_path / "broken.json").write_text("{", encoding="utf-8")

        assert repo.load_unit("hector")["name"] == "Hector"
        assert repo.load_unit("broken") is None
        assert repo.load_unit("missing") is None
        assert repo.iter_unit_slugs() == ["broken", "hector"]

    def test_undecodable_unit_is_skipped(self, repo, settings):
        settings.units_path.mkdir(parents=True)
        (settings.units_path / "latin1.json").write_bytes(b'{"name": "Ren\xe9"}')

        assert repo.load_unit("latin1") is None
        assert repo.iter_unit_slugs() == ["latin1"]

    def test_no_units_dir(self, repo):
        assert repo.iter_unit_slugs() == []


class TestWrite:

    def test_writes_all_files(self, repo, settings):
        snapshot = Snapshot(
            records=[make_record("hector", "Hector", archive_url(7), tier=8.0)],
            alias_groups=[AliasGroup(aliases=["Ostia Lord"], canonical_name="Hector", canonical_slug="hector")],
            unresolved=[UnresolvedEntry(source_name="Tiki Summering Scion")],
        )
        repo.write(snapshot)

        rows = read_json(settings.index_path)
        assert rows[0]["hero_slug"] == "hector"
        assert rows[0]["url"] == archive_url(7)
        assert rows[0]["tier"] == 8.0
        assert read_json(settings.alias_path)["entries"][0]["aliases"] == ["Ostia Lord"]
        assert read_json(settings.unresolved_path)["entries"][0]["source_name"] == "Tiki Summering Scion"
        assert sorted(p.name for p in settings.db_root.iterdir()) == [
            "hero_aliases.json",
            "index.json",
            "unresolved.json",
        ]

    def test_failed_write_leaves_previous_files(self, repo, settings):
        write_json(settings.index_path, [{"name": "Hector", "hero_slug": "hector"}])
        before = settings.index_path.read_text(encoding="utf-8")

        broken = make_record("hector", "Hector")
        broken.extra["handle"] = object()
        with pytest.raises(SnapshotWriteError):
            repo.write(Snapshot(records=[broken]))

        assert settings.index_path.read_text(encoding="utf-8") == before
        assert not settings.alias_path.exists()
        assert [p.name for p in settings.db_root.iterdir()] == ["index.json"]

    def test_write_name_map(self, repo, settings):
        repo.write_name_map({"hector": "Hector General of Ostia"})
        assert read_json(settings.name_map_path) == {"hector": "Hector General of Ostia"}

    def test_interrupted_replace_keeps_earlier_files(self, repo, settings, monkeypatch):
        write_json(settings.index_path, [{"name": "Hector", "hero_slug": "hector"}])
        real_replace = os.replace
        calls = []

        def replace_once(src, dst):
            calls.append(dst)
            if len(calls) > 1:
                raise OSError("disk full")
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace_once)
        with pytest.raises(SnapshotWriteError):
            repo.write(Snapshot(records=[make_record("ike", "Ike")]))

        assert read_json(settings.index_path)[0]["hero_slug"] == "ike"
        assert not settings.alias_path.exists()
        assert sorted(p.name for p in settings.db_root.iterdir()) == ["index.json"]
