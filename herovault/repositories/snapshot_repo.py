"""Snapshot repository for the local JSON data lake.

Reads the whole snapshot (index, alias table, unresolved worklist) at
the start of a run and writes it back at the end. Writes are staged:
every file is serialized to a temp file beside its target first, and
only then are the temp files moved into place with ``os.replace``.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from herovault.config import Settings
from herovault.core.exceptions import SnapshotReadError, SnapshotWriteError
from herovault.core.logging import get_logger
from herovault.schemas.alias import AliasFile, AliasGroup
from herovault.schemas.hero import CanonicalRecord, utc_now_iso
from herovault.schemas.reconciliation import UnresolvedEntry, UnresolvedFile
from herovault.services.normalization import derive_slug

logger = get_logger(__name__)


@dataclass
class Snapshot:
    """Everything the pipeline loads and writes back in one run."""

    records: list[CanonicalRecord] = field(default_factory=list)
    alias_groups: list[AliasGroup] = field(default_factory=list)
    unresolved: list[UnresolvedEntry] = field(default_factory=list)


class SnapshotRepository:
    """File-backed store for the hero index, alias table and worklist."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    # ── Reads ──────────────────────────────────────────────────────────

    @staticmethod
    def _read_json(path: Path, default: Any) -> Any:
        if not path.exists():
            logger.info("snapshot_file_missing", path=str(path))
            return default
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise SnapshotReadError(
                f"Cannot read {path.name}: {e}", context={"path": str(path)}
            ) from e

    def load_records(self) -> list[CanonicalRecord]:
        path = self.settings.index_path
        rows = self._read_json(path, [])
        if not isinstance(rows, list):
            raise SnapshotReadError(
                "Index must be a JSON list of rows", context={"path": str(path)}
            )

        records: list[CanonicalRecord] = []
        for position, row in enumerate(rows):
            if not isinstance(row, dict):
                logger.warning("index_row_skipped", position=position, reason="not_an_object")
                continue
            slug = str(row.get("hero_slug") or "").strip()
            if not slug:
                # Legacy rows predate hero_slug; the derived slug is assigned once here
                slug = derive_slug(row.get("name"))
                if not slug:
                    logger.warning("index_row_skipped", position=position, reason="empty_key")
                    continue
                logger.debug("index_slug_assigned", slug=slug, name=row.get("name"))
            records.append(CanonicalRecord.from_row(row, slug))
        return records

    def load_alias_groups(self) -> list[AliasGroup]:
        path = self.settings.alias_path
        data = self._read_json(path, {"entries": []})
        try:
            return AliasFile.model_validate(data).entries
        except ValidationError as e:
            raise SnapshotReadError(
                "Alias table has an invalid structure", context={"path": str(path)}
            ) from e

    def load_unresolved(self) -> list[UnresolvedEntry]:
        path = self.settings.unresolved_path
        data = self._read_json(path, {"entries": []})
        try:
            return UnresolvedFile.model_validate(data).entries
        except ValidationError as e:
            raise SnapshotReadError(
                "Unresolved worklist has an invalid structure", context={"path": str(path)}
            ) from e

    def load(self) -> Snapshot:
        snapshot = Snapshot(
            records=self.load_records(),
            alias_groups=self.load_alias_groups(),
            unresolved=self.load_unresolved(),
        )
        logger.info(
            "snapshot_loaded",
            records=len(snapshot.records),
            alias_groups=len(snapshot.alias_groups),
            unresolved=len(snapshot.unresolved),
        )
        return snapshot

    def load_unit(self, slug: str) -> dict[str, Any] | None:
        """Per-unit detail document, or None when absent or unreadable."""
        path = self.settings.units_path / f"{slug}.json"
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("unit_file_unreadable", slug=slug, error=str(e))
            return None
        return data if isinstance(data, dict) else None

    def iter_unit_slugs(self) -> list[str]:
        units = self.settings.units_path
        if not units.is_dir():
            return []
        return sorted(p.stem for p in units.glob("*.json"))

    # ── Writes ─────────────────────────────────────────────────────────

    def write(self, snapshot: Snapshot) -> None:
        """Write index, alias table and worklist; see ``_write_all`` for failure semantics."""
        unresolved = UnresolvedFile(updated_at=utc_now_iso(), entries=snapshot.unresolved)
        payloads: list[tuple[Path, Any]] = [
            (self.settings.index_path, [record.to_row() for record in snapshot.records]),
            (
                self.settings.alias_path,
                AliasFile(entries=snapshot.alias_groups).model_dump(mode="json"),
            ),
            (self.settings.unresolved_path, unresolved.model_dump(mode="json")),
        ]
        self._write_all(payloads)
        logger.info(
            "snapshot_written",
            records=len(snapshot.records),
            alias_groups=len(snapshot.alias_groups),
            unresolved=len(snapshot.unresolved),
        )

    def write_name_map(self, name_map: dict[str, str]) -> None:
        self._write_all([(self.settings.name_map_path, name_map)])
        logger.info("name_map_written", entries=len(name_map), path=str(self.settings.name_map_path))

    def _write_all(self, payloads: list[tuple[Path, Any]]) -> None:
        """Stage every payload, then move each into place.

        A serialization or staging failure leaves every target untouched.
        The replace step is atomic per file only: if ``os.replace`` fails
        part-way, files already replaced keep their new content.
        """
        staged: list[tuple[str, Path]] = []
        try:
            for path, data in payloads:
                staged.append((self._stage(path, data), path))
            for tmp_path, path in staged:
                os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            for tmp_path, _ in staged:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
            raise SnapshotWriteError(
                f"Snapshot write failed: {e}",
                context={"files": [str(path) for path, _ in payloads]},
            ) from e

    @staticmethod
    def _stage(path: Path, data: Any) -> str:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
        except BaseException:
            os.remove(tmp_path)
            raise
        return tmp_path
