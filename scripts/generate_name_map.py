"""Generate the slug -> asset image base name map.

Reads every unit file under ``<db_root>/units`` and maps its slug to the
hero name the guide text states, in the asset wiki's "First Epithet"
form. Seasonal heroes whose slugs never fuzzy-match their asset names
(e.g. ``summer_tiki__adult_`` vs "Tiki Summering Scion") resolve through
this map.

With ``--asset-names`` the map is checked against a list of asset base
names: every index identity is mapped and the ones without an asset are
printed.

Usage:
    python scripts/generate_name_map.py
    python scripts/generate_name_map.py --asset-names data/asset_names.json
"""

from __future__ import annotations

import argparse
import sys

from herovault.config import settings
from herovault.core.exceptions import HeroVaultError
from herovault.core.logging import get_logger, setup_logging
from herovault.repositories.snapshot_repo import SnapshotRepository
from herovault.services.legacy_extractor import LegacyExtractor
from herovault.services.pipeline import build_name_map, load_name_list, map_asset_names


def main() -> int:
    parser = argparse.ArgumentParser(description="HeroVault: generate the asset name map")
    parser.add_argument(
        "--asset-names",
        metavar="FILE",
        help="JSON list of asset base names; report index identities with no asset",
    )
    args = parser.parse_args()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger = get_logger(__name__)

    if not settings.units_path.is_dir():
        print(f"Units directory not found: {settings.units_path}")
        return 1

    repo = SnapshotRepository(settings)
    name_map, skipped = build_name_map(repo, LegacyExtractor.default())
    try:
        repo.write_name_map(name_map)
        if args.asset_names:
            mapping = map_asset_names(
                repo.load_records(), load_name_list(args.asset_names), name_map=name_map
            )
    except HeroVaultError as e:
        logger.error("name_map_failed", error=e.detail, **e.context)
        print(f"Error: {e.detail}")
        return e.exit_code

    print(f"Done. {len(name_map)} entries written to {settings.name_map_path}")
    print(f"      {skipped} units skipped (no hero name in guide text).")

    if args.asset_names:
        print(f"Assets: {len(mapping.mapped)} identities mapped, {len(mapping.missing)} missing.")
        for record in mapping.missing:
            print(f"  MISSING | {record.display_name} ({record.slug})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
