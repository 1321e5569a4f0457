"""Check how names from another source resolve against the index.

Usage:
    python scripts/validate_aliases.py "Fjorm New Traditions" "Tiki Summering Scion"

Prints FOUND / ALIAS / PARTIAL / MISS per query. Read-only.
"""

from __future__ import annotations

import argparse
import sys

from herovault.config import settings
from herovault.core.exceptions import HeroVaultError
from herovault.core.logging import setup_logging
from herovault.repositories.snapshot_repo import SnapshotRepository
from herovault.services.alias_registry import AliasRegistry
from herovault.services.pipeline import classify_queries

LABELS = ("FOUND", "ALIAS", "PARTIAL", "MISS")


def main() -> int:
    parser = argparse.ArgumentParser(description="HeroVault: validate name resolution")
    parser.add_argument("queries", nargs="+", help="Names to resolve")
    args = parser.parse_args()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    try:
        snapshot = SnapshotRepository(settings).load()
    except HeroVaultError as e:
        print(f"Error: {e.detail}")
        return e.exit_code

    aliases = AliasRegistry.from_groups(snapshot.alias_groups)
    labelled = classify_queries(snapshot.records, aliases, args.queries)

    for label in LABELS:
        rows = [row for row in labelled if row[0] == label]
        print(f"{label}_COUNT={len(rows)}")
        for _, query, record in rows:
            if record is None:
                print(f"{label} | {query}")
            else:
                print(f"{label} | {query} => {record.display_name} ({record.slug})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
