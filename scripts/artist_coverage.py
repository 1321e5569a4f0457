"""Report how many unit files yield an illustrator credit.

Compares the pre-anchor legacy pattern with the anchored rule set, to check
the last-match policy before changing it.

Usage:
    python scripts/artist_coverage.py                      # Anchored rules
    python scripts/artist_coverage.py --mode legacy        # Legacy pattern only
    python scripts/artist_coverage.py --heroes-only --sample 50
    python scripts/artist_coverage.py --json
"""

from __future__ import annotations

import argparse
import json
import sys

from herovault.config import settings
from herovault.core.logging import setup_logging
from herovault.repositories.snapshot_repo import SnapshotRepository
from herovault.services.pipeline import illustrator_coverage


def main() -> int:
    parser = argparse.ArgumentParser(description="HeroVault: illustrator extraction coverage")
    parser.add_argument("--mode", choices=("improved", "legacy"), default="improved")
    parser.add_argument("--sample", type=int, default=20, help="Missing slugs to list")
    parser.add_argument(
        "--heroes-only",
        action="store_true",
        help="Skip units without a hero URL and a valid weapon/move pair",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    if not settings.units_path.is_dir():
        print(f"Units directory not found: {settings.units_path}")
        return 1

    coverage = illustrator_coverage(
        SnapshotRepository(settings), mode=args.mode, heroes_only=args.heroes_only
    )
    report = coverage.to_dict(max(args.sample, 0))

    if args.json:
        print(json.dumps(report, indent=2))
        return 0

    for key in ("mode", "total", "evaluated", "with_artist", "without_artist", "coverage_pct"):
        print(f"{key}={report[key]}")
    if report["sample_missing"]:
        print(f"sample_missing={','.join(report['sample_missing'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
