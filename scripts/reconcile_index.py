"""Reconcile the hero index against every identity source.

Usage:
    python scripts/reconcile_index.py                                  # Alias backfill only
    python scripts/reconcile_index.py --tier-list db/tier_list.json    # + tier-list refresh
    python scripts/reconcile_index.py --archive-url https://game8.co/games/fire-emblem-heroes/archives/123456
    python scripts/reconcile_index.py --foreign-names db/asset_names.json --retry-unresolved
    python scripts/reconcile_index.py --dry-run                        # Report only, write nothing

Reads HEROVAULT_* settings from the environment / .env. The report goes to
stdout, logs to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from herovault.config import Settings, settings
from herovault.core.exceptions import HeroVaultError
from herovault.core.logging import get_logger, setup_logging
from herovault.services.legacy_extractor import LegacyExtractor
from herovault.services.pipeline import load_name_list, load_tier_list, run_reconciliation


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HeroVault: reconcile the hero index")
    parser.add_argument("--tier-list", help="Tier-list scraper output (JSON list of rows)")
    parser.add_argument(
        "--archive-url",
        action="append",
        default=[],
        help="Archive page to seed as an identity (repeatable)",
    )
    parser.add_argument(
        "--foreign-names",
        help="JSON list of names from another source to match against the index",
    )
    parser.add_argument(
        "--retry-unresolved",
        action="store_true",
        help="Re-run the unresolved worklist against the current index and aliases",
    )
    parser.add_argument("--rules", help="YAML file with legacy extraction rule overrides")
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, run_settings: Settings) -> int:
    logger = get_logger(__name__)
    try:
        tier_list = load_tier_list(args.tier_list) if args.tier_list else []
        foreign_names = load_name_list(args.foreign_names) if args.foreign_names else []
        extractor = LegacyExtractor.from_yaml(args.rules) if args.rules else None
        report = await run_reconciliation(
            run_settings,
            tier_list=tier_list,
            archive_urls=args.archive_url,
            foreign_names=foreign_names,
            retry_unresolved=args.retry_unresolved,
            dry_run=args.dry_run,
            extractor=extractor,
        )
    except HeroVaultError as e:
        logger.error("reconcile_failed", error=e.detail, **e.context)
        print(f"RECONCILE_ERROR={e.detail}")
        return e.exit_code

    for line in report.to_lines():
        print(line)
    return 0


def main() -> None:
    args = parse_args()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
