"""Shared test fixtures for HeroVault tests.

Provides a throwaway data lake under tmp_path and small canonical
identity sets for the matcher and reconciler.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from herovault.config import Settings
from herovault.schemas.hero import CanonicalRecord
from herovault.services.reconciler import IdentityReconciler, ReconciliationContext
from tests.fixtures.heroes import FIXED_NOW, archive_url, make_record

# -- Settings / data lake ------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at an empty data lake under tmp_path."""
    return Settings(db_root=tmp_path / "db", http_retry_wait=0)


# -- Canonical identities -------------------------------------------------


@pytest.fixture
def known_records() -> list[CanonicalRecord]:
    """Three identities, one with a legacy double-underscore slug."""
    return [
        make_record(
            "fjorm_princess_of_ice",
            "Fjorm - Princess of Ice",
            archive_url(1001),
            tag="Old Hero",
        ),
        make_record("summer_tiki__adult_", "Summer Tiki (Adult)", archive_url(1002)),
        make_record(
            "marth_enigmatic_blade",
            "Marth - Enigmatic Blade",
            archive_url(1003),
            tier=7.0,
            tag="Legendary",
        ),
    ]


@pytest.fixture
def ctx(known_records: list[CanonicalRecord], settings: Settings) -> ReconciliationContext:
    context = ReconciliationContext.build(known_records, [], settings=settings)
    context.clock = lambda: FIXED_NOW
    return context


@pytest.fixture
def reconciler(ctx: ReconciliationContext) -> IdentityReconciler:
    return IdentityReconciler(ctx)
