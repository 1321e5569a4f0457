"""Pydantic schemas for matching outcomes, the unresolved worklist and run stats."""

from __future__ import annotations

from enum import IntEnum, StrEnum

from pydantic import BaseModel, Field

from herovault.schemas.hero import utc_now_iso
from herovault.services.normalization import normalize_search_key, normalize_slug


class MatchTier(IntEnum):
    """Cross-source match tiers, in strict priority order."""

    EXACT_SLUG = 1
    EXACT_NAME = 2
    ALIAS = 3
    TOKEN_PREFIX = 4
    SUBSTRING = 5


class MatchResult(BaseModel):
    """Outcome of one cross-source match attempt."""

    candidate_name: str
    candidate_slug: str = ""
    slug: str | None = None
    tier: MatchTier | None = None
    reason: str = ""

    @property
    def matched(self) -> bool:
        return self.slug is not None


class UpsertOutcome(StrEnum):
    CREATED = "created"
    UPDATED_BY_URL = "updated_by_url"
    UPDATED_BY_SLUG = "updated_by_slug"
    REJECTED = "rejected"


class UpsertResult(BaseModel):
    """What the reconciler did with one incoming record."""

    outcome: UpsertOutcome
    slug: str | None = None
    filled_fields: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    alias_added: bool = False
    reason: str = ""


class UnresolvedEntry(BaseModel):
    """A failed cross-source match, kept for operator triage."""

    source_name: str
    source_slug_guess: str = ""
    reason: str = "no_match"
    source: str = ""
    suggestion: str | None = None  # closest known slug, never applied automatically
    first_seen_at: str = Field(default_factory=utc_now_iso)

    @property
    def key(self) -> tuple[str, str]:
        return (normalize_search_key(self.source_name), normalize_slug(self.source_slug_guess))


class UnresolvedFile(BaseModel):
    """On-disk layout of ``unresolved.json``."""

    updated_at: str = Field(default_factory=utc_now_iso)
    entries: list[UnresolvedEntry] = Field(default_factory=list)


class RunStats(BaseModel):
    """Per-run counters; the primary observable side effect for operators."""

    created: int = 0
    updated_by_url: int = 0
    updated_by_slug: int = 0
    rejected: int = 0
    unresolved: int = 0
    resolved_from_worklist: int = 0
    aliases_added: int = 0
    fields_filled: int = 0
    conflicts_kept: int = 0
    skipped_empty_key: int = 0
    backfill_skipped: int = 0
    archives_requested: int = 0
    archives_failed: int = 0

    def record(self, result: UpsertResult) -> None:
        match result.outcome:
            case UpsertOutcome.CREATED:
                self.created += 1
            case UpsertOutcome.UPDATED_BY_URL:
                self.updated_by_url += 1
            case UpsertOutcome.UPDATED_BY_SLUG:
                self.updated_by_slug += 1
            case UpsertOutcome.REJECTED:
                self.rejected += 1
        self.fields_filled += len(result.filled_fields)
        self.conflicts_kept += len(result.conflicts)
        if result.alias_added:
            self.aliases_added += 1


class ReconciliationReport(BaseModel):
    """Summary printed at the end of a run."""

    stats: RunStats
    index_rows: int
    alias_groups: int
    worklist_size: int
    unresolved_sample: list[str] = Field(default_factory=list)
    dry_run: bool = False

    def to_lines(self) -> list[str]:
        lines = ["RECONCILE_COMPLETE" if not self.dry_run else "RECONCILE_DRY_RUN"]
        lines.append(f"INDEX_ROWS={self.index_rows}")
        lines.append(f"ALIAS_GROUPS={self.alias_groups}")
        for key, value in self.stats.model_dump().items():
            lines.append(f"{key.upper()}={value}")
        lines.append(f"WORKLIST_SIZE={self.worklist_size}")
        for name in self.unresolved_sample:
            lines.append(f"UNRESOLVED | {name}")
        return lines
