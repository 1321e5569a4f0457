"""Custom exception hierarchy for HeroVault.

Only whole-run infrastructure failures are raised. Per-record problems
(empty keys, extraction misses, unmatched names, rejected identities)
are counted in run statistics instead.

Hierarchy:
    HeroVaultError (base)
    +-- SnapshotError
    |   +-- SnapshotReadError      -> run aborts before any write
    |   +-- SnapshotWriteError     -> prior snapshot left in place
    +-- ArchiveFetchError          -> archive URL skipped
    +-- InvalidSourceUrlError      -> archive URL skipped
"""

from __future__ import annotations


class HeroVaultError(Exception):
    """Base exception for all HeroVault errors."""

    exit_code: int = 1
    detail: str = "Internal error"

    def __init__(self, detail: str | None = None, *, context: dict[str, object] | None = None):
        self.detail = detail or self.__class__.detail
        self.context = context or {}
        super().__init__(self.detail)


class SnapshotError(HeroVaultError):
    """Persisted snapshot could not be read or written."""

    exit_code = 2
    detail = "Snapshot I/O failed"


class SnapshotReadError(SnapshotError):
    """Snapshot file missing a required structure or not valid JSON."""

    detail = "Snapshot could not be read"


class SnapshotWriteError(SnapshotError):
    """Snapshot could not be written back."""

    detail = "Snapshot could not be written"


class ArchiveFetchError(HeroVaultError):
    """Archive page could not be fetched."""

    exit_code = 3
    detail = "Archive fetch failed"


class InvalidSourceUrlError(HeroVaultError):
    """URL does not match the authoritative source pattern."""

    detail = "Invalid source URL"
