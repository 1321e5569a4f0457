"""Pydantic schemas for the persisted alias table (``hero_aliases.json``)."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AliasEntry(BaseModel):
    """One alternate name pointing at a canonical slug (back-reference only)."""

    alias: str
    canonical_slug: str


class AliasGroup(BaseModel):
    """All aliases registered for one canonical identity."""

    aliases: list[str] = Field(default_factory=list)
    canonical_name: str = ""
    canonical_slug: str = ""

    def entries(self, canonical_slug: str) -> list[AliasEntry]:
        return [
            AliasEntry(alias=alias, canonical_slug=canonical_slug)
            for alias in self.aliases
            if alias.strip()
        ]


class AliasFile(BaseModel):
    """On-disk layout: ``{"entries": [...]}``."""

    entries: list[AliasGroup] = Field(default_factory=list)
