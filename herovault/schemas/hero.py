"""Pydantic schemas for canonical hero identities.

A CanonicalRecord is one deduplicated game character. The persisted
index row layout is flat (``name``, ``url``, ``hero_slug`` ...) because
the web app reads ``index.json`` directly; ``from_row``/``to_row``
translate between the two shapes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Tier-list scrapes write these when a field was not shown on the card
_PLACEHOLDER_VALUES = frozenset({"", "unknown", "n/a", "none", "-"})

ATTRIBUTE_FIELDS: tuple[str, ...] = (
    "tier",
    "weapon",
    "move",
    "rarity",
    "tag",
    "archive_id",
    "img_url",
    "illustrator",
)

_ROW_KEYS = frozenset(
    {"name", "url", "hero_slug", "discovered_via", "discovered_at", *ATTRIBUTE_FIELDS}
)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class HeroAttributes(BaseModel):
    """Open-ended, independently nullable hero attributes."""

    tier: float | None = None
    weapon: str | None = None
    move: str | None = None
    rarity: str | None = None
    tag: str | None = None
    archive_id: int | None = None
    img_url: str | None = None
    illustrator: str | None = None

    @field_validator("weapon", "move", "rarity", "tag", "img_url", "illustrator", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        text = str(v).strip()
        if text.lower() in _PLACEHOLDER_VALUES:
            return None
        return text

    @field_validator("tier", mode="before")
    @classmethod
    def parse_tier(cls, v: Any) -> float | None:
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, int | float):
            return float(v)
        text = str(v).replace("Tier:", "").strip()
        try:
            return float(text)
        except ValueError:
            return None

    @field_validator("archive_id", mode="before")
    @classmethod
    def parse_archive_id(cls, v: Any) -> int | None:
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    def populated(self) -> dict[str, Any]:
        """Attributes that currently hold a value."""
        return {k: v for k, v in self.model_dump().items() if v is not None}


class CanonicalRecord(BaseModel):
    """One canonical identity per distinct game character."""

    slug: str = Field(..., min_length=1)
    display_name: str
    source_url: str | None = None
    attributes: HeroAttributes = Field(default_factory=HeroAttributes)
    discovered_via: str = "unknown"
    discovered_at: str = Field(default_factory=utc_now_iso)
    # Unrecognised row keys written by other tools; carried through untouched
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any], slug: str) -> CanonicalRecord:
        """Build a record from a flat ``index.json`` row.

        The slug is passed in explicitly so the caller decides how rows
        without a ``hero_slug`` get their one-time identity.
        """
        attributes = HeroAttributes.model_validate(
            {k: row.get(k) for k in ATTRIBUTE_FIELDS}
        )
        url = str(row.get("url") or "").strip() or None
        return cls(
            slug=slug,
            display_name=str(row.get("name") or "").strip(),
            source_url=url,
            attributes=attributes,
            discovered_via=str(row.get("discovered_via") or "legacy_index"),
            discovered_at=str(row.get("discovered_at") or utc_now_iso()),
            extra={k: v for k, v in row.items() if k not in _ROW_KEYS},
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the flat ``index.json`` row layout."""
        attrs = self.attributes
        row: dict[str, Any] = {
            "name": self.display_name,
            "url": self.source_url or "",
            "tier": attrs.tier,
            "img_url": attrs.img_url or "",
            "weapon": attrs.weapon,
            "move": attrs.move,
            "tag": attrs.tag,
            "hero_slug": self.slug,
            "rarity": attrs.rarity,
            "archive_id": attrs.archive_id,
            "illustrator": attrs.illustrator,
            "discovered_via": self.discovered_via,
            "discovered_at": self.discovered_at,
        }
        for key, value in self.extra.items():
            row.setdefault(key, value)
        return row


class CandidateRecord(BaseModel):
    """An incoming observation of a hero from one source."""

    name: str
    url: str | None = None
    slug: str | None = None  # explicit slug, e.g. an alias group's canonical_slug
    attributes: HeroAttributes = Field(default_factory=HeroAttributes)
    source: str = "unknown"
    refresh: bool = False  # refresh passes may replace placeholder tags

    @field_validator("url", "slug", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class TierListRow(BaseModel):
    """Row produced by the tier-list scraper."""

    name: str
    url: str | None = None
    tier: Any = None
    img_url: str | None = None
    weapon: str | None = None
    move: str | None = None
    tag: str | None = None

    def to_candidate(self, source: str = "tier_list") -> CandidateRecord:
        return CandidateRecord(
            name=self.name,
            url=self.url,
            attributes=HeroAttributes(
                tier=self.tier,
                img_url=self.img_url,
                weapon=self.weapon,
                move=self.move,
                tag=self.tag,
            ),
            source=source,
            refresh=True,
        )


class LegacyMetadata(BaseModel):
    """Fields recovered from scraped guide prose; every field may be missing."""

    hero_name: str | None = None
    weapon: str | None = None
    move: str | None = None
    tier: str | None = None
    rarity: str | None = None
    illustrator: str | None = None

    def to_attributes(self) -> HeroAttributes:
        return HeroAttributes(
            tier=self.tier,
            weapon=self.weapon,
            move=self.move,
            rarity=self.rarity,
            illustrator=self.illustrator,
        )
