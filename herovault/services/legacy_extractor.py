"""Legacy metadata extraction from scraped guide prose.

Older unit files only carry the guide body as plain text. This module
recovers hero name, weapon, move type, tier rating, rarity and
illustrator from fixed anchor phrases in that text.

Every field is best-effort:
- a missing anchor or a capture that fails validation yields None
- captures are cut at the first section heading that bleeds into them
- multi-candidate fields follow a per-field policy (first, last, all)

A false negative is always preferred over a false positive.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from herovault.core.logging import get_logger
from herovault.schemas.hero import LegacyMetadata
from herovault.services.normalization import clean_guide_name

logger = get_logger(__name__)

MAX_VALUE_LENGTH = 100
RARITY_WINDOW = 260

# Headings that follow a field on the guide page; a capture ends at the first one
SECTION_MARKERS: tuple[str, ...] = (
    "Appears In",
    "Illustration",
    "How to Get",
    r"Voice Actor(?:\s*\(English\))?",
    "Quotes?",
    "FEH:",
    "Related Guides",
    "Attire",
    "Distribution Date",
    "Starts",
    "Ends",
    r"Obtain(?:ed)? Through",
)
_MARKER_RE = re.compile(r"(?<!\w)(?:" + "|".join(SECTION_MARKERS) + r")(?!\w)")
_MARKER_ALT = "|".join(SECTION_MARKERS)

STOPWORDS = frozenset({"information", "unknown", "none", "n/a", "na", "tba"})

# "last": later bylines in guide prose are usually the real credit, earlier
# ones tend to be quoted from related units. Tunable, not proven.
FIELD_POLICY: dict[str, str] = {
    "hero_name": "first",
    "weapon": "first",
    "move": "first",
    "tier": "first",
    "rarity": "all",
    "illustrator": "last",
}

_COLORLESS_WEAPONS = {
    "bow": "Colorless Bow",
    "dagger": "Colorless Dagger",
    "tome": "Colorless Tome",
    "staff": "Colorless Staff",
    "breath": "Colorless Breath",
    "dragon": "Colorless Breath",
    "beast": "Colorless Beast",
}

_MOVE_TYPES = {"infantry": "Infantry", "armored": "Armored", "cavalry": "Cavalry", "flying": "Flying"}


@dataclass
class ExtractionRule:
    """A named anchor-phrase pattern feeding one metadata field."""

    name: str
    field: str
    pattern: re.Pattern[str]
    groups: tuple[int, ...] = (1,)
    fallback: bool = False  # only consulted when no primary rule yields a value


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_WEAPON_MOVE = (
    r"Color\s*/\s*Weapon Type\s*/\s*Move Type\s+[^/\n]+\s*/\s*([^/\n]+?)\s*/\s*"
    r"(Infantry|Armored|Cavalry|Flying)"
)


def default_rules() -> list[ExtractionRule]:
    """Built-in rules, in evaluation order."""
    return [
        ExtractionRule(
            name="ranking_page_hero",
            field="hero_name",
            pattern=_compile(
                r"This is a ranking page for the hero\s+([^.]+?)\s+from the game Fire Emblem Heroes"
            ),
        ),
        ExtractionRule(name="weapon_type", field="weapon", pattern=_compile(_WEAPON_MOVE)),
        ExtractionRule(
            name="move_type", field="move", pattern=_compile(_WEAPON_MOVE), groups=(2,)
        ),
        ExtractionRule(
            name="overall_rating",
            field="tier",
            pattern=_compile(r"Overall Rating\s*([0-9]+(?:\.[0-9]+)?)\s*/\s*10"),
        ),
        ExtractionRule(
            name="rarity_stars",
            field="rarity",
            pattern=_compile(r"(?<![\d.])([1-5](?:\.5)?)\s*(?:★|star)"),
        ),
        ExtractionRule(
            name="illustrator_after_voice_actor",
            field="illustrator",
            pattern=_compile(
                r"Voice Actor(?:\s*\(English\))?\s+.{1,120}?\s+Illustrator\s*[:：\-]?\s*"
                rf"(.{{1,140}}?)(?=\s+(?:{_MARKER_ALT})|$)"
            ),
        ),
        ExtractionRule(
            name="illustrator_labeled",
            field="illustrator",
            pattern=_compile(
                rf"Illustrator\s*[:：\-]?\s*(.{{1,160}}?)(?=\s+(?:{_MARKER_ALT})|$)"
            ),
        ),
        ExtractionRule(
            name="illustrator_legacy",
            field="illustrator",
            pattern=_compile(r"Illustrator\s+([A-Za-z0-9'’().,&\- ]{2,140})"),
            fallback=True,
        ),
    ]


def compact_text(raw: str | None) -> str:
    """Collapse whitespace and pull punctuation back onto the preceding word."""
    text = re.sub(r"\s+", " ", str(raw or ""))
    return re.sub(r"\s([,.!?;:])", r"\1", text).strip()


def truncate_at_section_marker(value: str) -> str:
    match = _MARKER_RE.search(value)
    return value[: match.start()] if match else value


def clean_span(value: str | None) -> str | None:
    """Generic cleanup + rejection shared by every free-text field."""
    candidate = re.sub(r"\s+", " ", str(value or ""))
    candidate = re.sub(r"^[\s:：\-–—|]+", "", candidate)
    candidate = truncate_at_section_marker(candidate)
    candidate = re.sub(r"\s*\([^)]*$", "", candidate)  # unclosed parenthesis
    candidate = re.sub(r"[|•]+$", "", candidate).strip()

    if not candidate:
        return None
    if len(candidate) > MAX_VALUE_LENGTH:
        return None
    if not any(ch.isalnum() for ch in candidate):
        return None
    if any(token in STOPWORDS for token in candidate.lower().split()):
        return None
    return candidate


def normalize_legacy_weapon(value: str | None) -> str | None:
    cleaned = clean_span(value)
    if cleaned is None:
        return None
    return _COLORLESS_WEAPONS.get(cleaned.lower(), cleaned)


def normalize_rarity_tokens(tokens: list[str]) -> str | None:
    """"4.5" means the 4★/5★ pair; result is sorted unique stars joined by "/"."""
    stars: set[int] = set()
    for token in tokens:
        value = token.strip()
        if value == "4.5":
            stars.update((4, 5))
            continue
        try:
            parsed = int(float(value))
        except ValueError:
            continue
        if 1 <= parsed <= 5:
            stars.add(parsed)
    return "/".join(str(s) for s in sorted(stars)) or None


def _clean_hero_name(value: str) -> str | None:
    return clean_span(clean_guide_name(html.unescape(value)))


def _clean_move(value: str) -> str | None:
    return _MOVE_TYPES.get(value.strip().lower())


def _clean_tier(value: str) -> str | None:
    try:
        rating = float(value)
    except ValueError:
        return None
    if not 0 <= rating <= 10:
        return None
    return value.strip()


_CLEANERS = {
    "hero_name": _clean_hero_name,
    "weapon": normalize_legacy_weapon,
    "move": _clean_move,
    "tier": _clean_tier,
    "illustrator": clean_span,
}


@dataclass
class LegacyExtractor:
    """Applies named extraction rules to guide text.

    Rules are grouped by field and evaluated in declaration order; the
    field policy picks which candidate wins.
    """

    rules: list[ExtractionRule] = field(default_factory=list)

    @classmethod
    def default(cls) -> LegacyExtractor:
        return cls(rules=default_rules())

    @classmethod
    def legacy_illustrator(cls) -> LegacyExtractor:
        """Only the pre-anchor illustrator pattern, as the primary rule.

        Used to compare illustrator coverage against the anchored rules.
        """
        return cls(
            rules=[
                replace(rule, fallback=False)
                for rule in default_rules()
                if rule.name == "illustrator_legacy"
            ]
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> LegacyExtractor:
        """Load rule overrides from YAML on top of the defaults.

        A rule with a default rule's name replaces it; new names are appended.

        Args:
            yaml_path: File with a ``legacy_rules`` mapping of
                name -> {field, pattern, groups, fallback}.
        """
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        rules = {rule.name: rule for rule in default_rules()}
        for name, rule_def in (data.get("legacy_rules") or {}).items():
            if rule_def.get("field") not in FIELD_POLICY:
                logger.warning("legacy_rule_unknown_field", rule=name, field=rule_def.get("field"))
                continue
            try:
                compiled = re.compile(rule_def["pattern"], re.IGNORECASE)
            except re.error as e:
                logger.warning("legacy_rule_compile_failed", rule=name, error=str(e))
                continue
            rules[name] = ExtractionRule(
                name=name,
                field=rule_def["field"],
                pattern=compiled,
                groups=tuple(rule_def.get("groups", [1])),
                fallback=bool(rule_def.get("fallback", False)),
            )

        logger.info("legacy_rules_loaded", count=len(rules), source=str(yaml_path))
        return cls(rules=list(rules.values()))

    def _candidates(self, text: str, field_name: str, fallback: bool) -> list[str]:
        values: list[str] = []
        for rule in self.rules:
            if rule.field != field_name or rule.fallback != fallback:
                continue
            for match in rule.pattern.finditer(text):
                for group in rule.groups:
                    try:
                        value = match.group(group)
                    except IndexError:
                        continue
                    if value:
                        values.append(value)
        return values

    def _pick(self, candidates: list[str], field_name: str) -> str | None:
        cleaner = _CLEANERS[field_name]
        ordered = reversed(candidates) if FIELD_POLICY[field_name] == "last" else candidates
        for candidate in ordered:
            cleaned = cleaner(candidate)
            if cleaned:
                return cleaned
        return None

    def extract_field(self, raw_text: str | None, field_name: str) -> str | None:
        """Extract a single field, or None."""
        text = compact_text(raw_text)
        if not text:
            return None
        if field_name == "rarity":
            return self._extract_rarity(text)

        for fallback in (False, True):
            value = self._pick(self._candidates(text, field_name, fallback), field_name)
            if value is not None:
                return value
        return None

    def _extract_rarity(self, text: str) -> str | None:
        """Prefer star mentions shortly after the word "rarity", else the page head."""
        lower = text.lower()
        index = lower.find(" rarity ")
        if index >= 0:
            windowed = normalize_rarity_tokens(
                self._candidates(text[index : index + RARITY_WINDOW], "rarity", False)
            )
            if windowed:
                return windowed
        return normalize_rarity_tokens(self._candidates(text[:RARITY_WINDOW], "rarity", False))

    def extract(self, raw_text: str | None) -> LegacyMetadata:
        """Extract every known field; missing ones stay None."""
        if not raw_text:
            return LegacyMetadata()

        values = {name: self.extract_field(raw_text, name) for name in FIELD_POLICY}
        metadata = LegacyMetadata(**values)
        logger.debug(
            "legacy_extraction_completed",
            found=sorted(k for k, v in values.items() if v is not None),
        )
        return metadata
