"""Canonical-key functions for hero names and slugs.

Two canonical forms are derived from raw text:
  Search key: "naga s voice"  (matching, typeahead, alias lookup)
  Slug:       "naga_s_voice"  (persisted identity key, file/URL safe)

All functions are pure. Empty or punctuation-only input yields an empty
string, and an empty key never identifies anything.
"""

from __future__ import annotations

import html
import re
import unicodedata

# Letters NFKD does not decompose into an ASCII base
_TRANSLITERATIONS = str.maketrans(
    {
        "ð": "d",
        "Ð": "d",
        "þ": "th",
        "Þ": "th",
        "æ": "ae",
        "Æ": "ae",
        "œ": "oe",
        "Œ": "oe",
        "ø": "o",
        "Ø": "o",
        "ł": "l",
        "Ł": "l",
    }
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")
_DASH_RE = re.compile(r"[\u2010-\u2015\u2212]")
_COLON_SEPARATOR_RE = re.compile(r"\s*:\s*")
_APOSTROPHE_RE = re.compile(r"['`\u00b4\u2018\u2019\u02bc]")
_SPACED_DASH_RE = re.compile(r"\s+-\s+")
_PARENTHESISED_RE = re.compile(r"\([^)]*\)")
_GENDER_TOKEN_RE = re.compile(r"\b(female|male|f|m)\b", re.IGNORECASE)
_ARCHIVE_ID_RE = re.compile(r"/archives/(\d+)", re.IGNORECASE)

# Guide page titles append these to the hero name
_GUIDE_SUFFIX_RES = (
    re.compile(r"\s+Builds?\s+and\s+Best\s+Refine\b", re.IGNORECASE),
    re.compile(r"\s+Best\s+Builds?\b", re.IGNORECASE),
    re.compile(r"\s+Builds?\b", re.IGNORECASE),
)


def _fold(text: str) -> str:
    """Transliterate, strip diacritics and lowercase."""
    transliterated = str(text or "").translate(_TRANSLITERATIONS)
    decomposed = unicodedata.normalize("NFKD", transliterated)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower()


def normalize_search_key(text: str | None) -> str:
    """Normalize a name for comparison.

    Lowercases, transliterates, strips diacritics, collapses every
    non-alphanumeric run to a single space.
    """
    if not text:
        return ""
    return _NON_ALNUM_RE.sub(" ", _fold(text)).strip()


def normalize_slug(text: str | None) -> str:
    """Normalize text to the persisted slug form (idempotent)."""
    if not text:
        return ""
    return _NON_ALNUM_RE.sub("_", _fold(text)).strip("_")


def normalize_display_name(text: str | None) -> str:
    """Clean a display name so differently-quoted titles collapse together.

    "Fjorm: New Traditions" and "Fjorm – New Traditions" both become
    "Fjorm - New Traditions"; possessive apostrophes are dropped.
    """
    if not text:
        return ""
    value = _WHITESPACE_RE.sub(" ", str(text)).strip()
    value = _DASH_RE.sub("-", value)
    value = _COLON_SEPARATOR_RE.sub(" - ", value)
    value = _APOSTROPHE_RE.sub("", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


def derive_slug(name: str | None) -> str:
    """Slug assigned to a new identity. Only ever called once per identity."""
    return normalize_slug(normalize_display_name(name))


def clean_guide_name(name: str | None) -> str:
    """Strip guide-title suffixes ("Builds and Best Refine", "Best Builds", "Builds")."""
    value = html.unescape(_WHITESPACE_RE.sub(" ", str(name or ""))).strip()
    for pattern in _GUIDE_SUFFIX_RES:
        value = pattern.sub("", value)
    return _WHITESPACE_RE.sub(" ", value).strip()


def to_image_base(name: str | None) -> str:
    """Convert "First - Epithet" to the asset wiki's "First Epithet" file base."""
    return _SPACED_DASH_RE.sub(" ", str(name or "")).strip()


def lookup_keys(name: str | None) -> list[str]:
    """Search-key variants for asset-name lookup.

    As-is, without parenthesised qualifiers, and without gender tokens,
    in that order and without duplicates.
    """
    keys: list[str] = []

    def push(value: str) -> None:
        key = normalize_search_key(value)
        if key and key not in keys:
            keys.append(key)

    raw = str(name or "")
    push(raw)
    no_parens = _PARENTHESISED_RE.sub(" ", raw)
    push(no_parens)
    push(_GENDER_TOKEN_RE.sub(" ", no_parens))
    return keys


def extract_archive_id(url: str | None) -> int | None:
    match = _ARCHIVE_ID_RE.search(str(url or ""))
    return int(match.group(1)) if match else None
