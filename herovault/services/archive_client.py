"""Archive page client: fetch a guide archive page and turn it into a candidate.

Used to seed identities the tier-list scrape never listed. The HTML is
reduced to plain text and run through the same legacy extractor as the
unit files, so a seeded identity carries whatever metadata the page
states and nothing more.
"""

from __future__ import annotations

import html
import re

import httpx

from herovault.config import Settings
from herovault.core.exceptions import ArchiveFetchError, InvalidSourceUrlError
from herovault.core.logging import get_logger
from herovault.core.resilience import retry_http_fetch
from herovault.schemas.hero import CandidateRecord
from herovault.services.legacy_extractor import LegacyExtractor
from herovault.services.normalization import clean_guide_name, derive_slug, extract_archive_id

logger = get_logger(__name__)

ARCHIVE_SOURCE = "archive_url_backfill"

_TITLE_RE = re.compile(r"<title>([^<]+)</title>", re.IGNORECASE)
_OG_IMAGE_RE = re.compile(
    r"<meta[^>]+property=[\"']og:image[\"'][^>]+content=[\"']([^\"']+)[\"']", re.IGNORECASE
)
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_TITLE_SUFFIX_RES = (
    re.compile(r"\s*\|\s*Fire Emblem Heroes.*$", re.IGNORECASE),
    re.compile(r"\s+Builds and Best IVs.*$", re.IGNORECASE),
)


def html_to_text(page: str) -> str:
    """Drop scripts, styles and tags; decode entities; collapse whitespace."""
    text = _SCRIPT_RE.sub(" ", page)
    text = _STYLE_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    return html.unescape(re.sub(r"\s+", " ", text)).strip()


def page_title(page: str) -> str:
    match = _TITLE_RE.search(page)
    title = html.unescape(match.group(1)) if match else ""
    for pattern in _TITLE_SUFFIX_RES:
        title = pattern.sub("", title)
    return title.strip()


def extract_archive_candidate(
    url: str,
    page: str,
    extractor: LegacyExtractor | None = None,
) -> CandidateRecord:
    """Build a candidate from an archive page.

    The hero name comes from the page's ranking sentence, falling back to
    the title. The slug is derived from that name.
    """
    extractor = extractor or LegacyExtractor.default()
    legacy = extractor.extract(html_to_text(page))
    name = clean_guide_name(legacy.hero_name or page_title(page))

    image = _OG_IMAGE_RE.search(page)
    attributes = legacy.to_attributes().model_copy(
        update={
            "img_url": html.unescape(image.group(1)) if image else None,
            "archive_id": extract_archive_id(url),
        }
    )
    return CandidateRecord(
        name=name,
        url=url,
        slug=derive_slug(name) or None,
        attributes=attributes,
        source=ARCHIVE_SOURCE,
    )


class ArchiveClient:
    """Async fetcher for authoritative archive pages."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        extractor: LegacyExtractor | None = None,
    ) -> None:
        self.settings = settings
        self._url_re = re.compile(settings.source_url_pattern, re.IGNORECASE)
        self._client = client or httpx.AsyncClient(
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
        )
        self._owns_client = client is None
        self.extractor = extractor or LegacyExtractor.default()
        self._get = retry_http_fetch(
            max_attempts=settings.http_max_attempts,
            initial_wait=settings.http_retry_wait,
            jitter=min(1.0, settings.http_retry_wait),
        )(self._get_once)

    async def __aenter__(self) -> ArchiveClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def validate_url(self, url: str) -> str:
        url = url.strip()
        if not self._url_re.match(url):
            raise InvalidSourceUrlError(
                f"Not an authoritative archive URL: {url}", context={"url": url}
            )
        return url

    async def _get_once(self, url: str) -> str:
        response = await self._client.get(url)
        response.raise_for_status()
        return response.text

    async def fetch_page(self, url: str) -> str:
        """Fetch page HTML, retrying transient failures."""
        url = self.validate_url(url)
        try:
            return await self._get(url)
        except httpx.HTTPError as e:
            raise ArchiveFetchError(
                f"Fetching {url} failed: {e}", context={"url": url}
            ) from e

    async def fetch_candidate(self, url: str) -> CandidateRecord:
        page = await self.fetch_page(url)
        candidate = extract_archive_candidate(url.strip(), page, self.extractor)
        logger.info("archive_page_parsed", url=candidate.url, name=candidate.name, slug=candidate.slug)
        return candidate
