"""Tests for herovault.services.archive_client."""

from __future__ import annotations

import httpx
import pytest

from herovault.core.exceptions import ArchiveFetchError, InvalidSourceUrlError
from herovault.services.archive_client import (
    ARCHIVE_SOURCE,
    ArchiveClient,
    extract_archive_candidate,
    html_to_text,
    page_title,
)
from tests.fixtures.heroes import ARCHIVE_PAGE, archive_url


def _client(settings, handler) -> ArchiveClient:
    transport = httpx.MockTransport(handler)
    return ArchiveClient(settings, client=httpx.AsyncClient(transport=transport))


class TestPageParsing:

    def test_title_suffixes_removed(self):
        assert page_title(ARCHIVE_PAGE) == "Fjorm: New Traditions"

    def test_scripts_and_styles_dropped(self):
        text = html_to_text(ARCHIVE_PAGE)
        assert "color: red" not in text
        assert "1/10" not in text
        assert "Overall Rating 8.5/10" in text

    def test_candidate_from_page(self):
        candidate = extract_archive_candidate(archive_url(2001), ARCHIVE_PAGE)

        assert candidate.name == "Fjorm - New Traditions"
        assert candidate.slug == "fjorm_new_traditions"
        assert candidate.url == archive_url(2001)
        assert candidate.source == ARCHIVE_SOURCE
        assert candidate.attributes.tier == 8.5
        assert candidate.attributes.weapon == "Colorless Bow"
        assert candidate.attributes.move == "Infantry"
        assert candidate.attributes.img_url == "https://img.game8.co/fjorm_nt/show"
        assert candidate.attributes.archive_id == 2001

    def test_title_fallback_when_no_ranking_sentence(self):
        page = "<title>Hector Builds and Best IVs | Fire Emblem Heroes</title><p>Nothing</p>"
        candidate = extract_archive_candidate(archive_url(7), page)
        assert candidate.name == "Hector"
        assert candidate.slug == "hector"


class TestArchiveClient:

    async def test_fetch_candidate(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=ARCHIVE_PAGE)

        async with _client(settings, handler) as client:
            candidate = await client.fetch_candidate(archive_url(2001))
        assert candidate.slug == "fjorm_new_traditions"

    async def test_invalid_url_never_fetched(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(200, text=ARCHIVE_PAGE)

        async with _client(settings, handler) as client:
            with pytest.raises(InvalidSourceUrlError):
                await client.fetch_page("https://example.com/archives/1")
        assert calls == []

    async def test_client_error_not_retried(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(404)

        async with _client(settings, handler) as client:
            with pytest.raises(ArchiveFetchError):
                await client.fetch_page(archive_url(1))
        assert len(calls) == 1

    async def test_server_error_retried(self, settings):
        responses = [httpx.Response(503), httpx.Response(200, text="<title>Hector</title>")]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        async with _client(settings, handler) as client:
            page = await client.fetch_page(archive_url(1))
        assert "Hector" in page
        assert responses == []

    async def test_gives_up_after_max_attempts(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(500)

        async with _client(settings, handler) as client:
            with pytest.raises(ArchiveFetchError):
                await client.fetch_page(archive_url(1))
        assert len(calls) == settings.http_max_attempts
