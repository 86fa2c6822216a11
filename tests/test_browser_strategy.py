"""
Tests for the headless-browser strategy's challenge handling, with a mocked page.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from jobingest.core.errors import BotChallenge, StrategyUnavailable
from jobingest.crawler.browser_crawler import CHALLENGE_POLL_MS, HeadlessBrowserStrategy
from jobingest.crawler.strategy import FetchHints
from helpers import load_fixture

URL = "https://jooble.org/SearchResult?ukw=developer"
LISTING = "<html><head><title>Developer jobs</title></head><body>ok</body></html>"


def fake_page(*snapshots):
    page = MagicMock()
    page.title = AsyncMock(side_effect=[title for title, _ in snapshots])
    page.content = AsyncMock(side_effect=[html for _, html in snapshots])
    page.wait_for_timeout = AsyncMock()
    return page


class TestChallengeWait:
    @pytest.mark.asyncio
    async def test_plain_page(self, settings):
        strategy = HeadlessBrowserStrategy(settings)
        page = fake_page(("Developer jobs", LISTING))
        assert await strategy._wait_out_challenge(page, URL) == ("Developer jobs", LISTING, False)
        page.wait_for_timeout.assert_not_called()

    @pytest.mark.asyncio
    async def test_challenge_clears(self, settings):
        settings.challenge_timeout_ms = 5000
        strategy = HeadlessBrowserStrategy(settings)
        page = fake_page(
            ("Just a moment...", load_fixture("cloudflare_challenge.html")),
            ("Developer jobs", LISTING),
        )
        title, html, challenged = await strategy._wait_out_challenge(page, URL)
        assert (title, challenged) == ("Developer jobs", True)
        page.wait_for_timeout.assert_awaited_once_with(CHALLENGE_POLL_MS)

    @pytest.mark.asyncio
    async def test_challenge_persists(self, settings):
        strategy = HeadlessBrowserStrategy(settings)
        page = fake_page(("Just a moment...", load_fixture("cloudflare_challenge.html")))
        with pytest.raises(BotChallenge) as exc_info:
            await strategy._wait_out_challenge(page, URL)
        assert exc_info.value.strategy == "browser"


@pytest.mark.asyncio
async def test_disabled_browser_is_unavailable(settings):
    strategy = HeadlessBrowserStrategy(settings)
    assert not strategy.available
    with pytest.raises(StrategyUnavailable):
        await strategy.fetch(URL, FetchHints())


def test_timeout_includes_settle_and_challenge_wait(settings):
    settings.browser_settle_ms = 3000
    settings.challenge_timeout_ms = 15000
    assert HeadlessBrowserStrategy(settings).timeout == settings.request_timeout + 18
