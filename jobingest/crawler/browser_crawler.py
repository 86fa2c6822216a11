"""
Headless-browser fetch strategy using Playwright for JavaScript-heavy and
challenge-protected pages.
"""
import time
from typing import Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import Page, async_playwright

from jobingest.core.challenge import find_challenge_marker
from jobingest.core.errors import BotChallenge, StrategyTimeout, StrategyUnavailable, TransportError
from jobingest.models import STRATEGY_BROWSER
from .strategy import FetchHints, FetchResult, FetchStrategy

CHALLENGE_POLL_MS = 1000
VIEWPORT = {'width': 1366, 'height': 768}

# Hide the most common automation fingerprints
ANTI_DETECTION_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en', 'it'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
"""


class HeadlessBrowserStrategy(FetchStrategy):
    """Drive chromium, let the page settle, and wait out challenge interstitials"""

    name = STRATEGY_BROWSER

    @property
    def available(self) -> bool:
        return self.settings.browser_enabled

    @property
    def timeout(self) -> float:
        settle = (self.settings.browser_settle_ms + self.settings.challenge_timeout_ms) / 1000
        return self.settings.request_timeout + settle

    async def _snapshot(self, page: Page) -> Tuple[str, str]:
        return await page.title(), await page.content()

    async def _wait_out_challenge(self, page: Page, url: str) -> Tuple[str, str, bool]:
        """
        Poll title and content until challenge markers disappear.

        Returns (title, html, challenged) where challenged tells whether an
        interstitial was seen and cleared.

        Raises:
            BotChallenge: if the page is still a challenge when the timeout elapses
        """
        title, html = await self._snapshot(page)
        marker = find_challenge_marker(html, title)
        if not marker:
            return title, html, False

        self.logger.info(f"[browser] Challenge detected on {url} ({marker}), waiting up to {self.settings.challenge_timeout_ms}ms")
        deadline = time.monotonic() + self.settings.challenge_timeout_ms / 1000
        while time.monotonic() < deadline:
            await page.wait_for_timeout(CHALLENGE_POLL_MS)
            title, html = await self._snapshot(page)
            marker = find_challenge_marker(html, title)
            if not marker:
                self.logger.info(f"[browser] Challenge cleared on {url}")
                return title, html, True
        raise BotChallenge(f"challenge did not clear ({marker})", strategy=self.name, url=url)

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        if not self.available:
            raise StrategyUnavailable("headless browser is disabled", strategy=self.name, url=url)

        start_time = time.time()
        timeout_ms = int((hints.timeout or self.settings.request_timeout) * 1000)
        async with async_playwright() as p:
            try:
                browser = await p.chromium.launch(
                    headless=True,
                    args=['--disable-blink-features=AutomationControlled', '--disable-dev-shm-usage'],
                )
            except PlaywrightError as e:
                raise StrategyUnavailable(f"could not launch chromium: {e}", strategy=self.name, url=url) from e

            try:
                context = await browser.new_context(
                    user_agent=self.settings.user_agent,
                    viewport=VIEWPORT,
                    locale='en-US',
                )
                await context.add_init_script(ANTI_DETECTION_SCRIPT)
                page = await context.new_page()

                response = await page.goto(url, wait_until='domcontentloaded', timeout=timeout_ms)

                if hints.render.wait_selector:
                    try:
                        await page.wait_for_selector(hints.render.wait_selector, timeout=timeout_ms)
                    except PlaywrightTimeoutError:
                        self.logger.warning(f"[browser] Selector {hints.render.wait_selector} not found on {url}")

                # Additional wait for dynamic content
                settle_ms = hints.render.wait_ms or self.settings.browser_settle_ms
                await page.wait_for_timeout(settle_ms)

                title, html, challenged = await self._wait_out_challenge(page, url)
                status = response.status if response is not None else 200
                if challenged:
                    # The interstitial answered 403/503; the page behind it loaded
                    status = 200
                self.classify_status(status, url)

                self.logger.info(f"[browser] Rendered {url} ({len(html)} bytes, status {status})")
                return FetchResult(
                    content=html,
                    status=status,
                    strategy=self.name,
                    url=url,
                    final_url=page.url,
                    content_type=response.headers.get('content-type') if response is not None else None,
                    elapsed_ms=int((time.time() - start_time) * 1000),
                )
            except PlaywrightTimeoutError as e:
                raise StrategyTimeout(f"navigation timed out: {e}", strategy=self.name, url=url) from e
            except PlaywrightError as e:
                raise TransportError(f"browser navigation failed: {e}", strategy=self.name, url=url) from e
            finally:
                try:
                    await browser.close()
                except PlaywrightError as e:
                    self.logger.debug(f"[browser] Error closing browser: {e}")
