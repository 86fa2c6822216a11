"""
Rendering-proxy fetch strategy backed by the ScrapingBee HTTP API.

The service executes JavaScript and routes through its own proxy pool,
optionally in a given country, which gets past most Cloudflare interstitials.
"""
import time
from typing import Any, Dict, Optional

import httpx

from jobingest.config import Settings
from jobingest.core.errors import RateLimited, StrategyUnavailable, TransportError
from jobingest.core.net import HTTPClient
from jobingest.models import STRATEGY_RENDERING_PROXY
from .strategy import FetchHints, FetchResult, FetchStrategy

SCRAPINGBEE_API_URL = 'https://app.scrapingbee.com/api/v1/'
# Rendering takes longer than a plain GET
PROXY_TIMEOUT_FACTOR = 3
DEFAULT_RENDER_WAIT_MS = 2000


def _flag(value: bool) -> str:
    return 'true' if value else 'false'


class RenderingProxyStrategy(FetchStrategy):
    name = STRATEGY_RENDERING_PROXY

    def __init__(self, settings: Settings, http_client: Optional[HTTPClient] = None):
        super().__init__(settings)
        self.http_client = http_client or HTTPClient(
            user_agent=settings.user_agent,
            timeout=self.timeout,
            max_attempts=1,
        )

    @property
    def available(self) -> bool:
        return self.settings.rendering_proxy_available

    @property
    def timeout(self) -> float:
        return self.settings.request_timeout * PROXY_TIMEOUT_FACTOR

    def build_params(self, url: str, hints: FetchHints) -> Dict[str, Any]:
        render = hints.render
        params = {
            'api_key': self.settings.scrapingbee_api_key,
            'url': url,
            'render_js': _flag(render.render_js and not hints.expect_feed),
            'block_ads': 'true',
            'block_resources': _flag(render.block_resources),
        }
        if render.render_js and not hints.expect_feed:
            params['wait'] = str(render.wait_ms or DEFAULT_RENDER_WAIT_MS)
        if render.wait_selector:
            params['wait_for'] = render.wait_selector
        if render.country_code:
            params['country_code'] = render.country_code.lower()
        if render.premium_proxy:
            params['premium_proxy'] = 'true'
        return params

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        if not self.available:
            raise StrategyUnavailable("rendering proxy is not configured", strategy=self.name, url=url)

        start_time = time.time()
        try:
            response = await self.http_client.get(
                SCRAPINGBEE_API_URL,
                params=self.build_params(url, hints),
                timeout=hints.timeout or self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"rendering proxy unreachable: {e.__class__.__name__}", strategy=self.name, url=url) from e

        # Status of the target page as seen by the proxy, when reported
        target_status = response.headers.get('Spb-Initial-Status-Code')
        status = int(target_status) if target_status and target_status.isdigit() else response.status_code
        content = response.text

        if response.status_code == 401:
            raise StrategyUnavailable("rendering proxy rejected the API key", status=401, strategy=self.name, url=url)
        if response.status_code == 429 and not target_status:
            raise RateLimited("rendering proxy concurrency limit reached", status=429, strategy=self.name, url=url)
        if response.status_code >= 500 and not target_status:
            raise StrategyUnavailable(
                f"rendering proxy error {response.status_code}: {content[:200]}",
                status=response.status_code,
                strategy=self.name,
                url=url,
            )

        self.check_challenge(content, url, status)
        self.classify_status(status, url)
        if response.status_code >= 400:
            self.classify_status(response.status_code, url)

        self.logger.info(f"[rendering_proxy] Fetched {url} ({len(content)} bytes, target status {status})")
        return FetchResult(
            content=content,
            status=status,
            strategy=self.name,
            url=url,
            final_url=response.headers.get('Spb-Resolved-Url') or url,
            content_type=response.headers.get('content-type'),
            elapsed_ms=int((time.time() - start_time) * 1000),
        )
