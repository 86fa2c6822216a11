"""
Direct HTTP fetch strategy: plain GET with a browser header profile.
"""
import time
from typing import Optional

import httpx

from jobingest.config import Settings
from jobingest.core.errors import TransportError
from jobingest.core.net import HTTPClient, parse_retry_after
from jobingest.models import STRATEGY_DIRECT
from .strategy import FetchHints, FetchResult, FetchStrategy


class DirectHTTPStrategy(FetchStrategy):
    name = STRATEGY_DIRECT

    def __init__(self, settings: Settings, http_client: Optional[HTTPClient] = None):
        super().__init__(settings)
        self.http_client = http_client or HTTPClient(
            user_agent=settings.user_agent,
            timeout=settings.request_timeout,
            max_attempts=settings.fetch_max_retries,
        )

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        start_time = time.time()
        try:
            response = await self.http_client.get(url, timeout=hints.timeout)
        except httpx.HTTPError as e:
            raise TransportError(f"{e.__class__.__name__}: {e}", strategy=self.name, url=url) from e

        status = response.status_code
        content = response.text
        self.check_challenge(content, url, status)
        self.classify_status(status, url, parse_retry_after(response.headers.get('Retry-After')))

        return FetchResult(
            content=content,
            status=status,
            strategy=self.name,
            url=url,
            final_url=str(response.url),
            content_type=response.headers.get('content-type'),
            elapsed_ms=int((time.time() - start_time) * 1000),
        )
