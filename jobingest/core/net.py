"""
HTTP client with a browser-like header profile and bounded retries on
connection failures.
"""
import time
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 2

RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.ConnectError)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After as seconds; the header can be seconds or an HTTP date"""
    if not value:
        return None
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        retry_date = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"[net] Could not parse Retry-After header: {value}")
        return None
    return max(0.0, retry_date.timestamp() - time.time())


class HTTPClient:
    """Async HTTP client shared by the direct and rendering-proxy strategies"""

    def __init__(
        self,
        user_agent: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 8.0,
    ):
        self.user_agent = user_agent
        self.timeout = httpx.Timeout(timeout)
        self.max_attempts = max(1, max_attempts)
        self.transport = transport
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max

    def _get_headers(self, custom_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Header set of a desktop browser"""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9,it;q=0.8",
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Cache-Control": "max-age=0",
        }
        if custom_headers:
            headers.update(custom_headers)
        return headers

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout) if timeout else self.timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        GET with retries on timeouts and connection errors.

        Raises:
            httpx.TimeoutException, httpx.ConnectError: after the last attempt
            httpx.HTTPError: other transport failures (not retried)
        """
        request_headers = self._get_headers(headers)
        async with self._client(timeout) as client:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
                retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
                reraise=True,
            ):
                with attempt:
                    start_time = time.time()
                    try:
                        response = await client.get(url, params=params, headers=request_headers)
                    except RETRYABLE_EXCEPTIONS as e:
                        logger.warning(
                            f"[net] Attempt {attempt.retry_state.attempt_number}/{self.max_attempts} "
                            f"failed for {url}: {e.__class__.__name__}"
                        )
                        raise
                    elapsed_ms = int((time.time() - start_time) * 1000)
                    logger.info(f"[net] GET {response.status_code} {url} ({len(response.content)} bytes, {elapsed_ms}ms)")
                    return response
