"""
Fetch strategy interface shared by the direct HTTP, rendering-proxy and
headless-browser strategies.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from jobingest.config import Settings
from jobingest.core.challenge import find_challenge_marker
from jobingest.core.errors import BotChallenge, NotFound, RateLimited, TransportError
from jobingest.models import FEED_FAMILIES, RenderOptions, SourceDescriptor

logger = logging.getLogger(__name__)


@dataclass
class FetchHints:
    """Per-source inputs to a fetch"""
    render: RenderOptions = field(default_factory=RenderOptions)
    expect_feed: bool = False
    timeout: Optional[float] = None

    @classmethod
    def for_source(cls, source: SourceDescriptor, family: Optional[str] = None) -> 'FetchHints':
        return cls(
            render=source.scraping_config.render,
            expect_feed=(family or source.family) in FEED_FAMILIES,
        )


@dataclass
class FetchResult:
    content: str
    status: int
    strategy: str
    url: str
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    elapsed_ms: int = 0


class FetchStrategy(ABC):
    """
    One way of obtaining a document.

    fetch() returns a FetchResult or raises a classified FetchError
    (RateLimited, BotChallenge, NotFound, TransportError, StrategyUnavailable).
    """

    name: str = 'strategy'

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    def available(self) -> bool:
        return True

    @property
    def timeout(self) -> float:
        return self.settings.request_timeout

    @abstractmethod
    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        """Fetch url, raising a classified FetchError on failure"""

    def classify_status(self, status: int, url: str, retry_after: Optional[float] = None):
        """Raise the classified error for a non-success status"""
        if status in (403, 429):
            raise RateLimited(f"HTTP {status}", status=status, strategy=self.name, url=url, retry_after=retry_after)
        if status in (404, 410):
            raise NotFound(f"HTTP {status}", status=status, strategy=self.name, url=url)
        if status >= 400:
            raise TransportError(f"HTTP {status}", status=status, strategy=self.name, url=url)

    def check_challenge(self, content: str, url: str, status: int, title: Optional[str] = None):
        marker = find_challenge_marker(content, title)
        if marker:
            raise BotChallenge(f"challenge page detected ({marker})", status=status, strategy=self.name, url=url)

    def __repr__(self):
        return f"<{self.__class__.__name__}(name={self.name}, available={self.available})>"
