"""
Fetch strategy chain.

Strategies are tried in order (direct HTTP, rendering proxy, headless
browser) unless the source pins one. Rate limiting, bot challenges,
unavailable strategies and per-strategy timeouts escalate to the next
strategy; not-found and transport errors end the chain. Every attempt is
bounded by the remaining pass deadline.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from jobingest.config import Settings
from jobingest.core.errors import (
    BotChallenge,
    FetchError,
    RateLimited,
    StrategyTimeout,
    StrategyUnavailable,
)
from jobingest.models import DEFAULT_STRATEGY_ORDER, ScrapingConfig
from .strategy import FetchHints, FetchResult, FetchStrategy

logger = logging.getLogger(__name__)

# When every strategy failed, report the most telling classification
EXHAUSTION_PRIORITY = (BotChallenge, RateLimited)


class FetchChain:
    """Ordered list of fetch strategies"""

    def __init__(self, strategies: Sequence[FetchStrategy]):
        self.strategies: List[FetchStrategy] = list(strategies)
        self._by_name: Dict[str, FetchStrategy] = {s.name: s for s in self.strategies}

    @classmethod
    def default(cls, settings: Settings) -> 'FetchChain':
        from .browser_crawler import HeadlessBrowserStrategy
        from .html_fetch import DirectHTTPStrategy
        from .rendering_proxy import RenderingProxyStrategy

        return cls([
            DirectHTTPStrategy(settings),
            RenderingProxyStrategy(settings),
            HeadlessBrowserStrategy(settings),
        ])

    def plan(self, config: Optional[ScrapingConfig] = None) -> List[FetchStrategy]:
        """Strategies to try for a source, in order"""
        if config is None:
            return list(self.strategies)
        if config.pinned_strategy:
            pinned = self._by_name.get(config.pinned_strategy)
            if pinned is None:
                logger.warning(f"[fetch_chain] Pinned strategy '{config.pinned_strategy}' is not configured")
                return []
            return [pinned]

        permitted = config.strategies or list(DEFAULT_STRATEGY_ORDER)
        return [self._by_name[name] for name in permitted if name in self._by_name]

    def _exhausted(self, url: str, attempts: List[FetchError]) -> FetchError:
        summary = ', '.join(f"{e.strategy}={e.kind}" for e in attempts)
        for error_class in EXHAUSTION_PRIORITY:
            for error in attempts:
                if isinstance(error, error_class):
                    final = error_class(
                        f"all strategies failed ({summary}); {error.message}",
                        status=error.status,
                        strategy=error.strategy,
                        url=url,
                    )
                    final.attempts = attempts
                    return final
        last = attempts[-1]
        last.attempts = attempts
        return last

    async def fetch(
        self,
        url: str,
        hints: Optional[FetchHints] = None,
        config: Optional[ScrapingConfig] = None,
        deadline: Optional[float] = None,
    ) -> FetchResult:
        """
        Fetch url with the first strategy that succeeds.

        Args:
            url: Document URL
            hints: Rendering options and feed expectation
            config: Source scraping config (pinned / permitted strategies)
            deadline: Absolute event-loop time bounding the whole chain

        Raises:
            FetchError: classified failure, with .attempts listing every strategy error
        """
        hints = hints or FetchHints()
        loop = asyncio.get_running_loop()
        attempts: List[FetchError] = []

        plan = self.plan(config)
        if not plan:
            raise StrategyUnavailable("no fetch strategy configured for this source", url=url)

        for strategy in plan:
            if not strategy.available:
                logger.debug(f"[fetch_chain] Skipping unavailable strategy {strategy.name}")
                attempts.append(StrategyUnavailable("not available", strategy=strategy.name, url=url))
                continue

            budget = strategy.timeout
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    attempts.append(StrategyTimeout("pass deadline exhausted", strategy=strategy.name, url=url))
                    logger.warning(f"[fetch_chain] Pass deadline exhausted before {strategy.name} for {url}")
                    break
                budget = min(budget, remaining)

            try:
                result = await asyncio.wait_for(
                    strategy.fetch(url, replace(hints, timeout=budget)),
                    timeout=budget,
                )
            except asyncio.TimeoutError:
                error: FetchError = StrategyTimeout(f"no response within {budget:.1f}s", strategy=strategy.name, url=url)
            except FetchError as e:
                error = e
                error.strategy = error.strategy or strategy.name
            else:
                if attempts:
                    logger.info(f"[fetch_chain] {url} fetched with {strategy.name} after {len(attempts)} failed attempt(s)")
                return result

            attempts.append(error)
            if not error.escalate:
                logger.warning(f"[fetch_chain] {strategy.name} failed for {url}: {error.kind} ({error.message}), not escalating")
                error.attempts = attempts
                raise error
            logger.warning(f"[fetch_chain] {strategy.name} failed for {url}: {error.kind} ({error.message}), escalating")

        raise self._exhausted(url, attempts)
