"""
One ingestion pass for one source: fetch, parse, normalize, upsert, then
write bookkeeping back to the source.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from jobingest.config import Settings, get_settings
from jobingest.core.errors import (
    BotChallenge,
    IngestError,
    NormalizationError,
    NotFound,
    ParseError,
    RateLimited,
    StrategyTimeout,
)
from jobingest.core.normalize import normalize_job
from jobingest.core.urls import canonicalize_source_url
from jobingest.models import (
    FAMILY_INDEED,
    FAMILY_JOOBLE,
    FAMILY_LINKEDIN,
    FEED_FAMILIES,
    BookkeepingUpdate,
    JobRecord,
    RunResult,
    RunStage,
    SourceDescriptor,
)
from jobingest.storage.base import JobStore
from .fetch_chain import FetchChain
from .plugins import ParserRegistry, get_parser_registry
from .strategy import FetchHints
from .upsert import JobUpserter

logger = logging.getLogger(__name__)

DEFAULT_REMEDIATION_HINT = "Switch to a feed-based source for this platform."
BOT_PROTECTION_HINT = (
    "The page is behind bot protection. Enable the rendering proxy or headless browser, "
    "or switch to a feed-based source for this platform."
)
DEACTIVATED_PREFIX = "Source deactivated after repeated bot challenges. "

REMEDIATION_HINTS = {
    FAMILY_JOOBLE: (
        "This source is blocked by Cloudflare bot protection. "
        "Switch to a feed-based source (e.g. Indeed RSS) for this platform."
    ),
    FAMILY_INDEED: "Indeed blocks scraping of search pages. Use the Indeed RSS feed URL (https://www.indeed.com/rss?q=...) instead.",
    FAMILY_LINKEDIN: "LinkedIn requires a signed-in session for most listings. Use a partner feed or the public jobs search URL.",
}

MAX_RECORD_ERRORS = 20


def remediation_hint(error: IngestError, family: Optional[str], deactivated: bool = False) -> Optional[str]:
    """Operator-facing suggestion for a failed pass"""
    if isinstance(error, BotChallenge):
        if deactivated:
            return DEACTIVATED_PREFIX + REMEDIATION_HINTS.get(family, DEFAULT_REMEDIATION_HINT)
        return REMEDIATION_HINTS.get(family, BOT_PROTECTION_HINT)
    if isinstance(error, RateLimited):
        return "The source is rate limiting requests. Increase scrape_interval_minutes or enable the rendering proxy."
    if isinstance(error, NotFound):
        return "The source URL returned not found. Check the configured URL."
    if isinstance(error, StrategyTimeout):
        return "The source did not respond in time. Raise JOBINGEST_PASS_TIMEOUT or pin a faster strategy."
    if isinstance(error, ParseError):
        return "The document did not match the expected format. Check the source family and selectors."
    return None


class SourceRunner:
    """Runs ingestion passes against a job store"""

    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        chain: Optional[FetchChain] = None,
        registry: Optional[ParserRegistry] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.chain = chain or FetchChain.default(self.settings)
        self.registry = registry or get_parser_registry()
        self.upserter = JobUpserter(store)

    async def run(self, source: SourceDescriptor) -> RunResult:
        """
        Execute one pass. Never raises for pipeline failures: the outcome is
        reported in the RunResult and in the source bookkeeping.
        """
        result = RunResult(source_id=source.id)
        started_at = datetime.now(timezone.utc)
        start_time = time.time()
        error: Optional[IngestError] = None

        logger.info(f"[source_runner] Starting pass for {source.name} ({source.id})")
        try:
            await asyncio.wait_for(self._execute(source, result), timeout=self.settings.pass_timeout)
        except asyncio.TimeoutError:
            error = StrategyTimeout(f"pass exceeded {self.settings.pass_timeout:.0f}s", url=source.url)
        except IngestError as e:
            error = e
        except asyncio.CancelledError:
            logger.warning(f"[source_runner] Pass for {source.id} cancelled during {result.stage.value}")
            raise
        except Exception as e:
            logger.exception(f"[source_runner] Unexpected error in pass for {source.id}: {e}")
            error = IngestError(f"{e.__class__.__name__}: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        if error is not None:
            self._fail(source, result, error)
        else:
            result.stage = RunStage.DONE
            logger.info(
                f"[source_runner] {source.name}: found={result.found} created={result.created} "
                f"updated={result.updated} failed={result.failed} skipped={result.skipped} "
                f"via {result.strategy} in {result.duration_ms}ms"
            )

        await self._write_bookkeeping(source, result, started_at)
        return result

    async def _execute(self, source: SourceDescriptor, result: RunResult):
        parser = self.registry.resolve(source)
        result.family = parser.family

        # Fetch
        result.stage = RunStage.FETCHING
        url = canonicalize_source_url(source.url, prefer_feed=parser.family in FEED_FAMILIES)
        deadline = asyncio.get_running_loop().time() + self.settings.pass_timeout
        fetched = await self.chain.fetch(
            url,
            FetchHints.for_source(source, parser.family),
            config=source.scraping_config,
            deadline=deadline,
        )
        result.strategy = fetched.strategy

        # Parse
        result.stage = RunStage.PARSING
        parsed = parser.parse(fetched.content, source)
        result.found = len(parsed.jobs)
        if not parsed.jobs:
            logger.warning(f"[source_runner] No jobs found for {source.name}: {parsed.message or 'empty document'}")

        # Normalize
        result.stage = RunStage.NORMALIZING
        records: List[JobRecord] = []
        scraped_at = datetime.now(timezone.utc)
        for raw in parsed.jobs:
            try:
                records.append(normalize_job(raw, source, self.settings.default_currency, scraped_at))
            except NormalizationError as e:
                result.failed += 1
                self._record_error(result, e.message)

        # Upsert
        result.stage = RunStage.UPSERTING
        stats = await self.upserter.upsert_batch(records)
        result.created = stats.created
        result.updated = stats.updated
        result.skipped = stats.skipped
        result.failed += stats.failed
        for message in stats.errors:
            self._record_error(result, message)

    @staticmethod
    def _record_error(result: RunResult, message: str):
        if len(result.record_errors) < MAX_RECORD_ERRORS:
            result.record_errors.append(message)

    def should_deactivate(self, source: SourceDescriptor, result: RunResult, error: IngestError) -> bool:
        """Only a bot challenge at fetch time deactivates; the streak it completes may include other failures"""
        if not isinstance(error, BotChallenge) or result.failed_stage != RunStage.FETCHING:
            return False
        opted_in = (
            source.scraping_config.deactivate_on_bot_challenge
            or (result.family or '') in self.settings.auto_deactivate_families
        )
        return opted_in and source.consecutive_failures + 1 >= self.settings.auto_deactivate_threshold

    def _fail(self, source: SourceDescriptor, result: RunResult, error: IngestError):
        result.failed_stage = result.stage
        result.stage = RunStage.FAILED
        result.error_kind = error.kind
        result.error_message = str(error)
        result.deactivated = self.should_deactivate(source, result, error)
        result.remediation_hint = remediation_hint(error, result.family, result.deactivated)

        if result.deactivated:
            logger.error(
                f"[source_runner] Deactivating {source.name} ({source.id}) after bot challenge: {result.remediation_hint}"
            )
        else:
            logger.error(
                f"[source_runner] Pass for {source.name} failed at {result.failed_stage.value}: {error}"
            )

    async def _write_bookkeeping(self, source: SourceDescriptor, result: RunResult, started_at: datetime):
        if result.success:
            update = BookkeepingUpdate(
                last_scraped_at=started_at,
                last_success_at=datetime.now(timezone.utc),
                consecutive_failures=0,
            )
            if result.failed:
                update.last_error = f"{result.failed} record(s) failed: {'; '.join(result.record_errors[:3])}"
            else:
                update.clear_error = True
        else:
            update = BookkeepingUpdate(
                last_scraped_at=started_at,
                last_error=f"{result.error_kind}: {result.error_message}",
                consecutive_failures=source.consecutive_failures + 1,
            )
            if result.deactivated:
                update.is_active = False
                update.last_error = f"{update.last_error}. {result.remediation_hint}"

        try:
            await self.store.update_source_bookkeeping(source.id, update)
        except Exception as e:
            logger.error(f"[source_runner] Failed to update bookkeeping for {source.id}: {e}")
