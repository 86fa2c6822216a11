"""
Per-source scrape scheduling.

Each active source gets exactly one cron job derived from its scrape
interval. A reconciliation job re-reads the active sources on a fixed
cadence and adds, replaces or removes jobs to match.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from jobingest.config import Settings, get_settings
from jobingest.core.errors import ScrapeTriggerError
from jobingest.crawler.source_runner import SourceRunner
from jobingest.models import RunResult, SourceDescriptor
from jobingest.storage.base import JobStore

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = 'reconcile-sources'
MINUTE_DIVISORS = (1, 2, 3, 4, 5, 6, 10, 12, 15, 20, 30, 60)
HOUR_DIVISORS = (1, 2, 3, 4, 6, 8, 12, 24)


def interval_to_cron(minutes: int) -> str:
    """
    Convert a scrape interval to a five-field cron expression.

    Intervals that divide an hour map to */N; other sub-hour intervals get an
    explicit minute list restarting every hour. Multi-hour intervals are
    rounded down to a divisor of 24, multi-day ones to every D days.
    """
    minutes = max(1, int(minutes))

    if minutes < 60:
        best = max(d for d in MINUTE_DIVISORS if d <= minutes)
        if best == minutes:
            return f"*/{minutes} * * * *"
        return f"{','.join(str(m) for m in range(0, 60, minutes))} * * * *"

    if minutes < 1440:
        hours = minutes // 60
        best = max(d for d in HOUR_DIVISORS if d <= hours)
        return f"0 */{best} * * *"

    days = max(1, min(minutes // 1440, 31))
    return f"0 0 */{days} * *"


def job_id_for(source_id: str) -> str:
    return f"source:{source_id}"


@dataclass
class ScheduledSource:
    source_id: str
    job_id: str
    interval_minutes: int
    cron: str


class ScrapeScheduler:
    """Keeps one recurring scrape job per active source"""

    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        runner: Optional[SourceRunner] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.runner = runner or SourceRunner(store, self.settings)
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.settings.scheduler_timezone)
        self.semaphore = asyncio.Semaphore(self.settings.worker_pool_size)
        self.running = False

        self._tasks: Dict[str, ScheduledSource] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._reconcile_lock = asyncio.Lock()

    @property
    def scheduled(self) -> Dict[str, ScheduledSource]:
        return dict(self._tasks)

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        if source_id not in self._locks:
            self._locks[source_id] = asyncio.Lock()
        return self._locks[source_id]

    def is_busy(self, source_id: str) -> bool:
        lock = self._locks.get(source_id)
        return lock is not None and lock.locked()

    # Job table

    def _schedule(self, source: SourceDescriptor) -> ScheduledSource:
        cron = interval_to_cron(source.scrape_interval_minutes)
        entry = ScheduledSource(
            source_id=source.id,
            job_id=job_id_for(source.id),
            interval_minutes=source.scrape_interval_minutes,
            cron=cron,
        )
        self.scheduler.add_job(
            self._run_scheduled,
            trigger=CronTrigger.from_crontab(cron, timezone=self.settings.scheduler_timezone),
            args=[source.id],
            id=entry.job_id,
            name=source.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._tasks[source.id] = entry
        logger.info(f"[scheduler] Scheduled {source.name} every {source.scrape_interval_minutes} min ({cron})")
        return entry

    def _unschedule(self, source_id: str, cancel_running: bool = True):
        entry = self._tasks.pop(source_id, None)
        if entry is not None:
            try:
                self.scheduler.remove_job(entry.job_id)
            except JobLookupError:
                logger.debug(f"[scheduler] Job {entry.job_id} already removed")
            logger.info(f"[scheduler] Removed scheduled job for source {source_id}")

        if cancel_running:
            task = self._in_flight.get(source_id)
            if task is not None and not task.done():
                logger.info(f"[scheduler] Cancelling in-flight pass for source {source_id}")
                task.cancel()

    def _sync_source(self, source: SourceDescriptor) -> Optional[str]:
        """Bring the job for one source in line with its descriptor"""
        if not source.is_active:
            if source.id in self._tasks:
                self._unschedule(source.id)
                return 'removed'
            return None

        entry = self._tasks.get(source.id)
        if entry is None:
            self._schedule(source)
            return 'added'
        if entry.interval_minutes != source.scrape_interval_minutes:
            logger.info(
                f"[scheduler] Interval for {source.name} changed "
                f"{entry.interval_minutes} -> {source.scrape_interval_minutes} min"
            )
            self._unschedule(source.id, cancel_running=False)
            self._schedule(source)
            return 'replaced'
        return None

    async def reconcile(self) -> Dict[str, int]:
        """Match the job table to the currently active sources"""
        counts = {'added': 0, 'replaced': 0, 'removed': 0}
        async with self._reconcile_lock:
            sources = await self.store.list_active_sources()
            active_ids = {s.id for s in sources}

            for source in sources:
                change = self._sync_source(source)
                if change:
                    counts[change] += 1

            for source_id in list(self._tasks):
                if source_id not in active_ids:
                    self._unschedule(source_id)
                    counts['removed'] += 1

        if any(counts.values()):
            logger.info(
                f"[scheduler] Reconciled {len(active_ids)} active sources: "
                f"+{counts['added']} ~{counts['replaced']} -{counts['removed']}"
            )
        return counts

    async def notify_source_changed(self, source_id: str):
        """Apply an operator change to one source without waiting for the next reconcile"""
        source = await self.store.get_source(source_id)
        async with self._reconcile_lock:
            if source is None or not source.is_active:
                self._unschedule(source_id)
            else:
                self._sync_source(source)

    async def _reconcile_job(self):
        try:
            await self.reconcile()
        except Exception as e:
            logger.error(f"[scheduler] Reconciliation failed: {e}", exc_info=True)

    # Passes

    async def _bounded_run(self, source: SourceDescriptor) -> RunResult:
        async with self.semaphore:
            return await self.runner.run(source)

    async def _execute(self, source: SourceDescriptor) -> Optional[RunResult]:
        """
        Run one pass as a registered task so deactivation can cancel it.

        Returns None when the pass was cancelled.
        """
        task = asyncio.create_task(self._bounded_run(source))
        self._in_flight[source.id] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._in_flight.get(source.id) is task:
                del self._in_flight[source.id]

        if task.cancelled():
            logger.info(f"[scheduler] Pass for {source.name} was cancelled")
            return None
        result = task.result()
        if result.deactivated:
            self._unschedule(source.id, cancel_running=False)
        return result

    async def _run_scheduled(self, source_id: str):
        """Cron entry point. Failures are logged and never reach the scheduler."""
        try:
            source = await self.store.get_source(source_id)
            if source is None or not source.is_active:
                logger.info(f"[scheduler] Source {source_id} is gone or inactive, dropping its job")
                self._unschedule(source_id, cancel_running=False)
                return

            lock = self._lock_for(source_id)
            if lock.locked():
                logger.info(f"[scheduler] Source {source.name} already running, skipping this tick")
                return
            async with lock:
                await self._execute(source)
        except Exception as e:
            logger.error(f"[scheduler] Scheduled pass for {source_id} failed: {e}", exc_info=True)

    async def _triggerable_source(self, source_id: str) -> SourceDescriptor:
        source = await self.store.get_source(source_id)
        if source is None:
            raise ScrapeTriggerError(f"Source {source_id} not found", source_id=source_id, cause_kind='not-found')
        if not source.is_active:
            raise ScrapeTriggerError(
                f"Source {source.name} is not active",
                source_id=source_id,
                hint="Reactivate the source before triggering a scrape.",
                cause_kind='inactive',
            )
        return source

    async def trigger_scrape(self, source_id: str) -> RunResult:
        """
        Run a pass now, waiting for any in-progress pass of the same source.

        Raises:
            ScrapeTriggerError: unknown or inactive source, or the pass failed
        """
        source = await self._triggerable_source(source_id)
        async with self._lock_for(source_id):
            # The pass we waited for may have deactivated the source
            source = await self._triggerable_source(source_id)
            result = await self._execute(source)

        if result is None:
            raise ScrapeTriggerError(
                f"Scrape of {source.name} was cancelled",
                source_id=source_id,
                cause_kind='cancelled',
            )
        if not result.success:
            raise ScrapeTriggerError(
                result.error_message or 'Scrape failed',
                source_id=source_id,
                hint=result.remediation_hint,
                deactivated=result.deactivated,
                cause_kind=result.error_kind,
                result=result,
            )
        return result

    async def run_active_once(self) -> List[RunResult]:
        """Run every active source once, bounded by the worker pool"""
        sources = await self.store.list_active_sources()
        if not sources:
            logger.info("[scheduler] No active sources found")
            return []

        logger.info(f"[scheduler] Running {len(sources)} active sources")

        async def run_one(source: SourceDescriptor) -> Optional[RunResult]:
            async with self._lock_for(source.id):
                return await self._execute(source)

        results = await asyncio.gather(*(run_one(s) for s in sources), return_exceptions=True)
        completed = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(f"[scheduler] Pass for {source.name} raised: {result}")
            elif result is not None:
                completed.append(result)
        return completed

    # Lifecycle

    async def start(self):
        """Start the scheduler"""
        if self.settings.scheduler_disabled:
            logger.info("[scheduler] Scheduler disabled by JOBINGEST_DISABLE_SCHEDULER")
            return
        if self.running:
            return

        await self._reconcile_job()
        self.scheduler.add_job(
            self._reconcile_job,
            'interval',
            seconds=self.settings.reconcile_interval_seconds,
            id=RECONCILE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.running = True
        logger.info(
            f"[scheduler] Started with {len(self._tasks)} source job(s), "
            f"reconciling every {self.settings.reconcile_interval_seconds}s"
        )

    async def stop(self):
        """Stop the scheduler and cancel passes still running"""
        if not self.running:
            return
        self.running = False
        self.scheduler.shutdown(wait=False)

        pending = [t for t in self._in_flight.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()
        logger.info("[scheduler] Scheduler stopped")
