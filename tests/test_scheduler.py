"""
Tests for per-source scheduling, manual triggers and pass isolation.
"""
import asyncio

import pytest
from apscheduler.triggers.cron import CronTrigger

from jobingest.core.errors import ScrapeTriggerError
from jobingest.models import RunResult, RunStage, SourceKind
from jobingest.orchestrator import RECONCILE_JOB_ID, ScrapeScheduler, interval_to_cron, job_id_for
from helpers import GatedRunner, make_source, wait_until


def ok_result(source):
    return RunResult(source_id=source.id, stage=RunStage.DONE, found=1, created=1, family="rss")


def challenged_result(deactivated):
    def factory(source):
        return RunResult(
            source_id=source.id,
            stage=RunStage.FAILED,
            failed_stage=RunStage.FETCHING,
            error_kind="bot-challenge",
            error_message="all strategies failed",
            remediation_hint="Switch to a feed-based source.",
            deactivated=deactivated,
        )
    return factory


def html_source(source_id, **fields):
    return make_source(source_id, url=f"https://{source_id}.example/jobs", kind=SourceKind.HTML_SCRAPE, **fields)


def job_ids(scheduler):
    return sorted(job.id for job in scheduler.scheduler.get_jobs())


@pytest.mark.parametrize("minutes,expected", [
    (0, "*/1 * * * *"),
    (5, "*/5 * * * *"),
    (7, "0,7,14,21,28,35,42,49,56 * * * *"),
    (15, "*/15 * * * *"),
    (45, "0,45 * * * *"),
    (60, "0 */1 * * *"),
    (90, "0 */1 * * *"),
    (120, "0 */2 * * *"),
    (300, "0 */4 * * *"),
    (1439, "0 */12 * * *"),
    (1440, "0 0 */1 * *"),
    (2880, "0 0 */2 * *"),
    (57600, "0 0 */31 * *"),
])
def test_interval_to_cron(minutes, expected):
    cron = interval_to_cron(minutes)
    assert cron == expected
    CronTrigger.from_crontab(cron, timezone="UTC")


class TestReconcile:
    @pytest.mark.asyncio
    async def test_adds_active_sources_only(self, store, settings):
        store.add_source(html_source("a", scrape_interval_minutes=15))
        store.add_source(html_source("b"))
        store.add_source(html_source("c", is_active=False))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))

        counts = await sched.reconcile()

        assert counts == {"added": 2, "replaced": 0, "removed": 0}
        assert job_ids(sched) == ["source:a", "source:b"]
        assert sched.scheduled["a"].cron == "*/15 * * * *"
        assert sched.scheduled["b"].cron == "0 */1 * * *"

    @pytest.mark.asyncio
    async def test_idempotent(self, store, settings):
        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        await sched.reconcile()
        assert await sched.reconcile() == {"added": 0, "replaced": 0, "removed": 0}
        assert job_ids(sched) == ["source:a"]

    @pytest.mark.asyncio
    async def test_interval_change_replaces_job(self, store, settings):
        store.add_source(html_source("a", scrape_interval_minutes=60))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        await sched.reconcile()

        store.configure_source("a", scrape_interval_minutes=30)
        counts = await sched.reconcile()

        assert counts["replaced"] == 1
        assert job_ids(sched) == ["source:a"]
        assert sched.scheduled["a"].cron == "*/30 * * * *"

    @pytest.mark.asyncio
    async def test_deactivated_and_deleted_sources_removed(self, store, settings):
        store.add_source(html_source("a"))
        store.add_source(html_source("b"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        await sched.reconcile()

        store.configure_source("a", is_active=False)
        store.remove_source("b")
        counts = await sched.reconcile()

        assert counts["removed"] == 2
        assert job_ids(sched) == []
        assert sched.scheduled == {}

    @pytest.mark.asyncio
    async def test_reactivation_with_new_interval_leaves_one_job(self, store, settings):
        store.add_source(html_source("a", scrape_interval_minutes=60))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        await sched.reconcile()

        store.configure_source("a", is_active=False)
        await sched.reconcile()
        store.configure_source("a", is_active=True, scrape_interval_minutes=10)
        await sched.reconcile()

        assert job_ids(sched) == ["source:a"]
        assert sched.scheduled["a"].interval_minutes == 10

    @pytest.mark.asyncio
    async def test_notify_source_changed(self, store, settings):
        store.add_source(html_source("a", scrape_interval_minutes=60))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        await sched.reconcile()

        store.configure_source("a", scrape_interval_minutes=120)
        await sched.notify_source_changed("a")
        assert sched.scheduled["a"].cron == "0 */2 * * *"

        store.remove_source("a")
        await sched.notify_source_changed("a")
        assert job_ids(sched) == []


class TestTriggerScrape:
    @pytest.mark.asyncio
    async def test_unknown_source(self, store, settings):
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))
        with pytest.raises(ScrapeTriggerError) as exc_info:
            await sched.trigger_scrape("missing")
        assert exc_info.value.cause_kind == "not-found"
        assert exc_info.value.to_dict()["kind"] == "not-found"

    @pytest.mark.asyncio
    async def test_inactive_source(self, store, settings):
        store.add_source(html_source("a", is_active=False))
        runner = GatedRunner(ok_result, gated=False)
        sched = ScrapeScheduler(store, settings, runner=runner)
        with pytest.raises(ScrapeTriggerError) as exc_info:
            await sched.trigger_scrape("a")
        assert exc_info.value.cause_kind == "inactive"
        assert exc_info.value.hint
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_success(self, store, settings):
        store.add_source(html_source("a"))
        runner = GatedRunner(ok_result, gated=False)
        sched = ScrapeScheduler(store, settings, runner=runner)
        result = await sched.trigger_scrape("a")
        assert result.success
        assert runner.calls == ["a"]
        assert not sched.is_busy("a")

    @pytest.mark.asyncio
    async def test_failure_carries_hint_and_result(self, store, settings):
        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(challenged_result(False), gated=False))
        await sched.reconcile()

        with pytest.raises(ScrapeTriggerError) as exc_info:
            await sched.trigger_scrape("a")
        error = exc_info.value
        assert error.cause_kind == "bot-challenge"
        assert error.hint == "Switch to a feed-based source."
        assert not error.deactivated
        assert error.result.failed_stage == RunStage.FETCHING
        assert job_ids(sched) == ["source:a"]

    @pytest.mark.asyncio
    async def test_deactivation_removes_job(self, store, settings):
        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(challenged_result(True), gated=False))
        await sched.reconcile()

        with pytest.raises(ScrapeTriggerError) as exc_info:
            await sched.trigger_scrape("a")
        assert exc_info.value.deactivated
        assert exc_info.value.to_dict()["auto_deactivated"] is True
        assert job_ids(sched) == []
        assert "a" not in sched.scheduled


class TestPassIsolation:
    @pytest.mark.asyncio
    async def test_scheduled_tick_skipped_while_running(self, store, settings):
        store.add_source(html_source("a"))
        runner = GatedRunner(ok_result)
        sched = ScrapeScheduler(store, settings, runner=runner)

        manual = asyncio.create_task(sched.trigger_scrape("a"))
        assert await wait_until(lambda: runner.active == 1)
        assert sched.is_busy("a")

        await sched._run_scheduled("a")
        assert runner.calls == ["a"]

        runner.release.set()
        assert (await manual).success

    @pytest.mark.asyncio
    async def test_manual_triggers_wait_for_each_other(self, store, settings):
        store.add_source(html_source("a"))
        runner = GatedRunner(ok_result)
        sched = ScrapeScheduler(store, settings, runner=runner)

        first = asyncio.create_task(sched.trigger_scrape("a"))
        assert await wait_until(lambda: runner.active == 1)
        second = asyncio.create_task(sched.trigger_scrape("a"))
        await asyncio.sleep(0.05)
        assert runner.calls == ["a"]

        runner.release.set()
        await asyncio.gather(first, second)
        assert runner.calls == ["a", "a"]
        assert runner.max_active == 1

    @pytest.mark.asyncio
    async def test_worker_pool_bounds_concurrency(self, store, settings):
        settings.worker_pool_size = 2
        for source_id in ("a", "b", "c", "d"):
            store.add_source(html_source(source_id))
        runner = GatedRunner(ok_result)
        sched = ScrapeScheduler(store, settings, runner=runner)

        batch = asyncio.create_task(sched.run_active_once())
        assert await wait_until(lambda: runner.active == 2)
        await asyncio.sleep(0.05)
        assert runner.active == 2

        runner.release.set()
        results = await batch
        assert len(results) == 4
        assert runner.max_active == 2

    @pytest.mark.asyncio
    async def test_deactivation_cancels_in_flight_pass(self, store, settings):
        store.add_source(html_source("a"))
        runner = GatedRunner(ok_result)
        sched = ScrapeScheduler(store, settings, runner=runner)

        manual = asyncio.create_task(sched.trigger_scrape("a"))
        assert await wait_until(lambda: runner.active == 1)

        store.configure_source("a", is_active=False)
        await sched.notify_source_changed("a")

        with pytest.raises(ScrapeTriggerError) as exc_info:
            await manual
        assert exc_info.value.cause_kind == "cancelled"
        assert runner.active == 0

    @pytest.mark.asyncio
    async def test_scheduled_pass_failure_is_contained(self, store, settings):
        def explode(source):
            raise RuntimeError("parser crashed")

        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(explode, gated=False))

        await sched._run_scheduled("a")
        assert not sched.is_busy("a")

    @pytest.mark.asyncio
    async def test_scheduled_tick_for_inactive_source_drops_job(self, store, settings):
        store.add_source(html_source("a"))
        runner = GatedRunner(ok_result, gated=False)
        sched = ScrapeScheduler(store, settings, runner=runner)
        await sched.reconcile()

        store.configure_source("a", is_active=False)
        await sched._run_scheduled("a")

        assert runner.calls == []
        assert job_ids(sched) == []

    @pytest.mark.asyncio
    async def test_run_active_once_reports_completed_passes(self, store, settings):
        def flaky(source):
            if source.id == "b":
                raise RuntimeError("boom")
            return ok_result(source)

        store.add_source(html_source("a"))
        store.add_source(html_source("b"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(flaky, gated=False))

        results = await sched.run_active_once()
        assert [r.source_id for r in results] == ["a"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, settings):
        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))

        await sched.start()
        try:
            assert sched.running
            assert sched.scheduler.running
            assert sched.scheduler.get_job(RECONCILE_JOB_ID) is not None
            assert sched.scheduler.get_job(job_id_for("a")) is not None
        finally:
            await sched.stop()

        assert not sched.running
        assert sched.scheduled == {}

    @pytest.mark.asyncio
    async def test_disabled(self, store, settings):
        settings.scheduler_disabled = True
        store.add_source(html_source("a"))
        sched = ScrapeScheduler(store, settings, runner=GatedRunner(ok_result, gated=False))

        await sched.start()
        assert not sched.running
        assert sched.scheduler.get_jobs() == []
