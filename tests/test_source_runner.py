"""
Tests for a full ingestion pass against saved documents and scripted fetch outcomes.
"""
from unittest.mock import AsyncMock, patch

import pytest

from jobingest.core.errors import BotChallenge, NotFound, TransportError
from jobingest.crawler.fetch_chain import FetchChain
from jobingest.crawler.source_runner import DEACTIVATED_PREFIX, SourceRunner
from jobingest.models import RunStage, ScrapingConfig, SourceKind
from helpers import ScriptedStrategy, load_fixture, make_source

JOOBLE_URL = "https://jooble.org/SearchResult?ukw=developer"
INDEED_URL = "https://it.indeed.com/jobs?q=python&l=Milano"


def runner_for(store, settings, registry, *outcomes, delay=0.0):
    strategy = ScriptedStrategy(settings, "direct", outcomes, delay=delay)
    return SourceRunner(store, settings, FetchChain([strategy]), registry), strategy


async def run_stored(runner, store, source_id="src-1"):
    return await runner.run(await store.get_source(source_id))


class TestSuccessfulPass:
    @pytest.mark.asyncio
    async def test_feed_created_then_updated(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"))

        first = await run_stored(runner, store)
        assert first.success
        assert (first.found, first.created, first.updated) == (2, 2, 0)
        assert first.family == "rss"
        assert first.strategy == "direct"

        second = await run_stored(runner, store)
        assert (second.created, second.updated) == (0, 2)
        assert len(store.jobs("src-1")) == 2

    @pytest.mark.asyncio
    async def test_records_normalized(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"))
        await run_stored(runner, store)

        jobs = {job.title: job for job in store.jobs()}
        backend = jobs["Backend Developer"]
        assert backend.external_id_origin == "hash"
        assert backend.external_url == "https://careers.acme.example/feed.rss"
        assert (backend.salary.min, backend.salary.max, backend.salary.currency) == (35000, 40000, "EUR")
        assert jobs["Part-time Customer Support Agent"].job_type.value == "part-time"

    @pytest.mark.asyncio
    async def test_bookkeeping_on_success(self, store, settings, registry):
        store.add_source(make_source(family="rss", consecutive_failures=3, last_error="transport-error: boom"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"))
        await run_stored(runner, store)

        source = await store.get_source("src-1")
        assert source.last_scraped_at is not None
        assert source.last_success_at is not None
        assert source.last_error is None
        assert source.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_partial_failure_is_still_success(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_ten_items_one_missing_title.xml"))
        result = await run_stored(runner, store)

        assert result.success
        assert (result.found, result.created, result.failed) == (10, 9, 1)
        assert result.record_errors == ["Job without title from source src-1"]
        source = await store.get_source("src-1")
        assert source.last_error.startswith("1 record(s) failed")
        assert source.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_search_url_fetched_as_feed(self, store, settings, registry):
        store.add_source(make_source(url=INDEED_URL, kind=SourceKind.HTML_SCRAPE, family="rss"))
        runner, strategy = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"))
        await run_stored(runner, store)
        assert strategy.calls == ["https://www.indeed.com/rss?q=python&l=Milano"]

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_does_not_fail_pass(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"))
        with patch.object(store, "update_source_bookkeeping", AsyncMock(side_effect=RuntimeError("db down"))):
            result = await run_stored(runner, store)
        assert result.success


class TestBotChallenge:
    @pytest.mark.asyncio
    async def test_fragile_family_deactivated(self, store, settings, registry):
        store.add_source(make_source(url=JOOBLE_URL, kind=SourceKind.HTML_SCRAPE))
        runner, _ = runner_for(store, settings, registry, BotChallenge("challenge page detected", status=403))
        result = await run_stored(runner, store)

        assert not result.success
        assert result.failed_stage == RunStage.FETCHING
        assert result.error_kind == "bot-challenge"
        assert result.family == "html-jooble"
        assert result.deactivated
        assert result.remediation_hint.startswith(DEACTIVATED_PREFIX)
        assert "Indeed RSS" in result.remediation_hint

        source = await store.get_source("src-1")
        assert not source.is_active
        assert source.consecutive_failures == 1
        assert source.last_error.startswith("bot-challenge:")
        assert "Indeed RSS" in source.last_error

    @pytest.mark.asyncio
    async def test_other_family_stays_active(self, store, settings, registry):
        store.add_source(make_source(url=INDEED_URL, kind=SourceKind.HTML_SCRAPE))
        runner, strategy = runner_for(store, settings, registry, BotChallenge("challenge page detected"))
        result = await run_stored(runner, store)

        assert result.family == "html-indeed"
        assert not result.deactivated
        assert "RSS" in result.remediation_hint
        assert strategy.calls == ["https://www.indeed.com/jobs?q=python&l=Milano"]
        assert (await store.get_source("src-1")).is_active

    @pytest.mark.asyncio
    async def test_opt_in_with_threshold(self, store, settings, registry):
        settings.auto_deactivate_threshold = 2
        config = ScrapingConfig(deactivate_on_bot_challenge=True)
        store.add_source(make_source(url="https://careers.acme.example/openings", kind=SourceKind.HTML_SCRAPE, scraping_config=config))
        runner, _ = runner_for(store, settings, registry, BotChallenge("challenge page detected"))

        first = await run_stored(runner, store)
        assert not first.deactivated
        assert (await store.get_source("src-1")).consecutive_failures == 1

        second = await run_stored(runner, store)
        assert second.deactivated
        source = await store.get_source("src-1")
        assert not source.is_active
        assert source.consecutive_failures == 2

    @pytest.mark.asyncio
    async def test_threshold_counts_failures_of_any_kind(self, store, settings, registry):
        settings.auto_deactivate_threshold = 2
        store.add_source(make_source(url=JOOBLE_URL, kind=SourceKind.HTML_SCRAPE))
        runner, _ = runner_for(
            store, settings, registry,
            TransportError("ConnectError"),
            BotChallenge("challenge page detected"),
        )

        first = await run_stored(runner, store)
        assert first.error_kind == "transport-error"
        assert not first.deactivated

        second = await run_stored(runner, store)
        assert second.deactivated
        assert not (await store.get_source("src-1")).is_active


class TestFailedPass:
    @pytest.mark.asyncio
    async def test_parse_error(self, store, settings, registry):
        store.add_source(make_source(url="https://partner.example/export.xml", family="partner-xml"))
        runner, _ = runner_for(store, settings, registry, '<?xml version="1.0"?><catalog><product/></catalog>')
        result = await run_stored(runner, store)

        assert result.failed_stage == RunStage.PARSING
        assert result.error_kind == "parse-error"
        assert result.remediation_hint is not None
        assert (await store.get_source("src-1")).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_not_found(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, NotFound("HTTP 404", status=404))
        result = await run_stored(runner, store)

        assert result.failed_stage == RunStage.FETCHING
        assert result.error_kind == "not-found"
        assert not result.deactivated
        assert result.to_dict()["status"] == "fail"

    @pytest.mark.asyncio
    async def test_pass_timeout(self, store, settings, registry):
        settings.pass_timeout = 0.1
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, load_fixture("rss_two_items.xml"), delay=1.0)
        result = await run_stored(runner, store)

        assert result.failed_stage == RunStage.FETCHING
        assert result.error_kind == "timeout"
        assert store.jobs() == []

    @pytest.mark.asyncio
    async def test_unknown_family(self, store, settings, registry):
        store.add_source(make_source(family="html-monster"))
        runner, strategy = runner_for(store, settings, registry, "unused")
        result = await run_stored(runner, store)

        assert result.error_kind == "unknown-family"
        assert strategy.calls == []

    @pytest.mark.asyncio
    async def test_consecutive_failures_accumulate(self, store, settings, registry):
        store.add_source(make_source(family="rss"))
        runner, _ = runner_for(store, settings, registry, NotFound("HTTP 404", status=404))
        for _ in range(3):
            await run_stored(runner, store)
        source = await store.get_source("src-1")
        assert source.consecutive_failures == 3
        assert source.is_active
