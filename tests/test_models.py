"""
Tests for the shared data model.
"""
from jobingest.models import (
    DEFAULT_STRATEGY_ORDER,
    RunResult,
    RunStage,
    ScrapingConfig,
    SourceDescriptor,
)
from helpers import make_record


class TestSourceDescriptor:
    def test_interval_minimum(self):
        source = SourceDescriptor(id="a", name="A", url="https://a.example", scrape_interval_minutes=2)
        assert source.scrape_interval_minutes == 5

    def test_interval_default(self):
        source = SourceDescriptor(id="a", name="A", url="https://a.example", scrape_interval_minutes=None)
        assert source.scrape_interval_minutes == 60

    def test_null_config_gets_defaults(self):
        source = SourceDescriptor(id="a", name="A", url="https://a.example", scraping_config=None)
        assert isinstance(source.scraping_config, ScrapingConfig)
        assert tuple(source.scraping_config.strategies) == DEFAULT_STRATEGY_ORDER
        assert source.scraping_config.render.render_js is True

    def test_kind_from_string(self):
        source = SourceDescriptor.model_validate({"id": "a", "name": "A", "url": "https://a.example", "kind": "xml-feed"})
        assert source.kind.value == "xml-feed"


class TestJobRecord:
    def test_dedup_key_by_id(self):
        assert make_record("Cook", "42").dedup_key == ("src-1", "id", "42")

    def test_dedup_key_by_title_for_hash_ids(self):
        record = make_record("  Head Cook ", "gen-abc", origin="hash")
        assert record.dedup_key == ("src-1", "title", "head cook")


class TestRunResult:
    def test_success_includes_partial(self):
        result = RunResult(source_id="a", stage=RunStage.DONE, found=10, created=9, failed=1)
        assert result.success
        assert result.saved == 9

    def test_to_dict(self):
        result = RunResult(
            source_id="a",
            stage=RunStage.FAILED,
            failed_stage=RunStage.FETCHING,
            error_kind="bot-challenge",
            error_message="blocked",
            remediation_hint="use a feed",
            deactivated=True,
        )
        data = result.to_dict()
        assert data["status"] == "fail"
        assert data["stage"] == "failed"
        assert data["error_kind"] == "bot-challenge"
        assert data["suggestion"] == "use a feed"
        assert data["auto_deactivated"] is True
        assert data["counts"]["found"] == 0
