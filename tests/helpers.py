"""
Shared test doubles and fixture loading.
"""
import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from jobingest.crawler.strategy import FetchHints, FetchResult, FetchStrategy
from jobingest.models import JobRecord, SourceDescriptor, SourceKind

FIXTURES = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def make_source(
    source_id: str = "src-1",
    url: str = "https://careers.acme.example/feed.rss",
    kind: SourceKind = SourceKind.XML_FEED,
    **fields,
) -> SourceDescriptor:
    return SourceDescriptor(id=source_id, name=fields.pop("name", f"Source {source_id}"), url=url, kind=kind, **fields)


def make_record(
    title: str,
    external_id: str,
    source_id: str = "src-1",
    origin: str = "source",
    **fields,
) -> JobRecord:
    return JobRecord(
        source_id=source_id,
        external_id=external_id,
        external_id_origin=origin,
        scraped_at=fields.pop("scraped_at", datetime(2025, 1, 15, tzinfo=timezone.utc)),
        title=title,
        description=fields.pop("description", f"{title} description"),
        **fields,
    )


class ScriptedStrategy(FetchStrategy):
    """
    Fetch strategy that plays back outcomes in order: a string is served as
    the document, an exception instance is raised. The last outcome repeats.
    """

    def __init__(self, settings, name: str, outcomes=(), available: bool = True, delay: float = 0.0):
        self.name = name
        super().__init__(settings)
        self.outcomes = list(outcomes)
        self._available = available
        self.delay = delay
        self.calls = []

    @property
    def available(self) -> bool:
        return self._available

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return FetchResult(content=outcome, status=200, strategy=self.name, url=url, final_url=url)


class GatedRunner:
    """Source runner stand-in whose passes block until released"""

    def __init__(self, result_factory, gated: bool = True):
        self.result_factory = result_factory
        self.release = asyncio.Event()
        if not gated:
            self.release.set()
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def run(self, source: SourceDescriptor):
        self.calls.append(source.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.release.wait()
            return self.result_factory(source)
        finally:
            self.active -= 1


async def wait_until(predicate, attempts: int = 50):
    """Yield to the event loop until predicate() holds"""
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()
