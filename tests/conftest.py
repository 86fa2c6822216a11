"""
Pytest fixtures shared across the suite.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from jobingest.config import Settings
from jobingest.crawler.plugins import get_parser_registry
from jobingest.storage import InMemoryStore


@pytest.fixture
def settings():
    """Settings isolated from the environment: no proxy, no browser, short timeouts"""
    return Settings(
        request_timeout=2.0,
        pass_timeout=5.0,
        worker_pool_size=3,
        default_currency="EUR",
        fetch_max_retries=1,
        scrapingbee_api_key=None,
        rendering_proxy_enabled=False,
        browser_enabled=False,
        browser_settle_ms=0,
        challenge_timeout_ms=0,
        reconcile_interval_seconds=300,
        scheduler_timezone="UTC",
        scheduler_disabled=False,
        auto_deactivate_families=["html-jooble"],
        auto_deactivate_threshold=1,
        database_url=None,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def registry():
    return get_parser_registry()
