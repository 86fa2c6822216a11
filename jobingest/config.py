"""
Runtime configuration for the ingestion pipeline.

All knobs come from environment variables (a .env file is loaded by the CLI
entry point). Values are read once when Settings is constructed.
"""
import os
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_FRAGILE_FAMILIES = "html-jooble"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"[config] Invalid integer for {name}: {value!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[config] Invalid number for {name}: {value!r}, using {default}")
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Settings:
    """Pipeline settings resolved from the environment."""

    def __init__(self, **overrides):
        self.request_timeout = _env_float("JOBINGEST_REQUEST_TIMEOUT", 30.0)
        self.pass_timeout = _env_float("JOBINGEST_PASS_TIMEOUT", 180.0)
        self.worker_pool_size = max(1, _env_int("JOBINGEST_WORKER_POOL_SIZE", 3))
        self.user_agent = os.getenv("JOBINGEST_USER_AGENT", DEFAULT_USER_AGENT)
        self.default_currency = os.getenv("JOBINGEST_DEFAULT_CURRENCY", "EUR").upper()
        self.fetch_max_retries = max(1, _env_int("JOBINGEST_FETCH_MAX_RETRIES", 2))

        # Rendering proxy (ScrapingBee)
        self.scrapingbee_api_key: Optional[str] = os.getenv("SCRAPINGBEE_API_KEY") or None
        self.rendering_proxy_enabled = _env_bool(
            "JOBINGEST_RENDERING_PROXY_ENABLED", bool(self.scrapingbee_api_key)
        )

        # Headless browser
        self.browser_enabled = _env_bool("JOBINGEST_BROWSER_ENABLED", True)
        self.browser_settle_ms = _env_int("JOBINGEST_BROWSER_SETTLE_MS", 3000)
        self.challenge_timeout_ms = _env_int("JOBINGEST_CHALLENGE_TIMEOUT_MS", 15000)

        # Scheduler
        self.reconcile_interval_seconds = max(30, _env_int("JOBINGEST_RECONCILE_INTERVAL_SECONDS", 300))
        self.scheduler_timezone = os.getenv("JOBINGEST_SCHEDULER_TIMEZONE", "UTC")
        self.scheduler_disabled = _env_bool("JOBINGEST_DISABLE_SCHEDULER", False)

        # Auto-deactivation when a pass ends in a bot challenge. The threshold is
        # compared with consecutive_failures, which counts failed passes of any
        # kind, so earlier transport or parse failures count toward it.
        self.auto_deactivate_families = _env_list(
            "JOBINGEST_AUTO_DEACTIVATE_FAMILIES", DEFAULT_FRAGILE_FAMILIES
        )
        self.auto_deactivate_threshold = max(1, _env_int("JOBINGEST_AUTO_DEACTIVATE_THRESHOLD", 1))

        self.database_url: Optional[str] = (
            os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL") or None
        )
        self.log_level = os.getenv("JOBINGEST_LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def rendering_proxy_available(self) -> bool:
        return self.rendering_proxy_enabled and bool(self.scrapingbee_api_key)

    def __repr__(self):
        return (
            f"Settings(pool={self.worker_pool_size}, timeout={self.request_timeout}s, "
            f"pass_timeout={self.pass_timeout}s, proxy={self.rendering_proxy_available}, "
            f"browser={self.browser_enabled}, currency={self.default_currency})"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.info(f"[config] {_settings!r}")
    return _settings
