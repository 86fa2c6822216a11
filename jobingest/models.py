"""
Data model shared by the pipeline: source descriptors, raw and normalized jobs,
and per-pass run results.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

MIN_SCRAPE_INTERVAL_MINUTES = 5
DEFAULT_SCRAPE_INTERVAL_MINUTES = 60

# Fetch strategy names, in default preference order
STRATEGY_DIRECT = "direct"
STRATEGY_RENDERING_PROXY = "rendering-proxy"
STRATEGY_BROWSER = "browser"
DEFAULT_STRATEGY_ORDER = (STRATEGY_DIRECT, STRATEGY_RENDERING_PROXY, STRATEGY_BROWSER)

# Parser families
FAMILY_RSS = "rss"
FAMILY_PARTNER_XML = "partner-xml"
FAMILY_INDEED = "html-indeed"
FAMILY_JOOBLE = "html-jooble"
FAMILY_LINKEDIN = "html-linkedin"
FAMILY_GENERIC = "html-generic"
FEED_FAMILIES = (FAMILY_RSS, FAMILY_PARTNER_XML)


class SourceKind(str, Enum):
    HTML_SCRAPE = "html-scrape"
    XML_FEED = "xml-feed"
    API = "api"


class EmploymentType(str, Enum):
    FULL_TIME = "full-time"
    PART_TIME = "part-time"
    CONTRACT = "contract"
    INTERNSHIP = "internship"


class JobStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    DRAFT = "draft"


class RenderOptions(BaseModel):
    """Options forwarded to rendering strategies"""
    render_js: bool = True
    country_code: Optional[str] = None
    wait_ms: int = 0
    wait_selector: Optional[str] = None
    premium_proxy: bool = False
    block_resources: bool = True


class ScrapingConfig(BaseModel):
    """Per-source strategy hints and extraction selectors"""
    strategies: List[str] = Field(default_factory=lambda: list(DEFAULT_STRATEGY_ORDER))
    pinned_strategy: Optional[str] = None
    job_item_selector: Optional[str] = None
    title_selector: Optional[str] = None
    description_selector: Optional[str] = None
    location_selector: Optional[str] = None
    company_selector: Optional[str] = None
    salary_selector: Optional[str] = None
    link_selector: Optional[str] = None
    render: RenderOptions = Field(default_factory=RenderOptions)
    deactivate_on_bot_challenge: bool = False


class SourceDescriptor(BaseModel):
    id: str
    name: str
    url: str
    kind: SourceKind = SourceKind.HTML_SCRAPE
    family: Optional[str] = None
    is_active: bool = True
    scrape_interval_minutes: int = DEFAULT_SCRAPE_INTERVAL_MINUTES
    scraping_config: ScrapingConfig = Field(default_factory=ScrapingConfig)

    # Run bookkeeping, written by the source runner only
    last_scraped_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0

    @field_validator("scrape_interval_minutes", mode="before")
    @classmethod
    def _clamp_interval(cls, value):
        if value is None:
            return DEFAULT_SCRAPE_INTERVAL_MINUTES
        return max(MIN_SCRAPE_INTERVAL_MINUTES, int(value))

    @field_validator("scraping_config", mode="before")
    @classmethod
    def _default_config(cls, value):
        return ScrapingConfig() if value is None else value


class BookkeepingUpdate(BaseModel):
    """Fields the source runner writes back after a pass"""
    last_scraped_at: datetime
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    clear_error: bool = False
    consecutive_failures: Optional[int] = None
    is_active: Optional[bool] = None


@dataclass
class RawJob:
    """Job as extracted from a source document, before normalization"""
    title: str
    description: str = ""
    location: Optional[str] = None
    company: Optional[str] = None
    salary_text: Optional[str] = None
    job_type_text: Optional[str] = None
    external_id: Optional[str] = None
    url: Optional[str] = None
    published_at: Optional[datetime] = None


class Salary(BaseModel):
    min: float
    max: float
    currency: str = "EUR"


class JobRecord(BaseModel):
    id: Optional[str] = None
    source_id: str
    external_id: str
    external_url: Optional[str] = None
    external_id_origin: str = "source"
    scraped_at: datetime

    title: str
    description: str
    location: Optional[str] = None
    company: Optional[str] = None
    salary: Optional[Salary] = None
    job_type: EmploymentType = EmploymentType.FULL_TIME
    status: JobStatus = JobStatus.ACTIVE
    published_at: Optional[datetime] = None

    @property
    def dedup_key(self):
        """(source_id, external_id), or (source_id, title) for title-hash ids"""
        if self.external_id_origin == "hash":
            return (self.source_id, "title", self.title.strip().lower())
        return (self.source_id, "id", self.external_id)


class RunStage(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    NORMALIZING = "normalizing"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    source_id: str
    stage: RunStage = RunStage.IDLE
    found: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    family: Optional[str] = None
    strategy: Optional[str] = None
    failed_stage: Optional[RunStage] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    record_errors: List[str] = field(default_factory=list)
    remediation_hint: Optional[str] = None
    deactivated: bool = False

    @property
    def success(self) -> bool:
        return self.stage == RunStage.DONE

    @property
    def saved(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": "ok" if self.success else "fail",
            "stage": self.stage.value,
            "counts": {
                "found": self.found,
                "created": self.created,
                "updated": self.updated,
                "failed": self.failed,
                "skipped": self.skipped,
            },
            "family": self.family,
            "strategy": self.strategy,
            "duration_ms": self.duration_ms,
            "error": self.error_message,
            "error_kind": self.error_kind,
            "suggestion": self.remediation_hint,
            "auto_deactivated": self.deactivated,
        }
