"""
Error taxonomy for the ingestion pipeline.

Fetch errors carry a classification so the fetch chain can decide whether to
escalate to the next strategy, and the source runner can decide whether a
failure warrants deactivating the source.
"""
from typing import List, Optional


class IngestError(Exception):
    """Base class for all pipeline errors"""

    kind = "error"
    retryable = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FetchError(IngestError):
    """A strategy failed to obtain the document."""

    kind = "fetch-error"
    # Whether the fetch chain should try the next strategy
    escalate = False

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        strategy: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.strategy = strategy
        self.url = url
        self.attempts: List["FetchError"] = []

    def __str__(self):
        prefix = f"[{self.strategy}] " if self.strategy else ""
        return f"{prefix}{self.kind}: {self.message}"


class TransportError(FetchError):
    """DNS/connection failure or unexpected status. Retried on the next cycle."""

    kind = "transport-error"


class RateLimited(FetchError):
    """HTTP 429/403 from the target."""

    kind = "rate-limited"
    escalate = True

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class BotChallenge(FetchError):
    """An interstitial verification page was served instead of content."""

    kind = "bot-challenge"
    escalate = True


class NotFound(FetchError):
    kind = "not-found"
    retryable = False


class StrategyUnavailable(FetchError):
    """Strategy is disabled or missing credentials."""

    kind = "strategy-unavailable"
    escalate = True


class StrategyTimeout(FetchError):
    """A strategy exceeded its share of the pass deadline."""

    kind = "timeout"
    escalate = True


class ParseError(IngestError):
    """The document is malformed for the expected format."""

    kind = "parse-error"


class NormalizationError(IngestError):
    """A raw job is missing required fields."""

    kind = "normalization-error"


class SaveError(IngestError):
    """Storage rejected an individual record."""

    kind = "save-error"


class ScrapeTriggerError(IngestError):
    """Structured error returned to whoever triggered a manual scrape."""

    kind = "trigger-error"

    def __init__(
        self,
        message: str,
        *,
        source_id: Optional[str] = None,
        hint: Optional[str] = None,
        deactivated: bool = False,
        cause_kind: Optional[str] = None,
        result=None,
    ):
        super().__init__(message)
        self.source_id = source_id
        self.result = result
        self.hint = hint
        self.deactivated = deactivated
        self.cause_kind = cause_kind

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "error": self.message,
            "kind": self.cause_kind or self.kind,
            "suggestion": self.hint,
            "auto_deactivated": self.deactivated,
        }
