"""
Pydantic models for analytics data.

API payloads are camelCase on the wire (``totalPageViews``, ``pagePath``)
and snake_case in Python; every model accepts either on input.
"""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        """Dump with camelCase keys and JSON-safe values."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Ingestion
# =============================================================================

_TEXT_FIELDS = (
    "page_path", "page_title", "referrer",
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "device_type", "browser", "os", "country",
)


class PageViewInput(CamelModel):
    """One tracked page view as submitted by a beacon.

    Only ``session_id`` is required. Optional fields with the wrong type are
    treated as absent rather than rejected; clients are imperfect and a
    partial event is still worth keeping.
    """
    session_id: str
    page_path: str | None = None
    page_title: str | None = None
    referrer: str | None = None
    status_code: int | None = None

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    # Filled in server-side from request headers, never by the beacon
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    is_bot: bool = False

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _drop_non_strings(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("status_code", mode="before")
    @classmethod
    def _drop_non_integers(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value


# =============================================================================
# Stored rows
# =============================================================================

class PageView(CamelModel):
    """A single row of the append-only page view log."""
    id: str
    session_id: str
    page_path: str
    page_title: str | None = None

    referrer_url: str | None = None
    referrer_domain: str | None = None

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None

    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None

    is_bot: bool = False
    status_code: int = 200
    created_at: datetime


class ReferrerStats(CamelModel):
    """All-time rollup row for one referrer domain."""
    id: int
    referrer_domain: str
    referrer_url_sample: str | None = None
    total_visits: int
    # +1 per recorded event, never deduplicated by session: an upper bound
    unique_visitors: int
    first_seen_at: datetime
    last_seen_at: datetime


class DailyStat(CamelModel):
    """Daily rollup cell keyed by (date, page_path, referrer_domain)."""
    date: str
    page_path: str
    referrer_domain: str | None = None
    page_views: int
    # Same per-event approximation as ReferrerStats.unique_visitors
    unique_visitors: int


# =============================================================================
# Summary
# =============================================================================

class PageStats(CamelModel):
    path: str
    views: int
    unique_visitors: int


class ReferrerSummary(CamelModel):
    domain: str
    visits: int
    unique_visitors: int


class RecentReferrer(CamelModel):
    domain: str
    url: str | None = None
    visited_at: datetime


class DayViews(CamelModel):
    date: str  # YYYY-MM-DD
    views: int
    visitors: int


class TrafficSource(CamelModel):
    source: str
    visits: int


class NotFoundStats(CamelModel):
    path: str
    hits: int
    last_hit: datetime


class AnalyticsSummary(CamelModel):
    """Everything the dashboard overview renders for one date range."""
    total_page_views: int = 0
    unique_visitors: int = 0
    total_404s: int = Field(0, alias="total404s")
    top_pages: list[PageStats] = Field(default_factory=list)
    top_referrers: list[ReferrerSummary] = Field(default_factory=list)
    total_referrers: int = 0  # distinct referrer domains, not capped like top_referrers
    recent_referrers: list[RecentReferrer] = Field(default_factory=list)
    views_by_day: list[DayViews] = Field(default_factory=list)
    traffic_sources: list[TrafficSource] = Field(default_factory=list)
    top_404s: list[NotFoundStats] = Field(default_factory=list, alias="top404s")


class PageTrendPoint(CamelModel):
    date: str
    views: int


# =============================================================================
# Drill-down
# =============================================================================

class PageDetail(CamelModel):
    path: str
    views: int
    unique_visitors: int
    last_visit: datetime | None = None


class ReferrerDetail(CamelModel):
    domain: str
    visits: int
    unique_visitors: int
    last_visit: datetime


class NotFoundDetail(CamelModel):
    path: str
    hits: int
    last_hit: datetime
    referrer: str | None = None  # most recent referrer domain seen for the path


class Paginated(CamelModel):
    """Common pagination fields; ``total`` counts distinct group keys."""
    total: int = 0
    page: int = 1
    limit: int = 50
    total_pages: int = 0


class PaginatedPages(Paginated):
    pages: list[PageDetail] = Field(default_factory=list)

    @property
    def items(self) -> list[PageDetail]:
        return self.pages


class PaginatedReferrers(Paginated):
    referrers: list[ReferrerDetail] = Field(default_factory=list)

    @property
    def items(self) -> list[ReferrerDetail]:
        return self.referrers


class Paginated404s(Paginated):
    errors: list[NotFoundDetail] = Field(default_factory=list)

    @property
    def items(self) -> list[NotFoundDetail]:
        return self.errors


class PageReferrers(PaginatedReferrers):
    """Referrers that sent traffic to one page."""
    page_path: str


class ReferrerPages(PaginatedPages):
    """Pages visited from one referrer domain."""
    referrer_domain: str


class DateRange(BaseModel):
    """Inclusive date range for queries."""
    start: date
    end: date

    @property
    def is_valid(self) -> bool:
        return self.end >= self.start
