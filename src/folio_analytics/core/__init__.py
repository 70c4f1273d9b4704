"""
Core analytics module.

Contains the storage backends, data models, the ingestion recorder and the
query client.
"""

from .client import AnalyticsClient
from .database import D1Database, Database, DatabaseError, SQLiteDatabase, init_schema
from .ingest import PageViewRecorder, sanitize_string
from .models import (
    AnalyticsSummary,
    DailyStat,
    DateRange,
    DayViews,
    NotFoundDetail,
    NotFoundStats,
    PageDetail,
    PageReferrers,
    PageStats,
    PageTrendPoint,
    PageView,
    PageViewInput,
    Paginated404s,
    PaginatedPages,
    PaginatedReferrers,
    RecentReferrer,
    ReferrerDetail,
    ReferrerPages,
    ReferrerStats,
    ReferrerSummary,
    TrafficSource,
)

__all__ = [
    "PageView", "PageViewInput", "ReferrerStats", "DailyStat",
    "AnalyticsSummary", "PageStats", "ReferrerSummary", "RecentReferrer",
    "DayViews", "TrafficSource", "NotFoundStats", "PageTrendPoint",
    "PageDetail", "ReferrerDetail", "NotFoundDetail",
    "PaginatedPages", "PaginatedReferrers", "Paginated404s", "PageReferrers", "ReferrerPages",
    "DateRange",
    "Database", "DatabaseError", "D1Database", "SQLiteDatabase", "init_schema",
    "AnalyticsClient", "PageViewRecorder", "sanitize_string",
]
