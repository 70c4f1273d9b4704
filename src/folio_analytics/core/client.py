"""
Query client for the analytics tables.

Reads the raw page view log for every traffic and 404 metric, and the daily
rollup for per-day series. Works against any ``Database`` backend.

Filtering rules shared by every metric:

- Bot traffic (``is_bot = 1``) is never counted
- Traffic metrics count only non-404 views; 404 metrics count only 404 views
- Dates are inclusive on both ends and compared on the UTC calendar date

Ties in ranked lists are broken by the group key ascending so results are
deterministic across backends.
"""
import asyncio
import math
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from ..referrer import DIRECT_SOURCE
from .database import Database, from_db_timestamp
from .models import (
    AnalyticsSummary, DateRange, DayViews, NotFoundDetail, NotFoundStats,
    PageDetail, PageReferrers, PageStats, PageTrendPoint, Paginated404s,
    PaginatedPages, PaginatedReferrers, RecentReferrer, ReferrerDetail,
    ReferrerPages, ReferrerStats, ReferrerSummary, TrafficSource,
)

# WHERE fragments; each expects (start, end) params for the date window
TRAFFIC_FILTER = "is_bot = 0 AND status_code != 404 AND date(created_at) >= ? AND date(created_at) <= ?"
NOT_FOUND_FILTER = "is_bot = 0 AND status_code = 404 AND date(created_at) >= ? AND date(created_at) <= ?"

DEFAULT_PAGE_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def total_pages(total: int, limit: int) -> int:
    if limit < 1:
        return 0
    return math.ceil(total / limit)


class AnalyticsClient:
    """Client for querying analytics data."""

    def __init__(self, db: Database, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or _utcnow

    async def _query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        """Execute a SQL query against the configured backend."""
        return await self.db.query(sql, params)

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()

    def range_for_days(self, days: int) -> DateRange:
        """Window ending today (UTC) and starting ``days`` days earlier."""
        end = self.today()
        return DateRange(start=end - timedelta(days=days), end=end)

    @staticmethod
    def _window(start_date: date, end_date: date) -> list[str]:
        return [start_date.isoformat(), end_date.isoformat()]

    # =========================================================================
    # SUMMARY
    # =========================================================================

    async def get_summary(self, start_date: date, end_date: date) -> AnalyticsSummary:
        """Compute every overview metric for the window.

        Metrics are fetched concurrently; any failing query fails the summary.
        """
        if not DateRange(start=start_date, end=end_date).is_valid:
            return AnalyticsSummary()

        (
            (total_views, unique_visitors),
            top_pages,
            top_referrers,
            total_referrers,
            recent_referrers,
            views_by_day,
            traffic_sources,
            total_404s,
            top_404s,
        ) = await asyncio.gather(
            self.get_totals(start_date, end_date),
            self.get_top_pages(start_date, end_date),
            self.get_top_referrers(start_date, end_date),
            self.get_referrer_count(start_date, end_date),
            self.get_recent_referrers(start_date, end_date),
            self.get_views_by_day(start_date, end_date),
            self.get_traffic_sources(start_date, end_date),
            self.get_404_total(start_date, end_date),
            self.get_top_404s(start_date, end_date),
        )

        return AnalyticsSummary(
            total_page_views=total_views,
            unique_visitors=unique_visitors,
            total_404s=total_404s,
            top_pages=top_pages,
            top_referrers=top_referrers,
            total_referrers=total_referrers,
            recent_referrers=recent_referrers,
            views_by_day=views_by_day,
            traffic_sources=traffic_sources,
            top_404s=top_404s,
        )

    async def get_totals(self, start_date: date, end_date: date) -> tuple[int, int]:
        """Return (page views, distinct sessions) for the window."""
        results = await self._query(
            f"""
            SELECT
                COUNT(*) as views,
                COUNT(DISTINCT session_id) as visitors
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER}
            """,
            self._window(start_date, end_date),
        )
        row = results[0] if results else {}
        return row.get("views") or 0, row.get("visitors") or 0

    # =========================================================================
    # PAGES
    # =========================================================================

    async def get_top_pages(self, start_date: date, end_date: date, limit: int = 10) -> List[PageStats]:
        """Get top pages by views."""
        results = await self._query(
            f"""
            SELECT
                page_path,
                COUNT(*) as views,
                COUNT(DISTINCT session_id) as visitors
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER}
            GROUP BY page_path
            ORDER BY views DESC, page_path ASC
            LIMIT ?
            """,
            self._window(start_date, end_date) + [limit],
        )

        return [
            PageStats(path=r["page_path"], views=r["views"], unique_visitors=r["visitors"])
            for r in results
        ]

    async def get_page_trends(self, page_path: str, start_date: date, end_date: date) -> List[PageTrendPoint]:
        """Daily views of one page, read from the daily rollup."""
        results = await self._query(
            """
            SELECT date, SUM(page_views) as views
            FROM analytics_daily_stats
            WHERE page_path = ? AND date >= ? AND date <= ?
            GROUP BY date
            ORDER BY date ASC
            """,
            [page_path] + self._window(start_date, end_date),
        )
        return [PageTrendPoint(date=r["date"], views=r["views"] or 0) for r in results]

    # =========================================================================
    # SOURCES
    # =========================================================================

    async def get_top_referrers(self, start_date: date, end_date: date, limit: int = 10) -> List[ReferrerSummary]:
        """Get external referrer domains by visits."""
        results = await self._query(
            f"""
            SELECT
                referrer_domain,
                COUNT(*) as visits,
                COUNT(DISTINCT session_id) as visitors
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER} AND referrer_domain IS NOT NULL
            GROUP BY referrer_domain
            ORDER BY visits DESC, referrer_domain ASC
            LIMIT ?
            """,
            self._window(start_date, end_date) + [limit],
        )

        return [
            ReferrerSummary(domain=r["referrer_domain"], visits=r["visits"], unique_visitors=r["visitors"])
            for r in results
        ]

    async def get_referrer_count(self, start_date: date, end_date: date) -> int:
        """Distinct external referrer domains that sent traffic in the window."""
        results = await self._query(
            f"""
            SELECT COUNT(DISTINCT referrer_domain) as domains
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER} AND referrer_domain IS NOT NULL
            """,
            self._window(start_date, end_date),
        )
        return (results[0].get("domains") or 0) if results else 0

    async def get_recent_referrers(self, start_date: date, end_date: date, limit: int = 20) -> List[RecentReferrer]:
        """Latest individual referred visits, newest first."""
        results = await self._query(
            f"""
            SELECT referrer_domain, referrer_url, created_at
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER} AND referrer_domain IS NOT NULL
            ORDER BY created_at DESC, id ASC
            LIMIT ?
            """,
            self._window(start_date, end_date) + [limit],
        )

        return [
            RecentReferrer(
                domain=r["referrer_domain"],
                url=r["referrer_url"],
                visited_at=from_db_timestamp(r["created_at"]),
            )
            for r in results
        ]

    async def get_traffic_sources(self, start_date: date, end_date: date, limit: int = 15) -> List[TrafficSource]:
        """Views grouped by source: UTM source, else referrer domain, else direct."""
        results = await self._query(
            f"""
            SELECT
                CASE
                    WHEN utm_source IS NOT NULL THEN utm_source
                    WHEN referrer_domain IS NOT NULL THEN referrer_domain
                    ELSE '{DIRECT_SOURCE}'
                END as source,
                COUNT(*) as visits
            FROM analytics_page_views
            WHERE {TRAFFIC_FILTER}
            GROUP BY source
            ORDER BY visits DESC, source ASC
            LIMIT ?
            """,
            self._window(start_date, end_date) + [limit],
        )
        return [TrafficSource(source=r["source"], visits=r["visits"]) for r in results]

    async def get_referrer_stats(self, limit: int = 50) -> List[ReferrerStats]:
        """All-time referrer rollup rows, busiest first."""
        results = await self._query(
            """
            SELECT *
            FROM analytics_referrers
            ORDER BY total_visits DESC, referrer_domain ASC
            LIMIT ?
            """,
            [limit],
        )

        return [
            ReferrerStats(
                id=r["id"],
                referrer_domain=r["referrer_domain"],
                referrer_url_sample=r.get("referrer_url_sample"),
                total_visits=r["total_visits"],
                unique_visitors=r["unique_visitors"],
                first_seen_at=from_db_timestamp(r["first_seen_at"]),
                last_seen_at=from_db_timestamp(r["last_seen_at"]),
            )
            for r in results
        ]

    # =========================================================================
    # TIME SERIES
    # =========================================================================

    async def get_views_by_day(self, start_date: date, end_date: date) -> List[DayViews]:
        """Per-day totals from the daily rollup, oldest first.

        The rollup is written for every ingested event, so unlike the
        raw-log metrics these counts include bot and 404 views.
        """
        results = await self._query(
            """
            SELECT
                date,
                SUM(page_views) as views,
                SUM(unique_visitors) as visitors
            FROM analytics_daily_stats
            WHERE date >= ? AND date <= ?
            GROUP BY date
            ORDER BY date ASC
            """,
            self._window(start_date, end_date),
        )

        return [
            DayViews(date=r["date"], views=r["views"] or 0, visitors=r["visitors"] or 0)
            for r in results
        ]

    # =========================================================================
    # 404s
    # =========================================================================

    async def get_404_total(self, start_date: date, end_date: date) -> int:
        results = await self._query(
            f"SELECT COUNT(*) as hits FROM analytics_page_views WHERE {NOT_FOUND_FILTER}",
            self._window(start_date, end_date),
        )
        return (results[0].get("hits") or 0) if results else 0

    async def get_top_404s(self, start_date: date, end_date: date, limit: int = 10) -> List[NotFoundStats]:
        """Most requested missing paths."""
        results = await self._query(
            f"""
            SELECT
                page_path,
                COUNT(*) as hits,
                MAX(created_at) as last_hit
            FROM analytics_page_views
            WHERE {NOT_FOUND_FILTER}
            GROUP BY page_path
            ORDER BY hits DESC, page_path ASC
            LIMIT ?
            """,
            self._window(start_date, end_date) + [limit],
        )

        return [
            NotFoundStats(path=r["page_path"], hits=r["hits"], last_hit=from_db_timestamp(r["last_hit"]))
            for r in results
        ]

    # =========================================================================
    # DRILL-DOWN
    # =========================================================================

    @staticmethod
    def _is_empty_request(start_date: date, end_date: date, page: int, limit: int) -> bool:
        return not DateRange(start=start_date, end=end_date).is_valid or page < 1 or limit < 1

    async def _count(self, sql: str, params: list) -> int:
        results = await self._query(sql, params)
        return (results[0].get("total") or 0) if results else 0

    async def get_all_pages(
        self,
        start_date: date,
        end_date: date,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> PaginatedPages:
        """Every visited page, paginated, by views."""
        if self._is_empty_request(start_date, end_date, page, limit):
            return PaginatedPages(page=page, limit=limit)

        window = self._window(start_date, end_date)
        total, results = await asyncio.gather(
            self._count(
                f"SELECT COUNT(DISTINCT page_path) as total FROM analytics_page_views WHERE {TRAFFIC_FILTER}",
                window,
            ),
            self._query(
                f"""
                SELECT
                    page_path,
                    COUNT(*) as views,
                    COUNT(DISTINCT session_id) as visitors,
                    MAX(created_at) as last_visit
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER}
                GROUP BY page_path
                ORDER BY views DESC, page_path ASC
                LIMIT ? OFFSET ?
                """,
                window + [limit, (page - 1) * limit],
            ),
        )

        return PaginatedPages(
            pages=[self._page_detail(r) for r in results],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    async def get_all_referrers(
        self,
        start_date: date,
        end_date: date,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> PaginatedReferrers:
        """Every external referrer domain, paginated, by visits."""
        if self._is_empty_request(start_date, end_date, page, limit):
            return PaginatedReferrers(page=page, limit=limit)

        window = self._window(start_date, end_date)
        total, results = await asyncio.gather(
            self._count(
                f"""
                SELECT COUNT(DISTINCT referrer_domain) as total
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND referrer_domain IS NOT NULL
                """,
                window,
            ),
            self._query(
                f"""
                SELECT
                    referrer_domain,
                    COUNT(*) as visits,
                    COUNT(DISTINCT session_id) as visitors,
                    MAX(created_at) as last_visit
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND referrer_domain IS NOT NULL
                GROUP BY referrer_domain
                ORDER BY visits DESC, referrer_domain ASC
                LIMIT ? OFFSET ?
                """,
                window + [limit, (page - 1) * limit],
            ),
        )

        return PaginatedReferrers(
            referrers=[self._referrer_detail(r) for r in results],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    async def get_all_404s(
        self,
        start_date: date,
        end_date: date,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Paginated404s:
        """Every missing path, paginated, with the latest referrer seen for it."""
        if self._is_empty_request(start_date, end_date, page, limit):
            return Paginated404s(page=page, limit=limit)

        window = self._window(start_date, end_date)
        total, results = await asyncio.gather(
            self._count(
                f"SELECT COUNT(DISTINCT page_path) as total FROM analytics_page_views WHERE {NOT_FOUND_FILTER}",
                window,
            ),
            self._query(
                f"""
                SELECT
                    p.page_path,
                    COUNT(*) as hits,
                    MAX(p.created_at) as last_hit,
                    (
                        SELECT r.referrer_domain
                        FROM analytics_page_views r
                        WHERE r.page_path = p.page_path
                            AND r.is_bot = 0 AND r.status_code = 404
                            AND r.referrer_domain IS NOT NULL
                            AND date(r.created_at) >= ? AND date(r.created_at) <= ?
                        ORDER BY r.created_at DESC
                        LIMIT 1
                    ) as referrer
                FROM analytics_page_views p
                WHERE p.is_bot = 0 AND p.status_code = 404
                    AND date(p.created_at) >= ? AND date(p.created_at) <= ?
                GROUP BY p.page_path
                ORDER BY hits DESC, p.page_path ASC
                LIMIT ? OFFSET ?
                """,
                window + window + [limit, (page - 1) * limit],
            ),
        )

        return Paginated404s(
            errors=[
                NotFoundDetail(
                    path=r["page_path"],
                    hits=r["hits"],
                    last_hit=from_db_timestamp(r["last_hit"]),
                    referrer=r.get("referrer"),
                )
                for r in results
            ],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    async def get_referrers_for_page(
        self,
        page_path: str,
        start_date: date,
        end_date: date,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> PageReferrers:
        """Referrer domains that sent traffic to one page."""
        if self._is_empty_request(start_date, end_date, page, limit):
            return PageReferrers(page_path=page_path, page=page, limit=limit)

        params = self._window(start_date, end_date) + [page_path]
        total, results = await asyncio.gather(
            self._count(
                f"""
                SELECT COUNT(DISTINCT referrer_domain) as total
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND page_path = ? AND referrer_domain IS NOT NULL
                """,
                params,
            ),
            self._query(
                f"""
                SELECT
                    referrer_domain,
                    COUNT(*) as visits,
                    COUNT(DISTINCT session_id) as visitors,
                    MAX(created_at) as last_visit
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND page_path = ? AND referrer_domain IS NOT NULL
                GROUP BY referrer_domain
                ORDER BY visits DESC, referrer_domain ASC
                LIMIT ? OFFSET ?
                """,
                params + [limit, (page - 1) * limit],
            ),
        )

        return PageReferrers(
            page_path=page_path,
            referrers=[self._referrer_detail(r) for r in results],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    async def get_pages_from_referrer(
        self,
        referrer_domain: str,
        start_date: date,
        end_date: date,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> ReferrerPages:
        """Pages visited from one referrer domain."""
        referrer_domain = referrer_domain.lower()
        if self._is_empty_request(start_date, end_date, page, limit):
            return ReferrerPages(referrer_domain=referrer_domain, page=page, limit=limit)

        params = self._window(start_date, end_date) + [referrer_domain]
        total, results = await asyncio.gather(
            self._count(
                f"""
                SELECT COUNT(DISTINCT page_path) as total
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND referrer_domain = ?
                """,
                params,
            ),
            self._query(
                f"""
                SELECT
                    page_path,
                    COUNT(*) as views,
                    COUNT(DISTINCT session_id) as visitors,
                    MAX(created_at) as last_visit
                FROM analytics_page_views
                WHERE {TRAFFIC_FILTER} AND referrer_domain = ?
                GROUP BY page_path
                ORDER BY views DESC, page_path ASC
                LIMIT ? OFFSET ?
                """,
                params + [limit, (page - 1) * limit],
            ),
        )

        return ReferrerPages(
            referrer_domain=referrer_domain,
            pages=[self._page_detail(r) for r in results],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
        )

    @staticmethod
    def _page_detail(row: dict) -> PageDetail:
        return PageDetail(
            path=row["page_path"],
            views=row["views"],
            unique_visitors=row["visitors"],
            last_visit=from_db_timestamp(row.get("last_visit")),
        )

    @staticmethod
    def _referrer_detail(row: dict) -> ReferrerDetail:
        return ReferrerDetail(
            domain=row["referrer_domain"],
            visits=row["visits"],
            unique_visitors=row["visitors"],
            last_visit=from_db_timestamp(row["last_visit"]),
        )
