"""
Write side of the analytics store.

Each tracked page view becomes three writes, in order:

1. an append to the raw page view log (the source of truth)
2. an upsert of the referrer rollup, when the view has an external referrer
3. an upsert of the daily rollup for (today, page, referrer)

The writes are a best-effort sequence, not a transaction. A failed rollup is
logged and leaves the raw row in place; rollups can be rebuilt from the log
with ``rebuild_daily_stats``. Counters are bumped with
``ON CONFLICT ... DO UPDATE SET n = n + 1`` so concurrent events for the same
key never lose an increment.
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from ..referrer import extract_domain
from .database import Database, DatabaseError, to_db_timestamp
from .models import DailyStat, DateRange, PageView, PageViewInput

logger = logging.getLogger(__name__)

# Column widths of analytics_page_views
MAX_LENGTHS = {
    "session_id": 64,
    "page_path": 500,
    "page_title": 300,
    "referrer_url": 2000,
    "referrer_domain": 253,
    "utm_source": 100,
    "utm_medium": 100,
    "utm_campaign": 100,
    "utm_term": 100,
    "utm_content": 100,
    "device_type": 20,
    "browser": 50,
    "os": 50,
    "country": 2,
}

DEFAULT_STATUS_CODE = 200


def sanitize_string(value, max_length: int) -> str | None:
    """Truncate to ``max_length`` and trim; empty or non-string becomes None."""
    if not value or not isinstance(value, str):
        return None
    return value[:max_length].strip() or None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageViewRecorder:
    """Records page views and maintains the referrer and daily rollups."""

    def __init__(self, db: Database, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or _utcnow

    async def record(self, event: PageViewInput) -> PageView:
        """Store one page view plus its rollups. Returns the stored row.

        Raises:
            DatabaseError: if the raw log insert fails. Rollup failures are
                logged and swallowed.
        """
        now = self.clock()
        referrer_url = sanitize_string(event.referrer, MAX_LENGTHS["referrer_url"])

        view = PageView(
            id=uuid.uuid4().hex,
            session_id=sanitize_string(event.session_id, MAX_LENGTHS["session_id"]) or "unknown",
            page_path=sanitize_string(event.page_path, MAX_LENGTHS["page_path"]) or "/",
            page_title=sanitize_string(event.page_title, MAX_LENGTHS["page_title"]),
            referrer_url=referrer_url,
            referrer_domain=sanitize_string(extract_domain(referrer_url), MAX_LENGTHS["referrer_domain"]),
            utm_source=sanitize_string(event.utm_source, MAX_LENGTHS["utm_source"]),
            utm_medium=sanitize_string(event.utm_medium, MAX_LENGTHS["utm_medium"]),
            utm_campaign=sanitize_string(event.utm_campaign, MAX_LENGTHS["utm_campaign"]),
            utm_term=sanitize_string(event.utm_term, MAX_LENGTHS["utm_term"]),
            utm_content=sanitize_string(event.utm_content, MAX_LENGTHS["utm_content"]),
            device_type=sanitize_string(event.device_type, MAX_LENGTHS["device_type"]),
            browser=sanitize_string(event.browser, MAX_LENGTHS["browser"]),
            os=sanitize_string(event.os, MAX_LENGTHS["os"]),
            country=sanitize_string(event.country, MAX_LENGTHS["country"]),
            is_bot=event.is_bot,
            status_code=event.status_code or DEFAULT_STATUS_CODE,
            created_at=now,
        )

        await self._insert_page_view(view)

        if view.referrer_domain:
            try:
                await self._upsert_referrer(view.referrer_domain, referrer_url, now)
            except DatabaseError as exc:
                logger.warning(f"Referrer rollup failed for {view.referrer_domain}: {exc}")

        # One event is one view and, per the rollup approximation, one visitor
        stat = DailyStat(
            date=now.astimezone(timezone.utc).date().isoformat(),
            page_path=view.page_path,
            referrer_domain=view.referrer_domain or "",
            page_views=1,
            unique_visitors=1,
        )
        try:
            await self._upsert_daily_stat(stat, now)
        except DatabaseError as exc:
            logger.warning(f"Daily rollup failed for {view.page_path}: {exc}")

        return view

    async def _insert_page_view(self, view: PageView) -> None:
        await self.db.execute(
            """
            INSERT INTO analytics_page_views (
                id, session_id, page_path, page_title, referrer_url, referrer_domain,
                utm_source, utm_medium, utm_campaign, utm_term, utm_content,
                device_type, browser, os, country, is_bot, status_code, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                view.id, view.session_id, view.page_path, view.page_title,
                view.referrer_url, view.referrer_domain,
                view.utm_source, view.utm_medium, view.utm_campaign,
                view.utm_term, view.utm_content,
                view.device_type, view.browser, view.os, view.country,
                1 if view.is_bot else 0, view.status_code,
                to_db_timestamp(view.created_at),
            ],
        )

    async def _upsert_referrer(self, domain: str, url: str | None, now: datetime) -> None:
        ts = to_db_timestamp(now)
        await self.db.execute(
            """
            INSERT INTO analytics_referrers (
                referrer_domain, referrer_url_sample, total_visits, unique_visitors,
                first_seen_at, last_seen_at
            ) VALUES (?, ?, 1, 1, ?, ?)
            ON CONFLICT (referrer_domain) DO UPDATE SET
                total_visits = analytics_referrers.total_visits + 1,
                unique_visitors = analytics_referrers.unique_visitors + 1,
                referrer_url_sample = excluded.referrer_url_sample,
                last_seen_at = excluded.last_seen_at
            """,
            [domain, url, ts, ts],
        )

    async def _upsert_daily_stat(self, stat: DailyStat, now: datetime) -> None:
        await self.db.execute(
            """
            INSERT INTO analytics_daily_stats (
                date, page_path, referrer_domain, page_views, unique_visitors, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (date, page_path, referrer_domain) DO UPDATE SET
                page_views = analytics_daily_stats.page_views + excluded.page_views,
                unique_visitors = analytics_daily_stats.unique_visitors + excluded.unique_visitors,
                updated_at = excluded.updated_at
            """,
            [
                stat.date, stat.page_path, stat.referrer_domain,
                stat.page_views, stat.unique_visitors, to_db_timestamp(now),
            ],
        )

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def prune_page_views(self, days_to_keep: int = 90) -> int:
        """Delete raw page views older than ``days_to_keep`` days.

        Rollup tables are left untouched. Returns the number of rows deleted.
        """
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = await self.db.execute(
            "DELETE FROM analytics_page_views WHERE created_at < ?",
            [to_db_timestamp(cutoff)],
        )
        logger.info(f"Pruned {deleted} page views older than {days_to_keep} days")
        return deleted

    async def rebuild_daily_stats(self, start_date: date, end_date: date) -> int:
        """Recompute daily rollup rows for a date window from the raw log.

        Rows are overwritten only for keys that still have raw events; days
        whose events were pruned keep their rollups. Uses the same per-event
        visitor approximation as live ingestion so rebuilt and live rows
        agree. Returns the number of rows written.
        """
        if not DateRange(start=start_date, end=end_date).is_valid:
            return 0

        params = [start_date.isoformat(), end_date.isoformat()]
        written = await self.db.execute(
            """
            INSERT INTO analytics_daily_stats (
                date, page_path, referrer_domain, page_views, unique_visitors, updated_at
            )
            SELECT
                date(created_at),
                page_path,
                COALESCE(referrer_domain, ''),
                COUNT(*),
                COUNT(*),
                ?
            FROM analytics_page_views
            WHERE date(created_at) >= ? AND date(created_at) <= ?
            GROUP BY date(created_at), page_path, COALESCE(referrer_domain, '')
            ON CONFLICT (date, page_path, referrer_domain) DO UPDATE SET
                page_views = excluded.page_views,
                unique_visitors = excluded.unique_visitors,
                updated_at = excluded.updated_at
            """,
            [to_db_timestamp(self.clock())] + params,
        )
        logger.info(f"Rebuilt {written} daily stat rows for {params[0]}..{params[1]}")
        return written
