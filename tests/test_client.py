"""Tests for AnalyticsClient query methods against a mocked query seam."""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

from folio_analytics.core.client import AnalyticsClient
from folio_analytics.core.models import (
    AnalyticsSummary, PageDetail, Paginated, Paginated404s, PaginatedPages, PaginatedReferrers,
)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


START = date(2026, 3, 1)
END = date(2026, 3, 15)


def _get_client() -> AnalyticsClient:
    return AnalyticsClient(AsyncMock(), clock=lambda: datetime(2026, 3, 15, tzinfo=timezone.utc))


class TestGetTotals:
    def test_returns_views_and_visitors(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[{"views": 120, "visitors": 45}])

        assert run_async(client.get_totals(START, END)) == (120, 45)

    def test_handles_empty_result(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        assert run_async(client.get_totals(START, END)) == (0, 0)

    def test_handles_null_counts(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[{"views": None, "visitors": None}])

        assert run_async(client.get_totals(START, END)) == (0, 0)

    def test_query_excludes_bots_and_404s(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        run_async(client.get_totals(START, END))

        sql, params = client._query.call_args.args
        assert "is_bot = 0" in sql
        assert "status_code != 404" in sql
        assert params == ["2026-03-01", "2026-03-15"]


class TestTopLists:
    def test_top_pages_maps_rows(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[
            {"page_path": "/", "views": 10, "visitors": 7},
            {"page_path": "/about", "views": 4, "visitors": 4},
        ])

        pages = run_async(client.get_top_pages(START, END))

        assert [p.path for p in pages] == ["/", "/about"]
        assert pages[0].views == 10
        assert pages[0].unique_visitors == 7

    def test_top_pages_passes_limit_last(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        run_async(client.get_top_pages(START, END, limit=3))

        sql, params = client._query.call_args.args
        assert params[-1] == 3
        assert "ORDER BY views DESC, page_path ASC" in sql

    def test_top_referrers_requires_domain(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[{"referrer_domain": "google.com", "visits": 3, "visitors": 2}])

        referrers = run_async(client.get_top_referrers(START, END))

        sql, _ = client._query.call_args.args
        assert "referrer_domain IS NOT NULL" in sql
        assert referrers[0].domain == "google.com"
        assert referrers[0].unique_visitors == 2

    def test_recent_referrers_parse_timestamps(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[
            {"referrer_domain": "t.co", "referrer_url": "https://t.co/x", "created_at": "2026-03-14 08:30:00.000"},
        ])

        recent = run_async(client.get_recent_referrers(START, END))

        assert recent[0].visited_at == datetime(2026, 3, 14, 8, 30, tzinfo=timezone.utc)
        assert recent[0].url == "https://t.co/x"

    def test_traffic_sources_case_expression(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[{"source": "direct", "visits": 9}])

        sources = run_async(client.get_traffic_sources(START, END))

        sql, params = client._query.call_args.args
        assert "WHEN utm_source IS NOT NULL THEN utm_source" in sql
        assert "ELSE 'direct'" in sql
        assert params[-1] == 15
        assert sources[0].source == "direct"

    def test_top_404s_only_count_404s(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[
            {"page_path": "/old", "hits": 5, "last_hit": "2026-03-10 10:00:00.000"},
        ])

        errors = run_async(client.get_top_404s(START, END))

        sql, _ = client._query.call_args.args
        assert "status_code = 404" in sql
        assert errors[0].path == "/old"
        assert errors[0].hits == 5


class TestViewsByDay:
    def test_reads_daily_rollup(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[
            {"date": "2026-03-14", "views": 5, "visitors": 4},
            {"date": "2026-03-15", "views": None, "visitors": None},
        ])

        days = run_async(client.get_views_by_day(START, END))

        sql, _ = client._query.call_args.args
        assert "FROM analytics_daily_stats" in sql
        assert [d.date for d in days] == ["2026-03-14", "2026-03-15"]
        assert days[1].views == 0


class TestGetSummary:
    def test_inverted_range_is_empty_without_queries(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        summary = run_async(client.get_summary(END, START))

        assert summary == AnalyticsSummary()
        client._query.assert_not_called()

    def test_camel_case_json(self):
        summary = AnalyticsSummary(total_page_views=3, total_404s=1)
        data = summary.to_json()

        assert data["totalPageViews"] == 3
        assert data["total404s"] == 1
        assert data["top404s"] == []
        assert "viewsByDay" in data


class TestDrillDownPagination:
    def _mock_query(self, total: int, rows: list[dict]):
        async def query(sql, params=None):
            if "as total" in sql:
                return [{"total": total}]
            return rows
        return AsyncMock(side_effect=query)

    def test_all_pages_offset_and_total_pages(self):
        client = _get_client()
        client._query = self._mock_query(51, [
            {"page_path": "/a", "views": 3, "visitors": 2, "last_visit": "2026-03-15 09:00:00.000"},
        ])

        result = run_async(client.get_all_pages(START, END, page=3, limit=25))

        assert isinstance(result, PaginatedPages)
        assert result.total == 51
        assert result.total_pages == 3
        assert result.items[0].path == "/a"

        page_call = [c for c in client._query.call_args_list if "LIMIT ? OFFSET ?" in c.args[0]][0]
        assert page_call.args[1][-2:] == [25, 50]

    def test_out_of_bounds_page_is_empty(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        result = run_async(client.get_all_pages(START, END, page=0, limit=25))

        assert result.items == []
        client._query.assert_not_called()

    def test_zero_limit_is_empty(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[])

        result = run_async(client.get_all_referrers(START, END, page=1, limit=0))

        assert result.items == []

    def test_404s_include_latest_referrer(self):
        client = _get_client()
        client._query = self._mock_query(1, [
            {"page_path": "/gone", "hits": 2, "last_hit": "2026-03-15 09:00:00.000", "referrer": "old-blog.net"},
        ])

        result = run_async(client.get_all_404s(START, END))

        assert result.errors[0].referrer == "old-blog.net"
        assert result.to_json()["errors"][0]["lastHit"].startswith("2026-03-15T09:00:00")

    def test_page_referrers_filters_on_path(self):
        client = _get_client()
        client._query = self._mock_query(0, [])

        result = run_async(client.get_referrers_for_page("/blog/post-1", START, END))

        assert result.page_path == "/blog/post-1"
        assert result.to_json()["pagePath"] == "/blog/post-1"
        for call in client._query.call_args_list:
            assert "/blog/post-1" in call.args[1]

    def test_referrer_pages_normalizes_domain(self):
        client = _get_client()
        client._query = self._mock_query(0, [])

        result = run_async(client.get_pages_from_referrer("Google.COM", START, END))

        assert result.referrer_domain == "google.com"
        assert result.to_json()["referrerDomain"] == "google.com"


class TestPaginatedItems:
    def test_items_alias_the_list_field(self):
        pages = PaginatedPages(total=1, pages=[PageDetail(path="/a", views=1, unique_visitors=1)])

        assert pages.items is pages.pages
        assert PaginatedReferrers().items == []
        assert Paginated404s().items == []

    def test_base_carries_only_pagination_fields(self):
        assert not hasattr(Paginated(), "items")
        assert set(Paginated.model_fields) == {"total", "page", "limit", "total_pages"}


class TestReferrerCount:
    def test_ignores_direct_traffic(self):
        client = _get_client()
        client._query = AsyncMock(return_value=[{"domains": 3}])

        count = run_async(client.get_referrer_count(START, END))

        sql, _ = client._query.call_args.args
        assert "COUNT(DISTINCT referrer_domain)" in sql
        assert "referrer_domain IS NOT NULL" in sql
        assert count == 3
