"""Tests for PageViewRecorder against an in-memory SQLite store."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from folio_analytics.core.database import DatabaseError
from folio_analytics.core.ingest import MAX_LENGTHS, PageViewRecorder, sanitize_string
from folio_analytics.core.models import PageViewInput


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _event(**kwargs) -> PageViewInput:
    kwargs.setdefault("session_id", "1700000000000-abc123")
    kwargs.setdefault("page_path", "/")
    return PageViewInput(**kwargs)


class TestSanitizeString:
    def test_truncates_then_trims(self):
        assert sanitize_string("abc   def", 5) == "abc"

    def test_empty_after_trim_is_none(self):
        assert sanitize_string("    ", 10) is None

    def test_non_string_is_none(self):
        assert sanitize_string(42, 10) is None
        assert sanitize_string(None, 10) is None


class TestPageViewInput:
    def test_accepts_camel_case(self):
        event = PageViewInput.model_validate({"sessionId": "s1", "pagePath": "/a", "statusCode": 404})
        assert event.page_path == "/a"
        assert event.status_code == 404

    def test_ill_typed_fields_become_none(self):
        event = PageViewInput.model_validate({
            "sessionId": "s1",
            "pagePath": 123,
            "pageTitle": ["x"],
            "statusCode": "404",
            "utmSource": {"a": 1},
        })
        assert event.page_path is None
        assert event.page_title is None
        assert event.status_code is None
        assert event.utm_source is None

    def test_boolean_status_is_ignored(self):
        assert PageViewInput(session_id="s1", status_code=True).status_code is None


class TestRecord:
    def test_raw_row_written_with_defaults(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        view = run_async(recorder.record(_event(page_path=None)))

        rows = run_async(db.query("SELECT * FROM analytics_page_views"))
        assert len(rows) == 1
        assert rows[0]["id"] == view.id
        assert rows[0]["page_path"] == "/"
        assert rows[0]["status_code"] == 200
        assert rows[0]["is_bot"] == 0
        assert rows[0]["created_at"] == "2026-03-15 12:00:00.000"

    def test_fields_truncated_to_column_width(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        view = run_async(recorder.record(_event(
            page_path="/" + "p" * 600,
            page_title="t" * 400,
            utm_campaign="c" * 150,
            country="USA",
        )))

        assert len(view.page_path) == MAX_LENGTHS["page_path"]
        assert len(view.page_title) == MAX_LENGTHS["page_title"]
        assert len(view.utm_campaign) == MAX_LENGTHS["utm_campaign"]
        assert view.country == "US"

    def test_referrer_domain_capped_and_taken_from_stored_url(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        run_async(recorder.record(_event(referrer="https://" + "a" * 3000 + ".com/x")))

        rows = run_async(db.query(
            "SELECT length(referrer_domain) as domain_len, length(referrer_url) as url_len "
            "FROM analytics_page_views"
        ))
        assert rows[0]["url_len"] == MAX_LENGTHS["referrer_url"]
        assert rows[0]["domain_len"] == MAX_LENGTHS["referrer_domain"]
        referrers = run_async(db.query("SELECT length(referrer_domain) as n FROM analytics_referrers"))
        daily = run_async(db.query("SELECT length(referrer_domain) as n FROM analytics_daily_stats"))
        assert referrers == daily == [{"n": MAX_LENGTHS["referrer_domain"]}]

    def test_referrer_domain_lowercased(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        view = run_async(recorder.record(_event(referrer="https://News.YCombinator.com/item?id=1")))

        assert view.referrer_domain == "news.ycombinator.com"
        assert view.referrer_url == "https://News.YCombinator.com/item?id=1"

    def test_unparseable_referrer_kept_without_domain(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        view = run_async(recorder.record(_event(referrer="not a url")))

        assert view.referrer_url == "not a url"
        assert view.referrer_domain is None
        rows = run_async(db.query("SELECT * FROM analytics_referrers"))
        assert rows == []

    def test_referrer_rollup_inserted_then_incremented(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        run_async(recorder.record(_event(referrer="https://google.com/search?q=a")))
        clock.advance(minutes=5)
        run_async(recorder.record(_event(referrer="https://google.com/search?q=b")))

        rows = run_async(db.query("SELECT * FROM analytics_referrers"))
        assert len(rows) == 1
        row = rows[0]
        assert row["total_visits"] == 2
        assert row["unique_visitors"] == 2
        assert row["referrer_url_sample"] == "https://google.com/search?q=b"
        assert row["first_seen_at"] == "2026-03-15 12:00:00.000"
        assert row["last_seen_at"] == "2026-03-15 12:05:00.000"

    def test_direct_traffic_shares_one_daily_row(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        for _ in range(3):
            run_async(recorder.record(_event(page_path="/about")))

        rows = run_async(db.query("SELECT * FROM analytics_daily_stats"))
        assert len(rows) == 1
        assert rows[0]["date"] == "2026-03-15"
        assert rows[0]["referrer_domain"] == ""
        assert rows[0]["page_views"] == 3

    def test_daily_rows_split_by_referrer(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)

        run_async(recorder.record(_event(page_path="/a", referrer="https://google.com/")))
        run_async(recorder.record(_event(page_path="/a")))

        rows = run_async(db.query("SELECT referrer_domain, page_views FROM analytics_daily_stats ORDER BY referrer_domain"))
        assert rows == [
            {"referrer_domain": "", "page_views": 1},
            {"referrer_domain": "google.com", "page_views": 1},
        ]

    def test_rollup_failure_keeps_raw_row(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)
        run_async(db.execute("DROP TABLE analytics_daily_stats"))

        view = run_async(recorder.record(_event(referrer="https://google.com/")))

        rows = run_async(db.query("SELECT id FROM analytics_page_views"))
        assert [r["id"] for r in rows] == [view.id]
        referrers = run_async(db.query("SELECT total_visits FROM analytics_referrers"))
        assert referrers == [{"total_visits": 1}]

    def test_raw_insert_failure_raises(self, clock):
        db = AsyncMock()
        db.execute.side_effect = DatabaseError("disk full")
        recorder = PageViewRecorder(db, clock=clock)

        with pytest.raises(DatabaseError):
            run_async(recorder.record(_event()))
        assert db.execute.call_count == 1


class TestMaintenance:
    def test_prune_keeps_recent_rows_and_rollups(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)
        run_async(recorder.record(_event(page_path="/old", referrer="https://google.com/")))
        clock.advance(days=100)
        run_async(recorder.record(_event(page_path="/new")))

        deleted = run_async(recorder.prune_page_views(days_to_keep=90))

        assert deleted == 1
        paths = run_async(db.query("SELECT page_path FROM analytics_page_views"))
        assert paths == [{"page_path": "/new"}]
        referrers = run_async(db.query("SELECT * FROM analytics_referrers"))
        assert len(referrers) == 1

    def test_rebuild_matches_live_rollup(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)
        run_async(recorder.record(_event(page_path="/a", referrer="https://google.com/")))
        run_async(recorder.record(_event(page_path="/a", referrer="https://google.com/")))
        run_async(recorder.record(_event(page_path="/b")))
        live = run_async(db.query(
            "SELECT date, page_path, referrer_domain, page_views, unique_visitors "
            "FROM analytics_daily_stats ORDER BY page_path, referrer_domain"
        ))

        run_async(db.execute("UPDATE analytics_daily_stats SET page_views = 999"))
        written = run_async(recorder.rebuild_daily_stats(date(2026, 3, 15), date(2026, 3, 15)))

        rebuilt = run_async(db.query(
            "SELECT date, page_path, referrer_domain, page_views, unique_visitors "
            "FROM analytics_daily_stats ORDER BY page_path, referrer_domain"
        ))
        assert written == 2
        assert rebuilt == live

    def test_rebuild_inverted_range_is_noop(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)
        assert run_async(recorder.rebuild_daily_stats(date(2026, 3, 15), date(2026, 3, 1))) == 0

    def test_rebuild_keeps_rollups_of_pruned_days(self, db, clock):
        recorder = PageViewRecorder(db, clock=clock)
        run_async(recorder.record(_event(page_path="/old")))
        clock.advance(days=100)
        run_async(recorder.record(_event(page_path="/new")))
        run_async(recorder.prune_page_views(days_to_keep=90))

        run_async(recorder.rebuild_daily_stats(date(2026, 3, 1), date(2026, 6, 30)))

        rows = run_async(db.query(
            "SELECT date, page_path, page_views FROM analytics_daily_stats ORDER BY date"
        ))
        assert rows == [
            {"date": "2026-03-15", "page_path": "/old", "page_views": 1},
            {"date": "2026-06-23", "page_path": "/new", "page_views": 1},
        ]
