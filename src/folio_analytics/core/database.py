"""
Storage backends for analytics data.

Both backends speak the SQLite dialect: Cloudflare D1 is SQLite behind an
HTTP API, and local mode uses a SQLite file. The query layer therefore
writes one set of SQL statements and runs them against either.
"""
import asyncio
import sqlite3
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional, Protocol

import httpx


class DatabaseError(Exception):
    """Raised when a statement fails in the storage backend."""
    pass


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime as the naive-UTC text SQLite's date functions accept."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="milliseconds")


def from_db_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class Database(Protocol):
    """Relational capability consumed by the query and ingestion layers."""

    async def query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        ...

    async def execute(self, sql: str, params: Optional[list] = None) -> int:
        ...


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS analytics_page_views (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        page_path TEXT NOT NULL,
        page_title TEXT,
        referrer_url TEXT,
        referrer_domain TEXT,
        utm_source TEXT,
        utm_medium TEXT,
        utm_campaign TEXT,
        utm_term TEXT,
        utm_content TEXT,
        device_type TEXT,
        browser TEXT,
        os TEXT,
        country TEXT,
        is_bot INTEGER NOT NULL DEFAULT 0,
        status_code INTEGER NOT NULL DEFAULT 200,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_page_views_created_at ON analytics_page_views (created_at)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_session_id ON analytics_page_views (session_id)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_page_path ON analytics_page_views (page_path)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_referrer_domain ON analytics_page_views (referrer_domain)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_status_code ON analytics_page_views (status_code)",
    "CREATE INDEX IF NOT EXISTS idx_page_views_utm ON analytics_page_views (utm_source, utm_medium, utm_campaign)",
    """
    CREATE TABLE IF NOT EXISTS analytics_referrers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        referrer_domain TEXT NOT NULL UNIQUE,
        referrer_url_sample TEXT,
        total_visits INTEGER NOT NULL DEFAULT 0,
        unique_visitors INTEGER NOT NULL DEFAULT 0,
        first_seen_at TEXT NOT NULL,
        last_seen_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_referrers_total_visits ON analytics_referrers (total_visits)",
    "CREATE INDEX IF NOT EXISTS idx_referrers_last_seen_at ON analytics_referrers (last_seen_at)",
    # referrer_domain is '' for direct traffic: SQLite treats NULLs as
    # distinct in a UNIQUE constraint, which would defeat the upsert.
    """
    CREATE TABLE IF NOT EXISTS analytics_daily_stats (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL,
        page_path TEXT NOT NULL,
        referrer_domain TEXT NOT NULL DEFAULT '',
        page_views INTEGER NOT NULL DEFAULT 0,
        unique_visitors INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        UNIQUE (date, page_path, referrer_domain)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_daily_stats_date ON analytics_daily_stats (date)",
    "CREATE INDEX IF NOT EXISTS idx_daily_stats_page_path ON analytics_daily_stats (page_path)",
]


async def init_schema(db: Database) -> None:
    """Create analytics tables and indexes if they don't exist."""
    for statement in SCHEMA:
        await db.execute(statement)


class D1Database:
    """Cloudflare D1 over its HTTP query API."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.timeout = timeout
        self._transport = transport
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    async def _post(self, sql: str, params: Optional[list]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"sql": sql, "params": params or []},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise DatabaseError(f"D1 request failed: {exc}") from exc

            data = response.json()
            if not data.get("success"):
                raise DatabaseError(f"D1 query failed: {data.get('errors')}")

            results = data.get("result", [])
            return results[0] if results else {}

    async def query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        """Execute a SQL query against D1."""
        result = await self._post(sql, params)
        return result.get("results", [])

    async def execute(self, sql: str, params: Optional[list] = None) -> int:
        """Execute a statement and return the number of rows changed."""
        result = await self._post(sql, params)
        return (result.get("meta") or {}).get("changes", 0)


class SQLiteDatabase:
    """Local SQLite file (or ``":memory:"``).

    One connection shared across threads; statements run in a worker thread
    so the event loop isn't blocked, serialized by a lock.
    """

    def __init__(self, path: str):
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = Lock()

    def _run(self, sql: str, params: Optional[list]) -> tuple[list[dict], int]:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params or [])
                rows = [dict(row) for row in cursor.fetchall()]
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DatabaseError(f"SQLite statement failed: {exc}") from exc
            return rows, cursor.rowcount

    async def query(self, sql: str, params: Optional[list] = None) -> list[dict]:
        rows, _ = await asyncio.to_thread(self._run, sql, params)
        return rows

    async def execute(self, sql: str, params: Optional[list] = None) -> int:
        _, changes = await asyncio.to_thread(self._run, sql, params)
        return max(changes, 0)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
