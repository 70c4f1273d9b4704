"""
Self-hosted, privacy-first page view analytics for a personal site.

Usage:
    from folio_analytics import setup_analytics

    analytics = setup_analytics(
        site_name="example.com",
        sqlite_path="analytics.db",
        passkey="pbkdf2:...",  # from folio_analytics.config.hash_passkey
    )

    @asynccontextmanager
    async def lifespan(app):
        await analytics.startup()
        yield

    app.include_router(analytics.collect_router, prefix="/api/analytics")
    app.include_router(analytics.api_router, prefix="/api/analytics")
    app.include_router(analytics.dashboard_router, prefix="/admin/analytics")

    # In templates: {{ analytics.tracking_script(request) }}
"""

import logging

from fastapi import Request

from .auth import PasskeyAuth
from .beacon import PageViewBeacon, tracking_script
from .cache import TTLCache
from .config import AnalyticsConfig
from .core.client import AnalyticsClient
from .core.database import D1Database, Database, SQLiteDatabase, init_schema
from .core.ingest import PageViewRecorder
from .core.models import AnalyticsSummary, PageView, PageViewInput
from .ratelimit import RateLimiter
from .routes import create_api_router, create_collect_router, create_dashboard_router

__version__ = "0.1.0"
__all__ = [
    "setup_analytics", "Analytics", "AnalyticsConfig", "AnalyticsClient",
    "PageViewRecorder", "PageViewBeacon", "PageView", "PageViewInput",
    "AnalyticsSummary", "tracking_script",
]

logger = logging.getLogger(__name__)


def create_database(config: AnalyticsConfig) -> Database:
    """Build the storage backend the config selects."""
    if config.uses_d1:
        return D1Database(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
        )
    return SQLiteDatabase(config.sqlite_path)


class Analytics:
    """Main analytics interface for a site.

    Owns the storage backend, query client, recorder, summary cache and rate
    limiter, and exposes one router per surface.
    """

    def __init__(self, config: AnalyticsConfig, db: Database | None = None, clock=None):
        self.config = config
        self.db = db or create_database(config)
        self.client = AnalyticsClient(self.db, clock=clock)
        self.recorder = PageViewRecorder(self.db, clock=clock)
        self.cache = TTLCache(ttl_seconds=config.cache_ttl_seconds)
        self.rate_limiter = RateLimiter()
        self.auth = PasskeyAuth(config)

        self.collect_router = create_collect_router(self.recorder, self.rate_limiter)
        self.api_router = create_api_router(config, self.client, self.auth, self.rate_limiter, self.cache)
        self.dashboard_router = create_dashboard_router(
            config, self.client, self.auth, self.rate_limiter, self.cache
        )

    async def startup(self) -> None:
        """Create tables if needed. Call once from the app's lifespan."""
        await init_schema(self.db)
        logger.info(f"Analytics ready for {self.config.site_name}")

    async def prune(self) -> int:
        """Apply the retention policy to the raw page view log."""
        deleted = await self.recorder.prune_page_views(self.config.retention_days)
        self.cache.invalidate()
        return deleted

    def tracking_script(
        self,
        request: Request | None = None,
        endpoint: str = "/api/analytics/track",
        status_code: int | None = None,
    ) -> str:
        """Generate the tracking script HTML for templates.

        Pass the current request so pages viewed by a signed-in admin render
        a script that never fires.
        """
        skip = request is not None and self.auth.verify_admin(request) is not None
        return tracking_script(endpoint, status_code, skip=skip)


def setup_analytics(
    site_name: str,
    sqlite_path: str | None = None,
    d1_database_id: str | None = None,
    cf_account_id: str | None = None,
    cf_api_token: str | None = None,
    passkey: str | None = None,
    **options,
) -> Analytics:
    """
    Set up analytics for a site.

    Args:
        site_name: Identifier for this site (e.g., "example.com")
        sqlite_path: Local SQLite database file
        d1_database_id: Cloudflare D1 database ID (instead of sqlite_path)
        cf_account_id: Cloudflare account ID
        cf_api_token: Cloudflare API token with D1 read/write access
        passkey: Passkey protecting the dashboard and query API. Without one,
                 both refuse every request.
        **options: Any other AnalyticsConfig field

    Returns:
        Analytics instance with routers and tracking_script()
    """
    config = AnalyticsConfig(
        site_name=site_name,
        sqlite_path=sqlite_path,
        d1_database_id=d1_database_id,
        cf_account_id=cf_account_id,
        cf_api_token=cf_api_token,
        passkey=passkey,
        **options,
    )
    return Analytics(config)
