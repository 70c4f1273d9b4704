"""
Admin-only JSON query API.

One endpoint, ``GET /?action=...``, serving the overview summary, the
paginated drill-downs and two all-time views. Responses use camelCase keys.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..auth import PasskeyAuth
from ..cache import TTLCache
from ..config import AnalyticsConfig
from ..core.client import DEFAULT_PAGE_LIMIT, AnalyticsClient
from ..core.database import DatabaseError
from ..core.models import AnalyticsSummary
from ..ratelimit import RateLimiter, RateLimits, client_ip, rate_limit_headers

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_days(value: str | None, config: AnalyticsConfig) -> int:
    """Requested window, falling back to the default for unsupported values."""
    days = _parse_int(value, config.default_days)
    return days if days in config.dashboard_days else config.default_days


def parse_limit(value: str | None) -> int:
    return min(max(_parse_int(value, DEFAULT_PAGE_LIMIT), 1), MAX_PAGE_LIMIT)


async def load_summary(client: AnalyticsClient, cache: TTLCache, days: int) -> AnalyticsSummary:
    """Summary for the last ``days`` days, served from cache when fresh."""
    cache_key = ("summary", days)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    window = client.range_for_days(days)
    summary = await client.get_summary(window.start, window.end)
    cache.set(cache_key, summary)
    return summary


def create_api_router(
    config: AnalyticsConfig,
    client: AnalyticsClient,
    auth: PasskeyAuth,
    rate_limiter: RateLimiter,
    cache: TTLCache,
) -> APIRouter:
    """Create the admin query API router.

    Args:
        config: Analytics configuration
        client: Query client
        auth: Passkey cookie verifier
        rate_limiter: Shared limiter; this router uses the ``admin-api`` action
        cache: Summary cache, keyed by window size
    """
    router = APIRouter(tags=["analytics"])

    async def run_action(action: str, request: Request) -> JSONResponse:
        params = request.query_params
        days = parse_days(params.get("days"), config)
        page = _parse_int(params.get("page"), 1)
        limit = parse_limit(params.get("limit"))
        window = client.range_for_days(days)

        if action == "summary":
            summary = await load_summary(client, cache, days)
            return JSONResponse(summary.to_json())

        if action == "referrers":
            stats = await client.get_referrer_stats(limit)
            return JSONResponse({"referrers": [r.to_json() for r in stats]})

        if action == "page-trends":
            page_path = params.get("pagePath")
            if not page_path:
                return JSONResponse({"error": "Missing pagePath parameter"}, status_code=400)
            trends = await client.get_page_trends(page_path, window.start, window.end)
            return JSONResponse({"pagePath": page_path, "trends": [t.to_json() for t in trends]})

        if action == "all-pages":
            result = await client.get_all_pages(window.start, window.end, page, limit)
        elif action == "all-referrers":
            result = await client.get_all_referrers(window.start, window.end, page, limit)
        elif action == "all-404s":
            result = await client.get_all_404s(window.start, window.end, page, limit)
        elif action == "page-referrers":
            page_path = params.get("pagePath")
            if not page_path:
                return JSONResponse({"error": "Missing pagePath parameter"}, status_code=400)
            result = await client.get_referrers_for_page(page_path, window.start, window.end, page, limit)
        elif action == "referrer-pages":
            domain = params.get("domain")
            if not domain:
                return JSONResponse({"error": "Missing domain parameter"}, status_code=400)
            result = await client.get_pages_from_referrer(domain, window.start, window.end, page, limit)
        else:
            return JSONResponse({"error": "Unknown action"}, status_code=400)

        return JSONResponse(result.to_json())

    @router.get("/")
    async def query(request: Request):
        """Serve one analytics query; see module docstring for actions."""
        if auth.verify_admin(request) is None:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        limit = rate_limiter.check("admin-api", client_ip(request), RateLimits.ADMIN_API)
        headers = rate_limit_headers(limit)
        if not limit.allowed:
            return JSONResponse({"error": "Rate limit exceeded"}, status_code=429, headers=headers)

        action = request.query_params.get("action") or "summary"
        try:
            response = await run_action(action, request)
        except DatabaseError:
            logger.exception(f"Analytics query '{action}' failed")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

        response.headers.update(headers)
        return response

    return router
