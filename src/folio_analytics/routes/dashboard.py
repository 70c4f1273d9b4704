"""
Dashboard routes for Folio Analytics.

Server-rendered with Jinja2 templates: a passkey login, the overview page
and a drill-down page whose breadcrumb trail travels in the query string.
"""

import logging
from datetime import date, timedelta
from pathlib import Path
from urllib.parse import urlencode

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from ..auth import AUTH_COOKIE_MAX_AGE, AUTH_COOKIE_NAME, PasskeyAuth
from ..cache import TTLCache
from ..config import MIN_PASSKEY_LENGTH, AnalyticsConfig
from ..core.client import AnalyticsClient
from ..core.database import DatabaseError
from ..navigation import DrillDownNavigator, DrillDownView, FetchRequest
from ..ratelimit import RateLimiter, RateLimits, client_ip
from .api import load_summary, parse_days

logger = logging.getLogger(__name__)

# Days shown in the overview bar chart
CHART_DAYS = 14

LOAD_ERROR = "Failed to load analytics"
LOGIN_REQUIRED = "You must be logged in to view analytics"


def _format_number(value) -> str:
    """1234567 -> '1,234,567'."""
    try:
        return f"{int(value):,}"
    except (TypeError, ValueError):
        return str(value)


def _format_datetime(value) -> str:
    if value is None:
        return ""
    return value.strftime("%b %d, %H:%M")


def _percent(part: int, whole: int) -> float:
    """Share of ``whole`` as a 0-100 float; 0 when there is nothing to share."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def _chart_bars(views_by_day: list, start: date, end: date) -> list[dict]:
    """One bar per calendar day for the last CHART_DAYS days of the window.

    Days without rollup rows are drawn as zero; heights are relative to the
    busiest day shown.
    """
    first = max(start, end - timedelta(days=CHART_DAYS - 1))
    by_date = {d.date: d for d in views_by_day}
    days = []
    day = first
    while day <= end:
        stat = by_date.get(day.isoformat())
        days.append({
            "date": day.isoformat(),
            "views": stat.views if stat else 0,
            "visitors": stat.visitors if stat else 0,
        })
        day += timedelta(days=1)

    peak = max((d["views"] for d in days), default=0)
    for d in days:
        d["height"] = _percent(d["views"], peak)
    return days


def create_dashboard_router(
    config: AnalyticsConfig,
    client: AnalyticsClient,
    auth: PasskeyAuth,
    rate_limiter: RateLimiter,
    cache: TTLCache,
) -> APIRouter:
    """Create dashboard router with Jinja2 templates.

    Args:
        config: Analytics configuration
        client: Query client
        auth: Passkey cookie verifier
        rate_limiter: Shared limiter; login attempts use the ``login`` action
        cache: Summary cache shared with the query API
    """
    router = APIRouter(tags=["analytics"])

    template_dir = Path(__file__).parent.parent / "templates"
    templates = Jinja2Templates(directory=str(template_dir))
    templates.env.filters["number"] = _format_number
    templates.env.filters["datetime"] = _format_datetime

    def _common_context(days: int) -> dict:
        return {
            "site_name": config.effective_display_name,
            "days": days,
            "dashboard_days": config.dashboard_days,
        }

    async def _fetch(fetch: FetchRequest):
        window = client.range_for_days(fetch.days)
        args = (window.start, window.end, fetch.page, fetch.limit)
        if fetch.view == DrillDownView.PAGES:
            return await client.get_all_pages(*args)
        if fetch.view == DrillDownView.REFERRERS:
            return await client.get_all_referrers(*args)
        if fetch.view == DrillDownView.NOT_FOUND:
            return await client.get_all_404s(*args)
        if fetch.view == DrillDownView.PAGE_REFERRERS:
            return await client.get_referrers_for_page(fetch.context, *args)
        return await client.get_pages_from_referrer(fetch.context, *args)

    # -------------------------------------------------------------------------
    # Auth Routes
    # -------------------------------------------------------------------------

    @router.get("/login", response_class=HTMLResponse)
    async def login_page(request: Request, error: str = ""):
        """Render login page."""
        return templates.TemplateResponse(
            request,
            "login.html",
            {"site_name": config.effective_display_name, "error": error},
        )

    @router.post("/login")
    async def login_submit(request: Request, passkey: str = Form(...)):
        """Handle passkey login with rate limiting."""
        ip = client_ip(request)
        limit = rate_limiter.check("login", ip, RateLimits.LOGIN)
        if not limit.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many login attempts. Please try again in 15 minutes.",
            )

        if len(passkey) < MIN_PASSKEY_LENGTH:
            return RedirectResponse(
                url=f"./login?error=Passkey+must+be+at+least+{MIN_PASSKEY_LENGTH}+characters",
                status_code=303,
            )

        if not auth.check_passkey(passkey):
            logger.warning(f"Failed dashboard login for {config.site_name}")
            return RedirectResponse(url="./login?error=Invalid+passkey", status_code=303)

        rate_limiter.reset("login", ip)
        response = RedirectResponse(url="./", status_code=303)
        response.set_cookie(
            AUTH_COOKIE_NAME,
            auth.token,
            max_age=AUTH_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/logout")
    async def logout():
        """Clear auth cookie and redirect to login."""
        response = RedirectResponse(url="./login", status_code=303)
        response.delete_cookie(AUTH_COOKIE_NAME)
        return response

    # -------------------------------------------------------------------------
    # Dashboard Routes
    # -------------------------------------------------------------------------

    @router.get("/", response_class=HTMLResponse)
    async def overview_page(request: Request, days: str | None = None):
        """Render the overview for the selected window."""
        if auth.verify_admin(request) is None:
            return RedirectResponse(url=f"./login?{urlencode({'error': LOGIN_REQUIRED})}", status_code=303)

        window_days = parse_days(days, config)
        context = _common_context(window_days)
        window = client.range_for_days(window_days)

        try:
            summary = await load_summary(client, cache, window_days)
        except DatabaseError as exc:
            logger.error(f"Summary query failed: {exc}")
            context["error"] = LOAD_ERROR
            return templates.TemplateResponse(request, "overview.html", context, status_code=500)

        context.update({
            "summary": summary,
            "chart": _chart_bars(summary.views_by_day, window.start, window.end),
            "sources": [
                {"source": s.source, "visits": s.visits, "share": _percent(s.visits, summary.total_page_views)}
                for s in summary.traffic_sources
            ],
        })
        return templates.TemplateResponse(request, "overview.html", context)

    @router.get("/details", response_class=HTMLResponse)
    async def drilldown_page(
        request: Request,
        days: str | None = None,
        trail: str | None = None,
        view: str | None = None,
        into: str | None = None,
        context: str | None = None,
        crumb: int | None = None,
        page: int = 1,
    ):
        """Render one drill-down level.

        ``view`` opens a fresh drill-down, ``into`` + ``context`` nests one
        level deeper, ``crumb`` jumps back along ``trail``; with none of
        them the current level is re-rendered at ``page``.
        """
        if auth.verify_admin(request) is None:
            return RedirectResponse(url=f"./login?{urlencode({'error': LOGIN_REQUIRED})}", status_code=303)

        window_days = parse_days(days, config)
        try:
            navigator = DrillDownNavigator.from_query(trail, window_days, page, config.drilldown_page_size)
            if view:
                fetch = navigator.open(DrillDownView(view))
            elif into:
                fetch = navigator.drill_into(DrillDownView(into), context)
            elif crumb is not None:
                fetch = navigator.go_to(crumb)
            else:
                fetch = navigator.change_page(page)
        except (ValueError, IndexError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid drill-down request: {exc}") from None

        ctx = _common_context(window_days)
        ctx.update({"navigator": navigator, "fetch": fetch, "current_view": fetch.view.value})

        def link(**params) -> str:
            query = {"days": window_days, "trail": navigator.to_query()}
            query.update({k: v for k, v in params.items() if v is not None})
            return f"./details?{urlencode(query)}"

        ctx["link"] = link

        try:
            ctx["result"] = await _fetch(fetch)
        except DatabaseError as exc:
            logger.error(f"Drill-down query '{fetch.action}' failed: {exc}")
            ctx["error"] = LOAD_ERROR
            return templates.TemplateResponse(request, "drilldown.html", ctx, status_code=500)

        return templates.TemplateResponse(request, "drilldown.html", ctx)

    return router
