"""
Public ingestion endpoint.

``POST /track`` accepts one page view from a beacon, enriches it from the
request headers (device, browser, OS, bot flag, country) and hands it to the
recorder. No authentication; rate-limited per client IP.
"""
import logging
import re

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..core.database import DatabaseError
from ..core.ingest import PageViewRecorder
from ..core.models import PageViewInput
from ..ratelimit import RateLimiter, RateLimits, client_ip, rate_limit_headers
from ..user_agent import classify_user_agent

logger = logging.getLogger(__name__)

_ACCEPT_LANGUAGE_REGION = re.compile(r"[a-z]{2}-([A-Z]{2})")


def country_from_headers(headers) -> str | None:
    """Two-letter country from edge proxy headers, else from Accept-Language.

    Cloudflare (``CF-IPCountry``) and Vercel (``X-Vercel-IP-Country``) set a
    country derived from the client IP; the IP itself is never read here.
    """
    for name in ("CF-IPCountry", "X-Vercel-IP-Country"):
        value = headers.get(name)
        if value and len(value) == 2:
            return value.upper()

    accept_language = headers.get("Accept-Language")
    if accept_language:
        match = _ACCEPT_LANGUAGE_REGION.search(accept_language)
        if match:
            return match.group(1)
    return None


def create_collect_router(recorder: PageViewRecorder, rate_limiter: RateLimiter) -> APIRouter:
    """Create the public tracking router.

    Args:
        recorder: Writes page views and rollups
        rate_limiter: Shared limiter; this router uses the ``track`` action
    """
    router = APIRouter(tags=["analytics"])

    @router.get("/track")
    async def track_health():
        """Health check for uptime monitors and load balancers."""
        return {"status": "ok"}

    @router.post("/track")
    async def track(request: Request):
        """Record one page view."""
        limit = rate_limiter.check("track", client_ip(request), RateLimits.TRACK)
        headers = rate_limit_headers(limit)
        if not limit.allowed:
            return JSONResponse({"error": "Rate limit exceeded"}, status_code=429, headers=headers)

        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        session_id = body.get("sessionId")
        if not isinstance(session_id, str) or not session_id.strip():
            return JSONResponse({"error": "Invalid payload"}, status_code=400)

        client = classify_user_agent(request.headers.get("User-Agent"))

        # Device, browser, OS, country and bot flag come only from headers
        event = PageViewInput(
            session_id=session_id,
            page_path=body.get("pagePath"),
            page_title=body.get("pageTitle"),
            referrer=body.get("referrer"),
            status_code=body.get("statusCode"),
            utm_source=body.get("utmSource"),
            utm_medium=body.get("utmMedium"),
            utm_campaign=body.get("utmCampaign"),
            utm_term=body.get("utmTerm"),
            utm_content=body.get("utmContent"),
            device_type=client.device_type.value,
            browser=client.browser,
            os=client.os,
            country=country_from_headers(request.headers),
            is_bot=client.is_bot,
        )

        try:
            await recorder.record(event)
        except DatabaseError:
            logger.exception("Failed to record page view")
            return JSONResponse({"success": False}, status_code=500)

        return JSONResponse({"success": True}, headers=headers)

    return router
