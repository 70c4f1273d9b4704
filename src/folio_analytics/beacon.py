"""
Client-side page view beacon.

Two renditions of the same rules:

- ``PageViewBeacon``: an async Python client, for server-rendered sites that
  report views themselves and for exercising the rules in tests
- ``tracking_script()``: the browser snippet sites embed in their templates

Rules, applied in order on every navigation:

1. Never track a recognized administrator
2. Skip the same path+query tracked less than 500 ms ago (duplicate mounts)
3. Skip while a previous call is still in flight
4. Wait ~100 ms so an asynchronously set page title is captured
5. Post ``{sessionId, pagePath, pageTitle, referrer, statusCode, utm*}``

Tracking is best-effort: every failure is logged at DEBUG and swallowed.
"""
import asyncio
import json
import logging
import secrets
import time
from typing import Callable, MutableMapping, Optional
from urllib.parse import urlparse

import httpx

from .referrer import clean_referrer
from .utm import parse_utm_query

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "folio_analytics_session"
TRACK_DEBOUNCE_MS = 500
TRACK_DELAY_MS = 100

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """``<epoch-ms>-<random base36>``: a per-tab visit id, not a user id."""
    return f"{int(time.time() * 1000)}-{_base36(secrets.randbits(56))}"


class PageViewBeacon:
    """Sends one page view per distinct navigation to the collect endpoint.

    Args:
        endpoint: Absolute URL of ``POST /track``
        storage: Per-tab key/value store holding the session id
        is_admin: Returns True when the current visitor is the site owner
        debounce_ms: Window in which a repeat of the same path+query is dropped
        delay_ms: Pause before sending
        clock: Monotonic seconds, injectable for tests
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
    """

    def __init__(
        self,
        endpoint: str,
        storage: Optional[MutableMapping[str, str]] = None,
        is_admin: Optional[Callable[[], bool]] = None,
        debounce_ms: int = TRACK_DEBOUNCE_MS,
        delay_ms: int = TRACK_DELAY_MS,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint
        self.storage = storage if storage is not None else {}
        self.is_admin = is_admin
        self.debounce_ms = debounce_ms
        self.delay_ms = delay_ms
        self.clock = clock
        self._transport = transport

        self._last_full_path: str | None = None
        self._last_tracked_at: float = 0.0
        self._in_flight = False
        self._tasks: set[asyncio.Task] = set()

    def session_id(self) -> str:
        """Read the session id from storage, creating it on first use."""
        try:
            session_id = self.storage.get(SESSION_STORAGE_KEY)
            if not session_id:
                session_id = generate_session_id()
                self.storage[SESSION_STORAGE_KEY] = session_id
            return session_id
        except Exception as exc:
            logger.debug(f"Session storage unavailable: {exc}")
            return generate_session_id()

    def _should_skip(self, full_path: str) -> str | None:
        """Reason to skip this navigation, or None to track it."""
        if self.is_admin is not None:
            try:
                if self.is_admin():
                    return "admin"
            except Exception as exc:
                logger.debug(f"Admin check failed: {exc}")
                return "admin check failed"

        elapsed_ms = (self.clock() - self._last_tracked_at) * 1000
        if full_path == self._last_full_path and elapsed_ms < self.debounce_ms:
            return "debounced"

        if self._in_flight:
            return "in flight"
        return None

    def build_payload(
        self,
        url: str,
        page_title: str | None = None,
        referrer: str | None = None,
        status_code: int | None = None,
    ) -> dict:
        parsed = urlparse(url)
        payload = {
            "sessionId": self.session_id(),
            "pagePath": parsed.path or "/",
            "pageTitle": page_title,
            "referrer": clean_referrer(referrer, parsed.hostname),
            "statusCode": status_code,
        }
        payload.update(parse_utm_query(parsed.query).to_payload())
        return {key: value for key, value in payload.items() if value is not None}

    async def track(
        self,
        url: str,
        page_title: str | None = None,
        referrer: str | None = None,
        status_code: int | None = None,
    ) -> bool:
        """Track a navigation to ``url``. Returns True if an event was sent."""
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            logger.debug(f"Not tracking unparseable URL: {exc}")
            return False
        full_path = (parsed.path or "/") + (f"?{parsed.query}" if parsed.query else "")

        reason = self._should_skip(full_path)
        if reason:
            logger.debug(f"Skipping page view for {full_path}: {reason}")
            return False

        self._in_flight = True
        self._last_full_path = full_path
        self._last_tracked_at = self.clock()
        try:
            if self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)
            payload = self.build_payload(url, page_title, referrer, status_code)
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload)
                response.raise_for_status()
            return True
        except Exception as exc:
            logger.debug(f"Analytics tracking error: {exc}")
            return False
        finally:
            self._in_flight = False

    def fire(
        self,
        url: str,
        page_title: str | None = None,
        referrer: str | None = None,
        status_code: int | None = None,
    ) -> asyncio.Task:
        """Schedule ``track`` in the background and return immediately."""
        task = asyncio.create_task(self.track(url, page_title, referrer, status_code))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def tracking_script(endpoint: str, status_code: int | None = None, skip: bool = False) -> str:
    """Generate the tracking script HTML for templates.

    Features:
    - Initial pageload tracking plus SPA navigation (pushState, replaceState,
      popstate)
    - Session id in sessionStorage, dropped with the tab
    - Same-host referrers dropped, UTM parameters forwarded
    - 500 ms debounce per path+query and an in-flight guard
    - Never fires when rendered with ``skip=True`` (signed-in admin) or when
      the page sets ``window.__folioAnalyticsSkip = true``

    Pass ``status_code=404`` from a not-found template.
    """
    return f'''<script>
(function(){{
  var w=window,d=document,l=location,h=history;
  var url={json.dumps(endpoint)};
  var status={json.dumps(status_code)};
  var skip={json.dumps(skip)};
  var KEY="{SESSION_STORAGE_KEY}",lastPath=null,lastAt=0,busy=false;

  function sid(){{
    try{{
      var s=sessionStorage.getItem(KEY);
      if(!s){{s=Date.now()+"-"+Math.random().toString(36).substring(2,15);sessionStorage.setItem(KEY,s)}}
      return s;
    }}catch(e){{return Date.now()+"-"+Math.random().toString(36).substring(2,15)}}
  }}

  function ref(){{
    var r=d.referrer;if(!r)return undefined;
    try{{if(new URL(r).hostname===l.hostname)return undefined}}catch(e){{}}
    return r;
  }}

  function track(){{
    if(skip||w.__folioAnalyticsSkip)return;
    var full=l.pathname+l.search,now=Date.now();
    if(full===lastPath&&now-lastAt<{TRACK_DEBOUNCE_MS})return;
    if(busy)return;
    busy=true;lastPath=full;lastAt=now;
    setTimeout(function(){{
      var p=new URLSearchParams(l.search),data={{sessionId:sid(),pagePath:l.pathname,pageTitle:d.title,referrer:ref()}};
      if(status)data.statusCode=status;
      ["source","medium","campaign","term","content"].forEach(function(k){{
        var v=p.get("utm_"+k);if(v)data["utm"+k.charAt(0).toUpperCase()+k.slice(1)]=v;
      }});
      fetch(url,{{method:"POST",headers:{{"Content-Type":"application/json"}},body:JSON.stringify(data),keepalive:true}})
        .catch(function(e){{console.debug("Analytics tracking error:",e)}})
        .finally(function(){{busy=false}});
    }},{TRACK_DELAY_MS});
  }}

  track();

  var push=h.pushState;
  h.pushState=function(){{push.apply(h,arguments);track()}};
  var replace=h.replaceState;
  h.replaceState=function(){{replace.apply(h,arguments);track()}};
  w.addEventListener("popstate",track);
}})();
</script>'''
