"""
In-memory fixed-window rate limiting.

Identifiers (client IPs) are hashed with the action name before they are
stored, so no raw IP address is ever kept in memory. Suitable for a single
process; each worker keeps its own counters.
"""
import hashlib
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int


class RateLimits:
    """Presets for the analytics endpoints."""
    TRACK = RateLimitConfig(max_requests=60, window_seconds=60)
    ADMIN_API = RateLimitConfig(max_requests=200, window_seconds=15 * 60)
    LOGIN = RateLimitConfig(max_requests=5, window_seconds=15 * 60)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after_seconds: int = 0


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter per (action, hashed identifier). Thread-safe."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()

    @staticmethod
    def _key(action: str, identifier: str) -> str:
        digest = hashlib.sha256(f"{action}:{identifier}".encode()).hexdigest()[:16]
        return f"{action}:{digest}"

    def _cleanup(self, now: float) -> None:
        """Remove expired windows."""
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]

    def check(self, action: str, identifier: str, limits: RateLimitConfig) -> RateLimitResult:
        """Count one request and report whether it is within the limit."""
        key = self._key(action, identifier)
        now = self.clock()

        with self._lock:
            self._cleanup(now)
            window = self._windows.get(key)
            if window is None:
                window = _Window(count=0, reset_at=now + limits.window_seconds)
                self._windows[key] = window

            if window.count >= limits.max_requests:
                retry_after = max(1, int(window.reset_at - now + 0.999))
                logger.warning(f"Rate limit exceeded for {action}")
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=window.reset_at,
                    retry_after_seconds=retry_after,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=limits.max_requests - window.count,
                reset_at=window.reset_at,
            )

    def reset(self, action: str, identifier: str) -> None:
        """Clear the window for one identifier (e.g. after a successful login)."""
        with self._lock:
            self._windows.pop(self._key(action, identifier), None)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


def client_ip(request) -> str:
    """Client IP from X-Forwarded-For (first hop) or the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
