"""Tests for the fixed-window rate limiter."""

from folio_analytics.ratelimit import RateLimitConfig, RateLimiter, RateLimits, rate_limit_headers

LIMIT = RateLimitConfig(max_requests=3, window_seconds=60)


class FakeTime:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = RateLimiter(clock=FakeTime())

        results = [limiter.check("track", "1.2.3.4", LIMIT) for _ in range(3)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_blocks_over_limit_with_retry_after(self):
        clock = FakeTime()
        limiter = RateLimiter(clock=clock)
        for _ in range(3):
            limiter.check("track", "1.2.3.4", LIMIT)

        clock.now += 20
        result = limiter.check("track", "1.2.3.4", LIMIT)

        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after_seconds == 40

    def test_window_resets(self):
        clock = FakeTime()
        limiter = RateLimiter(clock=clock)
        for _ in range(4):
            limiter.check("track", "1.2.3.4", LIMIT)

        clock.now += 61

        assert limiter.check("track", "1.2.3.4", LIMIT).allowed is True

    def test_identifiers_and_actions_are_independent(self):
        limiter = RateLimiter(clock=FakeTime())
        for _ in range(3):
            limiter.check("track", "1.2.3.4", LIMIT)

        assert limiter.check("track", "5.6.7.8", LIMIT).allowed is True
        assert limiter.check("login", "1.2.3.4", LIMIT).allowed is True

    def test_raw_identifiers_not_stored(self):
        limiter = RateLimiter(clock=FakeTime())
        limiter.check("track", "203.0.113.9", LIMIT)

        assert not any("203.0.113.9" in key for key in limiter._windows)

    def test_reset_clears_window(self):
        limiter = RateLimiter(clock=FakeTime())
        for _ in range(4):
            limiter.check("login", "1.2.3.4", LIMIT)

        limiter.reset("login", "1.2.3.4")

        assert limiter.check("login", "1.2.3.4", LIMIT).allowed is True


class TestPresets:
    def test_values(self):
        assert (RateLimits.TRACK.max_requests, RateLimits.TRACK.window_seconds) == (60, 60)
        assert (RateLimits.ADMIN_API.max_requests, RateLimits.ADMIN_API.window_seconds) == (200, 900)
        assert (RateLimits.LOGIN.max_requests, RateLimits.LOGIN.window_seconds) == (5, 900)


class TestHeaders:
    def test_blocked_includes_retry_after(self):
        limiter = RateLimiter(clock=FakeTime())
        for _ in range(3):
            limiter.check("track", "ip", LIMIT)

        headers = rate_limit_headers(limiter.check("track", "ip", LIMIT))

        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["Retry-After"] == "60"

    def test_allowed_has_no_retry_after(self):
        headers = rate_limit_headers(RateLimiter(clock=FakeTime()).check("track", "ip", LIMIT))
        assert "Retry-After" not in headers
