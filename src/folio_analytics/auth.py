"""
Passkey cookie authentication for the dashboard and query API.

Logging in with the site passkey sets a cookie holding
``sha256(site_name:configured_passkey)``. The configured value may itself be
a PBKDF2 hash, so the cookie never contains the passkey a user typed.
"""
import hashlib
import secrets
from dataclasses import dataclass

from fastapi import Request

from .config import AnalyticsConfig, verify_passkey

AUTH_COOKIE_NAME = "folio_analytics_auth"
AUTH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days


@dataclass(frozen=True)
class AdminPrincipal:
    site_name: str


def cookie_token(config: AnalyticsConfig) -> str | None:
    """Expected cookie value for the configured passkey, or None without auth."""
    if not config.has_auth:
        return None
    return hashlib.sha256(f"{config.site_name}:{config.passkey}".encode()).hexdigest()


class PasskeyAuth:
    """Checks passkeys at login and cookies on every admin request."""

    def __init__(self, config: AnalyticsConfig):
        self.config = config
        self._token = cookie_token(config)

    def check_passkey(self, provided: str) -> bool:
        if not self.config.has_auth or not provided:
            return False
        return verify_passkey(self.config.passkey, provided)

    @property
    def token(self) -> str | None:
        return self._token

    def verify_admin(self, request: Request) -> AdminPrincipal | None:
        """Return the admin principal for an authenticated request, else None.

        Without a configured passkey nobody is an admin: the dashboard is
        never served unauthenticated.
        """
        if not self._token:
            return None
        cookie = request.cookies.get(AUTH_COOKIE_NAME)
        if not cookie or not secrets.compare_digest(cookie, self._token):
            return None
        return AdminPrincipal(site_name=self.config.site_name)
