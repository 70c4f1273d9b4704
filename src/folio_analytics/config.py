"""
Configuration for Folio Analytics.
"""
import hashlib
import logging
import os
import secrets
import warnings
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Passkey security constants
MIN_PASSKEY_LENGTH = 16

# Date windows offered by the dashboard and accepted by the query API
DASHBOARD_DAYS = (7, 30, 90, 365)


class ConfigurationError(ValueError):
    """Raised when an AnalyticsConfig is internally inconsistent."""
    pass


class PasskeyTooShortError(ValueError):
    """Raised when a passkey doesn't meet minimum length requirements."""
    pass


def validate_passkey_strength(passkey: str) -> None:
    """Validate passkey meets security requirements.

    Raises:
        PasskeyTooShortError: If passkey is shorter than MIN_PASSKEY_LENGTH
    """
    if len(passkey) < MIN_PASSKEY_LENGTH:
        raise PasskeyTooShortError(
            f"Passkey must be at least {MIN_PASSKEY_LENGTH} characters. "
            f"Got {len(passkey)} characters."
        )


def hash_passkey(passkey: str, validate: bool = True) -> str:
    """Hash a passkey using PBKDF2-SHA256.

    Returns a string in format: pbkdf2:iterations:salt_hex:hash_hex

    Generate the value for your config with:

        from folio_analytics.config import hash_passkey
        print(hash_passkey("your-secret-passkey"))

    Raises:
        PasskeyTooShortError: If validate=True and passkey is too short
    """
    if validate:
        validate_passkey_strength(passkey)

    salt = os.urandom(16)
    iterations = 100_000
    dk = hashlib.pbkdf2_hmac("sha256", passkey.encode(), salt, iterations)
    return f"pbkdf2:{iterations}:{salt.hex()}:{dk.hex()}"


def verify_passkey(stored: str, provided: str) -> bool:
    """Verify a passkey using timing-safe comparison.

    Handles both hashed (pbkdf2:...) and legacy plaintext passkeys.
    """
    if stored.startswith("pbkdf2:"):
        try:
            _, iterations_str, salt_hex, hash_hex = stored.split(":")
            dk = hashlib.pbkdf2_hmac(
                "sha256", provided.encode(), bytes.fromhex(salt_hex), int(iterations_str)
            )
            return secrets.compare_digest(dk, bytes.fromhex(hash_hex))
        except (ValueError, TypeError):
            return False
    return secrets.compare_digest(stored.encode(), provided.encode())


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics instance.

    Exactly one storage backend must be configured: either ``sqlite_path``
    for a local database file (``":memory:"`` works for tests) or the three
    Cloudflare D1 settings.
    """

    # Required
    site_name: str  # Domain identifier (e.g., "example.com")

    # Storage: local SQLite
    sqlite_path: str | None = None

    # Storage: Cloudflare D1
    d1_database_id: str | None = None
    cf_account_id: str | None = None
    cf_api_token: str | None = None

    # Display settings
    display_name: str | None = None

    # Dashboard authentication
    passkey: str | None = None

    # Data retention for the raw page view log (rollups are kept)
    retention_days: int = 90

    # Performance
    cache_ttl_seconds: int = 60  # Summary cache

    # Dashboard / API windows
    dashboard_days: tuple[int, ...] = field(default=DASHBOARD_DAYS)
    default_days: int = 30
    drilldown_page_size: int = 25

    @property
    def has_auth(self) -> bool:
        return bool(self.passkey)

    @property
    def uses_d1(self) -> bool:
        return bool(self.d1_database_id or self.cf_account_id or self.cf_api_token)

    @property
    def effective_display_name(self) -> str:
        """Get display name, falling back to site_name."""
        return self.display_name or self.site_name

    @property
    def is_passkey_hashed(self) -> bool:
        return bool(self.passkey and self.passkey.startswith("pbkdf2:"))

    def __post_init__(self):
        self._validate_storage()
        self._validate_passkey()
        if self.default_days not in self.dashboard_days:
            raise ConfigurationError(
                f"default_days={self.default_days} is not one of {self.dashboard_days}"
            )

    def _validate_storage(self) -> None:
        if self.sqlite_path and self.uses_d1:
            raise ConfigurationError(
                "Configure either sqlite_path or the D1 settings, not both"
            )
        if self.uses_d1 and not (self.d1_database_id and self.cf_account_id and self.cf_api_token):
            raise ConfigurationError(
                "D1 storage needs d1_database_id, cf_account_id and cf_api_token"
            )
        if not self.sqlite_path and not self.uses_d1:
            raise ConfigurationError("No storage backend configured")

    def _validate_passkey(self) -> None:
        """Warn about plaintext passkeys; hashed ones are logged at debug."""
        if not self.passkey:
            return

        if self.is_passkey_hashed:
            logger.debug(f"Site {self.site_name}: Using hashed passkey")
            return

        warnings.warn(
            f"Site {self.site_name}: Using plaintext passkey is deprecated. "
            f"Use hash_passkey() to generate a hashed passkey:\n"
            f"  from folio_analytics.config import hash_passkey\n"
            f"  print(hash_passkey('your-passkey'))",
            DeprecationWarning,
            stacklevel=3
        )
        if len(self.passkey) < MIN_PASSKEY_LENGTH:
            logger.warning(
                f"Site {self.site_name}: Passkey is shorter than "
                f"recommended {MIN_PASSKEY_LENGTH} characters"
            )
