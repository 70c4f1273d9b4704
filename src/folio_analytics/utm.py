"""
UTM parameter parsing for campaign attribution.

Only the five standard parameters are tracked:

- utm_source: Where the traffic came from (e.g., "newsletter")
- utm_medium: Marketing medium (e.g., "email", "social")
- utm_campaign: Campaign name (e.g., "spring_launch")
- utm_term: Paid search keywords
- utm_content: Differentiates similar links

Each is independently optional. Values are added by whoever built the link
and carry no personal information, so they're stored as-is (trimmed and
length-capped).
"""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

# Column width for every utm_* field
MAX_UTM_LENGTH = 100

UTM_FIELDS = ("source", "medium", "campaign", "term", "content")


@dataclass(frozen=True)
class UTMParams:
    """Extracted UTM parameters; any subset may be present."""
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    term: str | None = None
    content: str | None = None

    @property
    def has_utm(self) -> bool:
        return any(getattr(self, name) for name in UTM_FIELDS)

    def to_payload(self) -> dict[str, str]:
        """Convert to tracking payload keys (utmSource, ...), skipping absent values."""
        return {
            f"utm{name.capitalize()}": getattr(self, name)
            for name in UTM_FIELDS
            if getattr(self, name)
        }


def _clean_param(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip()[:MAX_UTM_LENGTH]
    return cleaned or None


def parse_utm_query(query: str) -> UTMParams:
    """Extract UTM parameters from a raw query string (without the ``?``)."""
    if not query:
        return UTMParams()

    params = parse_qs(query, keep_blank_values=False)
    values = {}
    for name in UTM_FIELDS:
        found = params.get(f"utm_{name}")
        values[name] = _clean_param(found[0]) if found else None
    return UTMParams(**values)


def parse_utm(url: str) -> UTMParams:
    """
    Extract UTM parameters from a URL.

    Examples:
        >>> parse_utm("https://example.com/?utm_source=google&utm_medium=cpc")
        UTMParams(source='google', medium='cpc', campaign=None, term=None, content=None)

        >>> parse_utm("https://example.com/page").has_utm
        False
    """
    if not url:
        return UTMParams()

    try:
        parsed = urlparse(url)
    except ValueError:
        return UTMParams()
    return parse_utm_query(parsed.query)
