"""
Referrer handling for traffic source analysis.

Referrers arrive as full URLs from the browser. Analytics only ever groups by
the referrer's hostname, so this module:

- Extracts a normalized (lower-cased) domain from a referrer URL
- Detects self-referrals (internal navigation on the same host)
- Names the label used for direct (unreferred) traffic

Self-referrals are never recorded as external referrers; otherwise every
click between two pages of the site would show up as "traffic from
example.com".
"""

from urllib.parse import urlparse

# Traffic source label for page views with neither a UTM source nor a referrer
DIRECT_SOURCE = "direct"


def extract_domain(url: str | None) -> str | None:
    """Return the lower-cased hostname of ``url``, or None.

    Unparseable values, relative URLs and URLs without a host all yield
    None. The raw referrer may still be stored by the caller.
    """
    if not url or not isinstance(url, str):
        return None

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError:
        return None

    if not parsed.scheme or not hostname:
        return None
    return hostname.lower()


def is_self_referral(referrer: str | None, current_host: str | None) -> bool:
    """Check whether ``referrer`` points at the host currently being viewed."""
    if not current_host:
        return False
    domain = extract_domain(referrer)
    return domain is not None and domain == current_host.lower()


def clean_referrer(referrer: str | None, current_host: str | None) -> str | None:
    """Drop empty and same-host referrers, keep everything else as-is.

    A referrer that can't be parsed as a URL is passed through unchanged;
    the ingestion side will store it without a domain.
    """
    if not referrer:
        return None
    if is_self_referral(referrer, current_host):
        return None
    return referrer
