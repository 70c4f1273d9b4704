"""
User-Agent classification for the ingestion endpoint.

Only coarse buckets are extracted: device category, browser family, OS
family and whether the client looks automated. No versions, no device
models, nothing precise enough to fingerprint a visitor.

Key Design Decisions:
- Check specific browsers before generic ones (Edge and Opera before Chrome,
  Chrome before Safari) since Chromium UAs claim to be all of them
- A missing User-Agent is "unknown", not a bot; beacons come from our own
  script and some privacy tools strip the header
"""

import re
from dataclasses import dataclass
from enum import Enum


class DeviceType(str, Enum):
    """Device category."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


UNKNOWN = "unknown"

# Crawlers, link-preview fetchers, monitoring and headless automation
BOT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"bot", r"spider", r"crawl", r"slurp", r"mediapartners",
        r"yandex", r"baidu", r"facebookexternalhit", r"whatsapp",
        r"pingdom", r"uptimerobot", r"headless", r"phantom", r"selenium",
        r"puppeteer", r"lighthouse", r"pagespeed",
    )
]

# Order matters: first match wins
BROWSER_PATTERNS = [
    (re.compile(r"firefox|fxios", re.IGNORECASE), "Firefox"),
    (re.compile(r"edg", re.IGNORECASE), "Edge"),
    (re.compile(r"opera|opr/", re.IGNORECASE), "Opera"),
    (re.compile(r"chrome|crios", re.IGNORECASE), "Chrome"),
    (re.compile(r"safari", re.IGNORECASE), "Safari"),
]

# Android and iOS before Linux / macOS: their UAs mention both
OS_PATTERNS = [
    (re.compile(r"windows", re.IGNORECASE), "Windows"),
    (re.compile(r"android", re.IGNORECASE), "Android"),
    (re.compile(r"iphone|ipad|ipod", re.IGNORECASE), "iOS"),
    (re.compile(r"macintosh|mac os", re.IGNORECASE), "macOS"),
    (re.compile(r"linux", re.IGNORECASE), "Linux"),
]

_TABLET_RE = re.compile(r"tablet|ipad", re.IGNORECASE)
_MOBILE_RE = re.compile(r"mobile|iphone|ipod", re.IGNORECASE)


@dataclass(frozen=True)
class ClientInfo:
    """Coarse classification of a request's User-Agent."""
    device_type: DeviceType = DeviceType.UNKNOWN
    browser: str = UNKNOWN
    os: str = UNKNOWN
    is_bot: bool = False


def is_bot(user_agent: str | None) -> bool:
    if not user_agent:
        return False
    return any(pattern.search(user_agent) for pattern in BOT_PATTERNS)


def _detect_device_type(ua: str) -> DeviceType:
    if _TABLET_RE.search(ua):
        return DeviceType.TABLET
    if _MOBILE_RE.search(ua):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def _first_match(ua: str, patterns: list[tuple[re.Pattern, str]]) -> str:
    for pattern, name in patterns:
        if pattern.search(ua):
            return name
    return "Other"


def classify_user_agent(user_agent: str | None) -> ClientInfo:
    """
    Classify a User-Agent header.

    Examples:
        >>> classify_user_agent("Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0")
        ClientInfo(device_type=<DeviceType.DESKTOP: 'desktop'>, browser='Firefox', os='Windows', is_bot=False)
    """
    if not user_agent:
        return ClientInfo()

    return ClientInfo(
        device_type=_detect_device_type(user_agent),
        browser=_first_match(user_agent, BROWSER_PATTERNS),
        os=_first_match(user_agent, OS_PATTERNS),
        is_bot=is_bot(user_agent),
    )
