"""
Pure enrichment of raw click events into click facts.

No I/O happens here: the caller resolves the IP to a GeoLocation first,
so these functions can be tested without a channel or a store.
"""

from typing import NamedTuple, Optional

from ua_parser import parse

from clickpipe_app.queue.models import ClickEvent, ClickFact, UNKNOWN
from .geoip import GeoLocation

DESKTOP_OS_FAMILIES = {"Windows", "Mac OS X", "Linux", "Ubuntu", "Fedora", "Chrome OS", "FreeBSD"}


class DeviceInfo(NamedTuple):
    device: str = UNKNOWN
    os: str = UNKNOWN
    browser: str = UNKNOWN


def _family(part) -> Optional[str]:
    family = getattr(part, "family", None) if part is not None else None
    if not family or family == "Other":
        return None
    return family


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """
    Split a user agent into device, os and browser families.

    ua-parser reports desktops as device "Other"; those are labelled
    "Desktop" when the OS is a known desktop OS.
    """
    if not user_agent or not user_agent.strip():
        return DeviceInfo()

    try:
        result = parse(user_agent)
    except Exception:
        return DeviceInfo()

    os_name = _family(result.os)
    browser = _family(result.user_agent)
    device = _family(result.device)
    if device is None and os_name in DESKTOP_OS_FAMILIES:
        device = "Desktop"

    return DeviceInfo(
        device=device or UNKNOWN,
        os=os_name or UNKNOWN,
        browser=browser or UNKNOWN,
    )


def enrich_event(event: ClickEvent, location: GeoLocation) -> ClickFact:
    """Build the persisted fact; a fresh fact id is assigned on every call"""
    info = parse_user_agent(event.user_agent)
    return ClickFact(
        link_key=event.link_key,
        timestamp=event.timestamp,
        referer=event.referer or None,
        device=info.device,
        os=info.os,
        browser=info.browser,
        country=location.country or UNKNOWN,
        region=location.region or UNKNOWN,
        city=location.city or UNKNOWN,
    )
