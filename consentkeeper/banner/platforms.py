"""Known consent platforms.

Each platform is recognised by container markers on the page and handled by
clicking one of its own accept controls, which is more reliable than the
generic keyword search.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from .dom import PageNode, PageSnapshot

logger = logging.getLogger(__name__)


class ConsentPlatform(str, Enum):
    """Known consent platforms."""
    ONETRUST = "onetrust"
    COOKIEBOT = "cookiebot"
    QUANTCAST = "quantcast"
    COOKIEPRO = "cookiepro"
    TRUSTARC = "trustarc"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PlatformProfile:
    """Selectors used to recognise and operate one platform."""

    platform: ConsentPlatform
    indicators: Tuple[str, ...]
    accept_selectors: Tuple[str, ...]


PLATFORM_PROFILES: Tuple[PlatformProfile, ...] = (
    PlatformProfile(
        ConsentPlatform.ONETRUST,
        indicators=("#onetrust-banner-sdk", ".onetrust-pc-dark-filter", "#onetrust-consent-sdk"),
        accept_selectors=(
            "#onetrust-accept-btn-handler",
            ".onetrust-accept-btn-handler",
            'button[title*="Accept All"]',
            ".ot-pc-agree-button",
            ".accept-all-button",
        ),
    ),
    PlatformProfile(
        ConsentPlatform.COOKIEBOT,
        indicators=("#CybotCookiebotDialog", '[id^="Cookiebot"]', ".CybotCookiebotDialog"),
        accept_selectors=(
            "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
            "#CybotCookiebotDialogBodyButtonAccept",
            '[data-cookieconsent="accept"]',
            'a[id*="Allow"]',
        ),
    ),
    PlatformProfile(
        ConsentPlatform.QUANTCAST,
        indicators=("#qc-cmp2-ui", ".qc-cmp2-container", '[class*="qc-cmp"]'),
        accept_selectors=(
            ".qc-cmp2-summary-buttons > button:first-child",
            'button[mode="primary"]',
            'button[aria-label*="Accept"]',
        ),
    ),
    PlatformProfile(
        ConsentPlatform.COOKIEPRO,
        indicators=(".cookiepro-banner", "#cookiepro-banner"),
        accept_selectors=("#cookiepro-accept-all", ".cookiepro-accept-button"),
    ),
    PlatformProfile(
        ConsentPlatform.TRUSTARC,
        indicators=("#truste-consent-track", ".truste-banner"),
        accept_selectors=(".truste-button1", '[aria-label*="Accept"]', 'button[title*="Accept"]'),
    ),
)

PROFILES_BY_PLATFORM: Dict[ConsentPlatform, PlatformProfile] = {
    profile.platform: profile for profile in PLATFORM_PROFILES
}


def detect_platform(
    snapshot: PageSnapshot,
    profiles: Tuple[PlatformProfile, ...] = PLATFORM_PROFILES
) -> Optional[PlatformProfile]:
    """Return the first platform with any indicator present on the page."""
    for profile in profiles:
        for selector in profile.indicators:
            if snapshot.select_one(selector) is not None:
                logger.debug(f"Detected {profile.platform.value} via {selector}")
                return profile
    return None


def find_accept_control(snapshot: PageSnapshot, profile: PlatformProfile) -> Optional[Tuple[str, PageNode]]:
    """First visible control matching the platform's accept selectors, in order.

    Returns:
        Tuple of (selector, node) or None
    """
    for selector in profile.accept_selectors:
        for node in snapshot.select(selector):
            if node.is_visible():
                return selector, node
    return None
