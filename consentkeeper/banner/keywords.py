"""Consent prompt keyword tables.

Static keyword data used by the locator and the control matcher.
Matching code receives these tables as arguments and never mutates them.
"""

from typing import Tuple

CONTAINER_KEYWORDS: Tuple[str, ...] = (
    "cookie", "consent", "gdpr", "privacy", "banner", "notice",
    "policy", "tracking", "ccpa", "compliance", "preferences",
)

REJECT_KEYWORDS: Tuple[str, ...] = (
    "reject all", "reject", "deny all", "deny", "decline all", "decline",
    "refuse", "refuse all", "no thanks", "only necessary", "essential only",
    "necessary only", "no cookies", "opt out",
)

ACCEPT_KEYWORDS: Tuple[str, ...] = (
    "accept all", "accept all cookies", "allow all", "allow all cookies",
    "accept", "allow", "agree", "agree and continue", "agree and close",
    "ok", "got it", "i understand", "continue", "i agree", "i accept",
    "accept cookies", "allow cookies", "consent", "yes", "enable all",
    "accept and close", "accept & close", "allow & continue", "understood",
    "acceptall", "allowall", "acceptallcookies", "allowallcookies",
    "accept all and close", "i agree to", "agree to all", "agree to cookies",
    "yes, i agree", "yes i agree", "accept everything", "allow everything",
)

MANAGE_KEYWORDS: Tuple[str, ...] = (
    "manage", "settings", "customize", "options",
    "cookie settings", "manage preferences", "more options",
    "set cookie preferences", "cookie preferences", "preferences",
    "confirm my choices", "save my choices", "confirm choices",
    "manage my preferences", "cookie options", "customize cookies",
)

SAVE_KEYWORDS: Tuple[str, ...] = (
    "save", "confirm", "apply", "accept selection", "save preferences", "save choices",
)

DISMISS_KEYWORDS: Tuple[str, ...] = ("ok", "got it", "continue")

EXCLUDE_KEYWORDS: Tuple[str, ...] = (
    "payment", "shipping", "checkout", "cart", "product", "search",
    "menu", "navigation", "login", "sign in", "register", "account",
    "facebook", "twitter", "linkedin", "instagram", "youtube",
    "pinterest", "whatsapp", "share", "follow", "tweet",
)

# Label keywords used to infer what a consent toggle controls, checked in order
TOGGLE_CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("analytics", ("analytics", "statistics", "measurement")),
    ("advertising", ("advertising", "marketing", "targeting", "ads")),
    ("personalization", ("personalization", "personalisation", "functional", "preference")),
    ("essential", ("necessary", "essential", "required")),
)

# Structural selectors

PLATFORM_CONTAINER_SELECTORS: Tuple[str, ...] = (
    "#onetrust-banner-sdk", "#onetrust-consent-sdk", "#onetrust-pc-sdk",
    "#CybotCookiebotDialog", "#CookiebotWidget",
    "#qc-cmp2-ui",
    "#truste-consent-track",
    ".osano-cm-dialog",
    ".onetrust-pc-dark-filter", ".ot-sdk-container", "[data-onetrust-banner]",
)

GENERIC_CONTAINER_SELECTORS: Tuple[str, ...] = (
    '[id*="cookie"]', '[id*="consent"]', '[id*="gdpr"]', '[id*="privacy"]', '[id*="banner"]',
    '[class*="cookie"]', '[class*="consent"]', '[class*="gdpr"]', '[class*="privacy"]',
    '[class*="banner"]',
    '[role="dialog"][aria-label*="cookie"]', '[role="dialog"][aria-label*="consent"]',
    '[role="dialog"][aria-label*="privacy"]',
    '[role="dialog"]', '[role="alertdialog"]',
    '[data-testid*="cookie"]', '[data-testid*="consent"]', '[data-testid*="privacy"]',
    '[class*="onetrust"]', '[class*="ot-sdk"]', '[class*="optanon"]',
)

POSITIONED_CONTAINER_SELECTOR = "div, section, aside"

INTERACTIVE_SELECTOR = 'button, a[role="button"], input[type="button"], a, [role="button"]'

MANAGE_CONTROL_SELECTOR = 'button, a[role="button"], [role="button"]'

SAVE_CONTROL_SELECTOR = 'button, [role="button"]'

TOGGLE_SELECTOR = 'input[type="checkbox"], [role="switch"], .toggle-switch, .slider'

OVERLAY_SELECTORS: Tuple[str, ...] = (
    ".cookie-overlay",
    ".consent-backdrop",
    '[class*="modal-backdrop"]',
    '[class*="cookie-banner"]',
)

# Thresholds of the plausibility test
MIN_BANNER_WIDTH = 150
MIN_BANNER_HEIGHT = 40
MIN_VIEWPORT_SHARE = 0.12
MIN_PLAUSIBLE_Z_INDEX = 30
OVERLAY_Z_INDEX = 999
MIN_TEXT_LENGTH = 20
