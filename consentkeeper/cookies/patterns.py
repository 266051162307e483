"""Cookie pattern library.

Static, versioned lookup tables used by the local classification tiers.
All entries are lower case and are matched against the lower-cased cookie
name. Short or ambiguous tokens (``fr``, ``sid``, ``mc``) live in the
``exact`` half of a set so they only match a whole cookie name.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from .models import CookieCategory, ConfidenceLevel

PATTERNS_VERSION = "2.3"


@dataclass(frozen=True)
class PatternSet:
    """A named keyword set mapping to one category."""
    name: str
    category: CookieCategory
    confidence: ConfidenceLevel
    substrings: Tuple[str, ...] = ()
    exact: FrozenSet[str] = frozenset()

    def match(self, name: str) -> Optional[str]:
        """Return the matching pattern for a lower-cased name, if any."""
        if name in self.exact:
            return name
        for pattern in self.substrings:
            if pattern in name:
                return pattern
        return None


# Naming-convention prefixes, checked in order
NAMING_PREFIXES: Tuple[Tuple[str, CookieCategory], ...] = (
    ("analytics_", CookieCategory.ANALYTICS),
    ("a_", CookieCategory.ANALYTICS),
    ("ad_", CookieCategory.ADVERTISING),
    ("advertising_", CookieCategory.ADVERTISING),
    ("essential_", CookieCategory.ESSENTIAL),
    ("e_", CookieCategory.ESSENTIAL),
    ("personalization_", CookieCategory.PERSONALIZATION),
    ("p_", CookieCategory.PERSONALIZATION),
)

THIRD_PARTY_DOMAINS: Tuple[str, ...] = (
    "doubleclick.net", "google-analytics.com", "facebook.com", "facebook.net",
    "tiktok.com", "twitter.com", "linkedin.com", "quantserve.com",
    "scorecardresearch.com", "adsrvr.org", "adnxs.com", "criteo.com",
    "outbrain.com", "taboola.com", "pubmatic.com", "rubiconproject.com",
    "openx.net", "contextweb.com", "advertising.com", "turn.com",
    "serving-sys.com", "cdn.segment.com", "cdn.mxpnl.com", "hotjar.com", "clarity.ms",
)

# JWT-style bearer tokens start with a base64url encoded '{"'
BEARER_TOKEN_PREFIX = "eyJ"

ESSENTIAL = PatternSet(
    name="essential",
    category=CookieCategory.ESSENTIAL,
    confidence=ConfidenceLevel.HIGH,
    substrings=(
        # session
        "session", "sessid", "sess_", "_sess", "connect.sid", "jsessionid", "phpsessid",
        # csrf
        "csrf", "xsrf",
        # auth
        "auth", "token", "jwt", "sso_", "remember_me", "logged_in", "login",
        # cart
        "cart", "basket", "checkout",
        # cloudflare / akamai / incapsula / perimeterx
        "__cfruid", "__cfduid", "cf_clearance", "cf_", "_cfuvid",
        "_abck", "ak_bmsc", "bm_sv", "bm_mi", "bm_sz", "akavpau_",
        "incap_ses_", "visid_incap_", "_px",
        "challenge_", "bot_", "secure_", "datadome",
        # consent state
        "cookie_consent", "cookieconsent", "cookie_policy", "optanon", "euconsent",
        "eupubconsent", "truste", "cmpconsent", "consent_", "ckns_", "usprivacy",
        # e-commerce
        "_shopify_", "secure_customer_sig", "__stripe_",
        # site specific
        "gu_u", "gu-cmp", "nyt-a", "nyt-gdpr", "nyt-purr", "nyt-t", "bbc-uid",
        "at-main", "x-main", "aws-ubid-main", "sst-main", "lc-main", "sp-cdn",
        "regstatus", "i18n-prefs", "sgcookie", "countrycode",
    ),
    exact=frozenset({
        "sid", "s_id", "uid", "ubid", "user", "appid", "remember", "persistent",
        "sess", "gdpr", "ccpa", "skin",
    }),
)

ANALYTICS = PatternSet(
    name="analytics",
    category=CookieCategory.ANALYTICS,
    confidence=ConfidenceLevel.HIGH,
    substrings=(
        # google analytics
        "_ga_", "_gid", "_gat", "_gaexp", "__utm",
        # hotjar
        "_hjid", "_hjincluded", "_hjtldtest",
        # adobe
        "amcv_", "amcvs_",
        # product analytics
        "amplitude", "mp_", "ajs_", "heap_", "_hp2_",
        # hubspot
        "__hstc", "__hssrc", "__hssc", "hubspotutk",
        # matomo / chartbeat / parsely / clarity
        "matomo", "_pk_id", "_pk_ses", "_chartbeat", "_cb", "_parsely", "_clck", "_clsk",
        # snapchat / bing / yandex / snowplow
        "_scid", "_uetsid", "_uetvid", "_ym_", "_sp_id", "_sp_ses",
        # dynatrace / tealium / quantcast
        "dtcookie", "dtlatc", "dtpc", "rxvisitor", "rxvt", "utag_main", "__qca",
        # generic
        "analytics", "utm_", "vid_", "visitor_id", "intercom-",
        "ckns_sa", "ckns_performance",
    ),
    exact=frozenset({
        "_ga", "_gac", "s_ppv", "s_ppvl", "s_cc", "s_sq", "s_vi", "s_ecid",
        "mc", "vuid",
    }),
)

ADVERTISING = PatternSet(
    name="advertising",
    category=CookieCategory.ADVERTISING,
    confidence=ConfidenceLevel.HIGH,
    substrings=(
        # facebook / google ads
        "_fbp", "_fbc", "datr", "__gads", "__gac", "_gcl_", "1p_jar",
        # tiktok / twitter / linkedin / snapchat / pinterest
        "_ttp", "tt_webid", "ttwid", "tt_appinfo", "_tt_enable_cookie", "ttclid",
        "personalization_id", "guest_id", "bcookie", "li_gc", "liap", "lidc",
        "_sctr", "sc_at", "_pin_unauth",
        # youtube / microsoft
        "visitor_info1_live", "yt-remote-", "muid", "srm_b",
        # networks
        "uuid", "criteo", "cto_", "permutive", "ads_", "ad-id", "pixel", "track",
        "test_cookie", "ckns_ads",
    ),
    exact=frozenset({
        "fr", "sb", "ide", "dsid", "anid", "nid", "flc", "aid", "taid", "gt",
        "ysc", "mr", "cid", "vid", "anj", "b", "a3",
    }),
)

TESTING = PatternSet(
    name="testing",
    category=CookieCategory.ANALYTICS,
    confidence=ConfidenceLevel.MEDIUM,
    substrings=(
        "optimizely", "_opt_", "_vis_opt_", "_vwo_", "experiment", "exp_",
        "variant", "split_test", "test_group", "bucket", "ab_test", "abtest",
        "mbox", "fastab", "iter_id",
    ),
    exact=frozenset({"__pr", "abt", "split"}),
)

PERSONALIZATION = PatternSet(
    name="personalization",
    category=CookieCategory.PERSONALIZATION,
    confidence=ConfidenceLevel.MEDIUM,
    substrings=(
        "pref", "theme", "lang", "locale", "currency", "timezone", "layout",
        "ui_", "user_settings", "dark_mode", "color_scheme",
    ),
    exact=frozenset({"tz", "view", "mode", "ct0"}),
)

SOCIAL = PatternSet(
    name="social",
    category=CookieCategory.SOCIAL,
    confidence=ConfidenceLevel.MEDIUM,
    substrings=(
        "social", "share", "twitter_", "twtr", "li_", "linkedin", "pinterest",
        "__atuvc", "__atuvs", "__stid",
    ),
)

# Evaluation order of the keyword tier. Essential comes first so that
# session-like names never fall through to analytics.
PATTERN_SETS: Tuple[PatternSet, ...] = (
    ESSENTIAL, ANALYTICS, ADVERTISING, TESTING, PERSONALIZATION, SOCIAL,
)

# Names containing any of these are never deleted automatically
ESSENTIAL_GUARD_TERMS: Tuple[str, ...] = ("session", "csrf", "xsrf", "auth")

# Checked on every monitor tick between full cleanup passes
KNOWN_TRACKER_PREFIXES: Tuple[str, ...] = (
    "_ga", "_gid", "_fbp", "_gcl_au", "_uetsid", "_ttp", "_scid",
)

# Cleanup never runs on pages whose URL contains one of these
SKIP_CLEANUP_PATTERNS: Tuple[str, ...] = (
    "login", "signin", "signup", "register", "auth", "account",
    "checkout", "cart", "payment", "billing",
)
