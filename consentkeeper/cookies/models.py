"""Pydantic models for cookie classification, enforcement and review.

This module defines the cookie record observed in a storage partition, the
immutable classification result, declared cookie manifests, the review queue
item, user preferences and activity log entries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domains import normalize_domain

VALUE_SAMPLE_CHARS = 100


class CookieCategory(str, Enum):
    """Privacy category of a cookie."""
    ESSENTIAL = "essential"
    ANALYTICS = "analytics"
    ADVERTISING = "advertising"
    PERSONALIZATION = "personalization"
    SOCIAL = "social"
    UNKNOWN = "unknown"


# Categories the external classifier may answer with
PRIMARY_CATEGORIES = (
    CookieCategory.ESSENTIAL,
    CookieCategory.ANALYTICS,
    CookieCategory.ADVERTISING,
    CookieCategory.PERSONALIZATION,
)

# Spellings seen in declared manifests and classifier answers
CATEGORY_ALIASES = {
    "advertisement": CookieCategory.ADVERTISING,
    "ads": CookieCategory.ADVERTISING,
    "marketing": CookieCategory.ADVERTISING,
    "personalisation": CookieCategory.PERSONALIZATION,
    "functional": CookieCategory.PERSONALIZATION,
    "preferences": CookieCategory.PERSONALIZATION,
    "statistics": CookieCategory.ANALYTICS,
    "performance": CookieCategory.ANALYTICS,
    "necessary": CookieCategory.ESSENTIAL,
    "strictly_necessary": CookieCategory.ESSENTIAL,
}


def parse_category(value: Any) -> Optional[CookieCategory]:
    """Map a declared or returned category label onto the canonical taxonomy.

    Returns None when the label is not recognised.
    """
    if isinstance(value, CookieCategory):
        return value
    if not isinstance(value, str):
        return None

    label = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return CookieCategory(label)
    except ValueError:
        return CATEGORY_ALIASES.get(label)


class ClassificationSource(str, Enum):
    """Which tier produced a classification."""
    MANIFEST = "manifest"
    NAMING_CONVENTION = "naming_convention"
    THIRD_PARTY_DOMAIN = "third_party_domain"
    TOKEN_SHAPE = "token_shape"
    PATTERN_DB = "pattern_db"
    EXTERNAL_CLASSIFIER = "external_classifier"
    DEFAULT = "default"


class ConfidenceLevel(str, Enum):
    """Qualitative confidence of a classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def score(self) -> float:
        return CONFIDENCE_SCORES[self]

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        if score >= CONFIDENCE_SCORES[cls.HIGH]:
            return cls.HIGH
        if score >= CONFIDENCE_SCORES[cls.MEDIUM]:
            return cls.MEDIUM
        return cls.LOW


CONFIDENCE_SCORES = {
    ConfidenceLevel.LOW: 0.3,
    ConfidenceLevel.MEDIUM: 0.8,
    ConfidenceLevel.HIGH: 0.95,
}


class CookieRecord(BaseModel):
    """One cookie instance in one storage partition.

    The same name/domain pair may exist in several partitions; callers that
    act on a logical key must treat all of them together.
    """

    name: str = Field(description="Cookie name")
    domain: str = Field(description="Cookie domain, possibly with a leading dot")
    path: str = Field(default="/", description="Cookie path")
    value: str = Field(default="", description="Cookie value")
    secure: bool = Field(default=False, description="Secure flag")
    http_only: bool = Field(default=False, description="HttpOnly flag")
    partition_id: str = Field(default="default", description="Storage partition holding the cookie")

    @property
    def normalized_domain(self) -> str:
        return normalize_domain(self.domain)

    @property
    def key(self) -> str:
        """Logical ``domain:name`` key."""
        return cookie_key(self.domain, self.name)

    @property
    def value_prefix(self) -> str:
        return self.value[:VALUE_SAMPLE_CHARS]

    @property
    def removal_url(self) -> str:
        """URL addressing this cookie for a partition-scoped removal."""
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.normalized_domain}{self.path or '/'}"

    @classmethod
    def from_playwright_cookie(cls, cookie: dict, partition_id: str) -> "CookieRecord":
        """Create CookieRecord from a Playwright cookie dict."""
        return cls(
            name=cookie.get('name', ''),
            domain=cookie.get('domain', ''),
            path=cookie.get('path', '/') or '/',
            value=cookie.get('value', ''),
            secure=bool(cookie.get('secure', False)),
            http_only=bool(cookie.get('httpOnly', False)),
            partition_id=partition_id,
        )


def cookie_key(domain: str, name: str) -> str:
    return f"{normalize_domain(domain)}:{name}"


class ClassificationResult(BaseModel):
    """Immutable result of classifying one cookie."""

    model_config = ConfigDict(frozen=True)

    category: CookieCategory = Field(description="Assigned privacy category")
    source: ClassificationSource = Field(description="Tier that produced the result")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence score")
    reasoning: str = Field(default="", description="Why this category was chosen")
    pattern: Optional[str] = Field(
        default=None,
        description="Pattern set or rule that matched"
    )

    @property
    def level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)

    @classmethod
    def with_level(
        cls,
        category: CookieCategory,
        source: ClassificationSource,
        level: ConfidenceLevel,
        reasoning: str = "",
        pattern: Optional[str] = None
    ) -> "ClassificationResult":
        return cls(
            category=category,
            source=source,
            confidence=level.score,
            reasoning=reasoning,
            pattern=pattern,
        )


class ManifestEntry(BaseModel):
    """A cookie declared in a site manifest."""

    name: str = Field(description="Exact cookie name")
    category: str = Field(description="Declared category label")
    vendor: Optional[str] = Field(default=None, description="Vendor setting the cookie")
    purpose: Optional[str] = Field(default=None, description="Declared purpose")
    essential: bool = Field(default=False, description="Declared as essential")
    cross_site: bool = Field(default=False, description="Used for cross-site tracking")


class CookieManifest(BaseModel):
    """Site-provided declaration of the cookies a domain sets."""

    domain: str = Field(description="Domain the manifest describes")
    cookies: List[ManifestEntry] = Field(default_factory=list)
    last_updated: Optional[str] = Field(default=None, description="Last update date")
    source: Optional[str] = Field(
        default=None,
        description="Where the manifest came from (bundled or website_provided)"
    )

    def find(self, name: str) -> Optional[ManifestEntry]:
        for entry in self.cookies:
            if entry.name == name:
                return entry
        return None

    @property
    def vendor_count(self) -> int:
        return len({c.vendor for c in self.cookies})

    @property
    def essential_count(self) -> int:
        return sum(1 for c in self.cookies if c.essential)

    @property
    def cross_site_count(self) -> int:
        return sum(1 for c in self.cookies if c.cross_site)


class ReviewStatus(str, Enum):
    PENDING = "pending"
    DELETE = "delete"
    KEEP = "keep"


class ReviewItem(BaseModel):
    """A low-confidence classification awaiting a human decision."""

    id: str = Field(description="<domain>_<name>_<epoch ms>")
    cookie_name: str = Field(description="Cookie name")
    domain: str = Field(description="Cookie domain")
    value: str = Field(default="", description="Value sample")
    category: CookieCategory = Field(description="Proposed category")
    confidence: float = Field(ge=0.0, le=1.0, description="Classifier confidence")
    reasoning: str = Field(default="", description="Classifier reasoning")
    source: Optional[str] = Field(default=None, description="Where the sighting came from")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ReviewStatus = Field(default=ReviewStatus.PENDING)
    decided_at: Optional[datetime] = Field(default=None)

    @property
    def is_pending(self) -> bool:
        return self.status == ReviewStatus.PENDING


class Preferences(BaseModel):
    """User preferences shared by the resolver and the cleanup pipeline."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    safe_mode: bool = Field(default=False, alias="safeMode")
    ai_enabled: bool = Field(default=True, alias="aiEnabled")
    allow_analytics: bool = Field(default=False, alias="allowAnalytics")
    allow_advertising: bool = Field(default=False, alias="allowAdvertising")
    allow_personalization: bool = Field(default=False, alias="allowPersonalization")


class ActivityAction(str, Enum):
    MANIFEST_DETECTED = "manifest_detected"
    BANNER_HANDLED = "banner_handled"
    COOKIES_DELETED = "cookies_deleted"
    TCF_DETECTED = "tcf_detected"


class ActivityEntry(BaseModel):
    """Append-only activity record consumed by reporting."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    domain: str = Field(description="Hostname of the page")
    url: str = Field(default="", description="Page URL")
    action: ActivityAction
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('details', mode='before')
    @classmethod
    def default_details(cls, v):
        return v or {}
