"""Local cookie classification.

This module assigns a privacy category to a cookie from its name, domain,
value and an optional declared manifest. The tiers are evaluated in a fixed
order of authority and the first decisive match wins:

1. declared manifest entry
2. naming-convention prefix
3. known third-party tracking domain
4. bearer-token shaped value
5. curated keyword sets
6. unknown

Classification is a pure function of its inputs. Escalation to the external
classifier lives in ``escalation``.
"""

import logging
from typing import Iterable, Optional, Tuple

from .domains import normalize_domain
from .models import (
    ClassificationResult, ClassificationSource, ConfidenceLevel, CookieCategory,
    CookieManifest, parse_category,
)
from .patterns import (
    BEARER_TOKEN_PREFIX, NAMING_PREFIXES, PATTERN_SETS, THIRD_PARTY_DOMAINS, PatternSet,
)

logger = logging.getLogger(__name__)


class CookieClassifier:
    """Tiered local cookie classifier.

    The lookup tables are injected so tests and alternative pattern
    libraries can replace them; the defaults come from ``patterns``.
    """

    def __init__(
        self,
        pattern_sets: Iterable[PatternSet] = PATTERN_SETS,
        naming_prefixes: Iterable[Tuple[str, CookieCategory]] = NAMING_PREFIXES,
        third_party_domains: Iterable[str] = THIRD_PARTY_DOMAINS,
        token_prefix: str = BEARER_TOKEN_PREFIX
    ):
        self.pattern_sets = tuple(pattern_sets)
        self.naming_prefixes = tuple(naming_prefixes)
        self.third_party_domains = tuple(d.lower() for d in third_party_domains)
        self.token_prefix = token_prefix

    def classify(
        self,
        name: str,
        domain: str = "",
        value: Optional[str] = None,
        manifest: Optional[CookieManifest] = None
    ) -> ClassificationResult:
        """Classify a single cookie.

        Args:
            name: Cookie name
            domain: Owning cookie domain
            value: Current cookie value, if known
            manifest: Declared manifest for the site, if one was found

        Returns:
            Classification result; always one of the six categories
        """
        result = (
            self._classify_by_manifest(name, manifest)
            or self._classify_by_naming(name)
            or self._classify_by_domain(domain)
            or self._classify_by_token(value)
            or self._classify_by_patterns(name)
            or ClassificationResult.with_level(
                CookieCategory.UNKNOWN,
                ClassificationSource.DEFAULT,
                ConfidenceLevel.LOW,
                reasoning="No local rule matched",
            )
        )

        logger.debug(
            f"Classified cookie {name} ({domain}) as {result.category.value} "
            f"via {result.source.value}"
        )
        return result

    def _classify_by_manifest(
        self,
        name: str,
        manifest: Optional[CookieManifest]
    ) -> Optional[ClassificationResult]:
        if manifest is None:
            return None

        entry = manifest.find(name)
        if entry is None:
            return None

        category = parse_category(entry.category)
        if category is None:
            logger.warning(
                f"Manifest for {manifest.domain} declares {name} with unrecognised "
                f"category {entry.category!r}, treating as unknown"
            )
            category = CookieCategory.UNKNOWN

        vendor = f" by {entry.vendor}" if entry.vendor else ""
        return ClassificationResult(
            category=category,
            source=ClassificationSource.MANIFEST,
            confidence=1.0,
            reasoning=f"Declared as {entry.category}{vendor}",
            pattern=entry.category,
        )

    def _classify_by_naming(self, name: str) -> Optional[ClassificationResult]:
        lowered = name.lower()
        for prefix, category in self.naming_prefixes:
            if lowered.startswith(prefix):
                return ClassificationResult.with_level(
                    category,
                    ClassificationSource.NAMING_CONVENTION,
                    ConfidenceLevel.HIGH,
                    reasoning=f"Name uses the {prefix!r} convention",
                    pattern=prefix,
                )
        return None

    def _classify_by_domain(self, domain: str) -> Optional[ClassificationResult]:
        host = normalize_domain(domain)
        if not host:
            return None

        for tracker in self.third_party_domains:
            if host == tracker or host.endswith(f'.{tracker}'):
                return ClassificationResult.with_level(
                    CookieCategory.ADVERTISING,
                    ClassificationSource.THIRD_PARTY_DOMAIN,
                    ConfidenceLevel.HIGH,
                    reasoning=f"Set by tracking domain {tracker}",
                    pattern=tracker,
                )
        return None

    def _classify_by_token(self, value: Optional[str]) -> Optional[ClassificationResult]:
        if value and value.startswith(self.token_prefix):
            return ClassificationResult.with_level(
                CookieCategory.ESSENTIAL,
                ClassificationSource.TOKEN_SHAPE,
                ConfidenceLevel.HIGH,
                reasoning="Value looks like a bearer token",
                pattern=self.token_prefix,
            )
        return None

    def _classify_by_patterns(self, name: str) -> Optional[ClassificationResult]:
        lowered = name.lower()
        for pattern_set in self.pattern_sets:
            matched = pattern_set.match(lowered)
            if matched is not None:
                return ClassificationResult.with_level(
                    pattern_set.category,
                    ClassificationSource.PATTERN_DB,
                    pattern_set.confidence,
                    reasoning=f"Matches {pattern_set.name} pattern {matched!r}",
                    pattern=pattern_set.name,
                )
        return None


_default_classifier: Optional[CookieClassifier] = None


def classify_cookie(
    name: str,
    domain: str = "",
    value: Optional[str] = None,
    manifest: Optional[CookieManifest] = None
) -> ClassificationResult:
    """Classify a cookie with the default pattern library."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = CookieClassifier()
    return _default_classifier.classify(name, domain, value, manifest)
