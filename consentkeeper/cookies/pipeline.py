"""Cookie cleanup passes for a page.

Each pass classifies the cookies visible to the page and asks the background
service to delete the ones the user's preferences disallow. Declared
manifests take precedence over local rules; unresolved or undeclared cookies
are escalated to the external classifier when the user allows it, and
escalated results below the review threshold are queued for review instead
of being deleted.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TYPE_CHECKING

from ..config import ClassifierConfig
from .classification import CookieClassifier
from .domains import hostname_of
from .manifest import ManifestLoader
from .models import (
    ActivityAction, ClassificationResult, ClassificationSource, CookieCategory, CookieManifest,
    CookieRecord, Preferences,
)
from .patterns import KNOWN_TRACKER_PREFIXES, SKIP_CLEANUP_PATTERNS
from .policy import should_delete
from .review import ReviewCandidate

if TYPE_CHECKING:
    from ..service.client import ServiceClient

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """Outcome of one cleanup pass."""

    url: str
    skipped: Optional[str] = None
    manifest_source: Optional[str] = None
    processed: int = 0
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    queued_for_review: List[str] = field(default_factory=list)
    undeclared: List[str] = field(default_factory=list)
    escalated: int = 0
    by_source: Dict[str, int] = field(default_factory=dict)

    def count_source(self, result: ClassificationResult) -> None:
        source = result.source.value
        self.by_source[source] = self.by_source.get(source, 0) + 1


def is_sensitive_url(url: str) -> bool:
    lowered = url.lower()
    return any(pattern in lowered for pattern in SKIP_CLEANUP_PATTERNS)


class ClassificationPipeline:
    """Classifies page cookies and hands disallowed ones to enforcement."""

    def __init__(
        self,
        client: "ServiceClient",
        classifier: Optional[CookieClassifier] = None,
        manifest_loader: Optional[ManifestLoader] = None,
        classifier_config: Optional[ClassifierConfig] = None
    ):
        """Initialize pipeline.

        Args:
            client: Client for the background service
            classifier: Local classifier; default pattern library when omitted
            manifest_loader: Manifest lookup; manifests are not used when omitted
            classifier_config: Provides the review threshold
        """
        self.client = client
        self.classifier = classifier or CookieClassifier()
        self.manifest_loader = manifest_loader
        self.review_threshold = (classifier_config or ClassifierConfig()).review_threshold
        self._reported_manifests: set = set()

    async def _load_manifest(self, page_url: str) -> Optional[CookieManifest]:
        if self.manifest_loader is None:
            return None

        manifest = await self.manifest_loader.load(page_url)
        if manifest is not None and manifest.domain not in self._reported_manifests:
            self._reported_manifests.add(manifest.domain)
            await self.client.log_action(
                ActivityAction.MANIFEST_DETECTED,
                domain=hostname_of(page_url),
                url=page_url,
                source=manifest.source,
                manifest_domain=manifest.domain,
                cookie_count=len(manifest.cookies),
                last_updated=manifest.last_updated,
                vendor_count=manifest.vendor_count,
                essential_count=manifest.essential_count,
                cross_site_count=manifest.cross_site_count,
            )
        return manifest

    async def _escalate(self, cookie: CookieRecord) -> Optional[ClassificationResult]:
        result = await self.client.classify_cookie(cookie.name, cookie.normalized_domain, cookie.value)
        if result is None:
            logger.warning(f"Escalation of {cookie.name} failed, keeping it")
        return result

    async def _classify(
        self,
        cookie: CookieRecord,
        manifest: Optional[CookieManifest],
        preferences: Preferences,
        report: CleanupReport
    ) -> Optional[ClassificationResult]:
        if manifest is not None:
            if manifest.find(cookie.name) is not None:
                return self.classifier.classify(cookie.name, cookie.domain, cookie.value, manifest)

            report.undeclared.append(cookie.name)
            if not preferences.ai_enabled:
                return None
            report.escalated += 1
            return await self._escalate(cookie)

        result = self.classifier.classify(cookie.name, cookie.domain, cookie.value)
        if result.category == CookieCategory.UNKNOWN and preferences.ai_enabled:
            report.escalated += 1
            return await self._escalate(cookie)
        return result

    async def _delete(self, cookie: CookieRecord, report: CleanupReport) -> None:
        response = await self.client.delete_cookie(cookie.name, cookie.normalized_domain)
        outcome = (response.data or {}).get('outcome') if response.success else None
        if outcome == 'deleted':
            report.deleted.append(cookie.name)
        elif outcome == 'blocked':
            report.blocked.append(cookie.name)
        else:
            logger.debug(f"Deletion of {cookie.name} did not complete: {outcome or response.error}")
            report.kept.append(cookie.name)

    async def run_pass(
        self,
        page_url: str,
        cookies: List[CookieRecord],
        preferences: Preferences
    ) -> CleanupReport:
        """Run one cleanup pass over the cookies visible to a page.

        Args:
            page_url: URL of the page
            cookies: Cookies currently set for the page
            preferences: Current user preferences

        Returns:
            CleanupReport with per-cookie outcomes
        """
        report = CleanupReport(url=page_url)

        if is_sensitive_url(page_url):
            logger.info(f"Skipping cleanup on sensitive page {page_url}")
            report.skipped = "sensitive_page"
            return report

        manifest = await self._load_manifest(page_url)
        report.manifest_source = manifest.source if manifest else None

        review_batch: List[ReviewCandidate] = []
        seen = set()
        for cookie in cookies:
            # The same cookie may be visible from several paths
            if cookie.key in seen:
                continue
            seen.add(cookie.key)
            report.processed += 1

            result = await self._classify(cookie, manifest, preferences, report)
            if result is None:
                report.kept.append(cookie.name)
                continue
            report.count_source(result)

            if (result.source == ClassificationSource.EXTERNAL_CLASSIFIER
                    and result.confidence < self.review_threshold):
                review_batch.append(ReviewCandidate(
                    name=cookie.name,
                    domain=cookie.normalized_domain,
                    value=cookie.value_prefix,
                    classification=result,
                    source="undeclared" if manifest is not None else "unknown_pattern",
                ))
                report.queued_for_review.append(cookie.name)
                report.kept.append(cookie.name)
                continue

            if should_delete(result.category, preferences, cookie.name):
                await self._delete(cookie, report)
            else:
                report.kept.append(cookie.name)

        if review_batch:
            response = await self.client.add_to_review_queue(review_batch)
            if not response.success:
                logger.warning(f"Could not queue {len(review_batch)} cookies for review: {response.error}")

        if report.processed:
            await self.client.log_action(
                ActivityAction.COOKIES_DELETED,
                domain=hostname_of(page_url),
                url=page_url,
                count=len(report.deleted),
                cookies=report.deleted,
                kept=len(report.kept),
                blocked=len(report.blocked),
                needs_review=len(report.queued_for_review),
                escalated=report.escalated,
                undeclared=report.undeclared,
                sources=report.by_source,
                manifest=report.manifest_source,
            )

        logger.info(
            f"Cleanup on {page_url}: {report.processed} processed, {len(report.deleted)} deleted, "
            f"{len(report.kept)} kept, {len(report.queued_for_review)} queued for review"
        )
        return report

    async def run_monitor_tick(
        self,
        page_url: str,
        cookies: List[CookieRecord],
        preferences: Preferences
    ) -> List[str]:
        """Delete reappearing known trackers the preferences disallow.

        Returns:
            Names of cookies deleted in this tick
        """
        if is_sensitive_url(page_url):
            return []

        report = CleanupReport(url=page_url)
        for cookie in cookies:
            if not cookie.name.startswith(KNOWN_TRACKER_PREFIXES):
                continue
            result = self.classifier.classify(cookie.name, cookie.domain, cookie.value)
            if should_delete(result.category, preferences, cookie.name):
                await self._delete(cookie, report)

        if report.deleted:
            logger.info(f"Monitor removed {len(report.deleted)} reappeared trackers on {page_url}")
        return report.deleted
