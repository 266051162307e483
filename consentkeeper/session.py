"""Per-page coordination.

A PageSession runs everything consentkeeper does for one page load: TCF
detection, consent prompt resolution, the timed cleanup passes and the
continuous monitor for reappearing trackers. The resolver and the cookie
work run concurrently and never wait on each other.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .banner.driver import PageDriver
from .banner.resolver import BannerResolver, ResolutionResult
from .config import ConsentKeeperConfig
from .errors import ConsentKeeperError
from .cookies.domains import hostname_of
from .cookies.models import ActivityAction, Preferences
from .cookies.pipeline import ClassificationPipeline, CleanupReport
from .service.client import ServiceClient
from .service.preferences import PreferenceStore

logger = logging.getLogger(__name__)


@dataclass
class SessionReport:
    """Everything that happened on one page."""

    url: str
    skipped: Optional[str] = None
    tcf: Optional[dict] = None
    resolution: Optional[ResolutionResult] = None
    cleanup: List[CleanupReport] = field(default_factory=list)
    monitor_deleted: List[str] = field(default_factory=list)

    @property
    def deleted(self) -> List[str]:
        names = []
        for report in self.cleanup:
            names.extend(report.deleted)
        names.extend(self.monitor_deleted)
        return names


class PageSession:
    """Runs prompt resolution and cookie cleanup for one page load."""

    def __init__(
        self,
        driver: PageDriver,
        client: ServiceClient,
        preference_store: PreferenceStore,
        config: ConsentKeeperConfig,
        pipeline: Optional[ClassificationPipeline] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize page session.

        Args:
            driver: Driver for the page
            client: Background service client
            preference_store: Shared preferences and site cooldowns
            config: Complete configuration
            pipeline: Cleanup pipeline; built from ``client`` when omitted
            sleep: Awaitable used for all waits, replaceable in tests
        """
        self.driver = driver
        self.client = client
        self.preference_store = preference_store
        self.config = config
        self.pipeline = pipeline or ClassificationPipeline(client, classifier_config=config.classifier)
        self._sleep = sleep

    async def run(self) -> SessionReport:
        url = self.driver.url
        report = SessionReport(url=url)

        preferences = await self.preference_store.get()
        if not preferences.enabled:
            logger.info(f"Disabled, not processing {url}")
            report.skipped = "disabled"
            return report

        logger.info(
            f"Processing {url} (safe mode: {preferences.safe_mode}, ai: {preferences.ai_enabled}, "
            f"analytics: {preferences.allow_analytics}, advertising: {preferences.allow_advertising}, "
            f"personalization: {preferences.allow_personalization})"
        )

        report.tcf = await self._check_tcf(url)

        results = await asyncio.gather(
            self._resolve(preferences),
            self._cleanup(url, preferences),
            self._monitor(url, preferences),
            return_exceptions=True,
        )
        resolution, cleanup, monitored = [
            self._settle(name, outcome, default)
            for name, outcome, default in zip(("resolution", "cleanup", "monitor"), results, (None, [], []))
        ]
        report.resolution = resolution
        report.cleanup = cleanup
        report.monitor_deleted = monitored
        return report

    def _settle(self, name: str, outcome, default):
        """Keep one failed task from discarding the others' results."""
        if isinstance(outcome, Exception):
            logger.error(f"Page {name} on {self.driver.url} failed: {outcome}")
            return default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def _check_tcf(self, url: str) -> Optional[dict]:
        try:
            tcf = await self.driver.read_tcf_data()
        except ConsentKeeperError as e:
            logger.debug(f"TCF lookup on {url} failed: {e}")
            return None
        if tcf is None:
            return None

        logger.info(f"{hostname_of(url)} uses IAB TCF (gdprApplies={tcf.get('gdprApplies')})")
        await self.client.log_action(
            ActivityAction.TCF_DETECTED,
            domain=hostname_of(url),
            url=url,
            framework="IAB TCF v2",
            gdprApplies=tcf.get("gdprApplies"),
            vendorCount=tcf.get("vendorCount", 0),
        )
        return tcf

    async def _resolve(self, preferences: Preferences) -> Optional[ResolutionResult]:
        if not self.config.detection.enabled:
            return None

        resolver = BannerResolver(
            self.driver,
            self.client,
            self.preference_store,
            preferences,
            config=self.config.detection,
            sleep=self._sleep,
        )
        return await resolver.run()

    async def _cleanup(self, url: str, preferences: Preferences) -> List[CleanupReport]:
        reports: List[CleanupReport] = []
        if not self.config.cleanup.enabled:
            return reports

        elapsed = 0.0
        passes = len(self.config.cleanup.pass_delays_s)
        for number, delay in enumerate(self.config.cleanup.pass_delays_s, start=1):
            await self._sleep(max(delay - elapsed, 0.0))
            elapsed = delay

            logger.info(f"Cleanup pass {number}/{passes} on {url}")
            cookies = await self.driver.cookies()
            reports.append(await self.pipeline.run_pass(url, cookies, preferences))
        return reports

    async def _monitor(self, url: str, preferences: Preferences) -> List[str]:
        deleted: List[str] = []
        if not self.config.cleanup.enabled:
            return deleted

        for _ in range(self.config.cleanup.monitor_ticks):
            await self._sleep(self.config.cleanup.monitor_interval_s)
            cookies = await self.driver.cookies()
            if cookies:
                deleted.extend(await self.pipeline.run_monitor_tick(url, cookies, preferences))
        return deleted
