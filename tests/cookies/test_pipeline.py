"""Unit tests for cookie cleanup passes."""

from unittest.mock import AsyncMock, Mock

import pytest

from consentkeeper.config import ClassifierConfig
from consentkeeper.cookies.models import (
    ActivityAction, ClassificationResult, ClassificationSource, CookieCategory, CookieManifest,
    CookieRecord, ManifestEntry, Preferences,
)
from consentkeeper.cookies.pipeline import ClassificationPipeline, is_sensitive_url
from consentkeeper.service.messages import ServiceResponse

PAGE_URL = "https://www.example.com/news"


def external(category, confidence):
    return ClassificationResult(
        category=category,
        source=ClassificationSource.EXTERNAL_CLASSIFIER,
        confidence=confidence,
        reasoning="model answer",
    )


def cookie(name, domain=".example.com", value="v"):
    return CookieRecord(name=name, domain=domain, value=value)


class TestClassificationPipeline:
    """Test classification, deletion and review routing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = Mock()
        self.client.classify_cookie = AsyncMock(return_value=external(CookieCategory.ANALYTICS, 0.6))
        self.client.delete_cookie = AsyncMock(return_value=ServiceResponse.ok({"outcome": "deleted"}))
        self.client.add_to_review_queue = AsyncMock(return_value=ServiceResponse.ok({"added": 1}))
        self.client.log_action = AsyncMock(return_value=ServiceResponse.ok({"recorded": True}))
        self.pipeline = ClassificationPipeline(self.client, classifier_config=ClassifierConfig())
        self.prefs = Preferences()

    def _deleted_names(self):
        return [c.args[0] for c in self.client.delete_cookie.await_args_list]

    @pytest.mark.asyncio
    async def test_disallowed_categories_are_deleted(self):
        cookies = [cookie("_ga"), cookie("_fbp"), cookie("session_id"), cookie("theme")]

        report = await self.pipeline.run_pass(PAGE_URL, cookies, self.prefs)

        assert report.deleted == ["_ga", "_fbp", "theme"]
        assert report.kept == ["session_id"]
        self.client.delete_cookie.assert_any_await("_ga", "example.com")
        self.client.classify_cookie.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_allowed_categories_are_kept(self):
        prefs = Preferences(allow_analytics=True)

        report = await self.pipeline.run_pass(PAGE_URL, [cookie("_ga"), cookie("_fbp")], prefs)

        assert report.deleted == ["_fbp"]
        assert report.kept == ["_ga"]

    @pytest.mark.asyncio
    async def test_low_confidence_escalation_goes_to_review(self):
        report = await self.pipeline.run_pass(PAGE_URL, [cookie("xk_9f2", value="abc")], self.prefs)

        assert report.queued_for_review == ["xk_9f2"]
        assert report.deleted == []
        assert report.escalated == 1
        self.client.delete_cookie.assert_not_awaited()

        (batch,), _ = self.client.add_to_review_queue.await_args
        assert batch[0].name == "xk_9f2"
        assert batch[0].domain == "example.com"
        assert batch[0].source == "unknown_pattern"
        assert batch[0].classification.confidence == 0.6

    @pytest.mark.asyncio
    async def test_confident_escalation_is_enforced(self):
        self.client.classify_cookie.return_value = external(CookieCategory.ADVERTISING, 0.9)

        report = await self.pipeline.run_pass(PAGE_URL, [cookie("xk_9f2")], self.prefs)

        assert report.deleted == ["xk_9f2"]
        self.client.add_to_review_queue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_is_kept_without_escalation(self):
        prefs = Preferences(ai_enabled=False)

        report = await self.pipeline.run_pass(PAGE_URL, [cookie("xk_9f2")], prefs)

        assert report.kept == ["xk_9f2"]
        self.client.classify_cookie.assert_not_awaited()
        self.client.delete_cookie.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_escalation_keeps_cookie(self):
        self.client.classify_cookie.return_value = None

        report = await self.pipeline.run_pass(PAGE_URL, [cookie("xk_9f2")], self.prefs)

        assert report.kept == ["xk_9f2"]
        assert report.queued_for_review == []

    @pytest.mark.asyncio
    async def test_blocked_deletion_is_reported(self):
        self.client.delete_cookie.return_value = ServiceResponse.ok({"outcome": "blocked"})

        report = await self.pipeline.run_pass(PAGE_URL, [cookie("_ga")], self.prefs)

        assert report.blocked == ["_ga"]
        assert report.deleted == []

    @pytest.mark.asyncio
    async def test_same_cookie_on_several_paths_is_processed_once(self):
        cookies = [cookie("_ga"), CookieRecord(name="_ga", domain="example.com", path="/blog")]

        report = await self.pipeline.run_pass(PAGE_URL, cookies, self.prefs)

        assert report.processed == 1
        assert self.client.delete_cookie.await_count == 1

    @pytest.mark.asyncio
    async def test_sensitive_page_is_skipped(self):
        report = await self.pipeline.run_pass("https://example.com/checkout/payment", [cookie("_ga")], self.prefs)

        assert report.skipped == "sensitive_page"
        self.client.delete_cookie.assert_not_awaited()
        self.client.log_action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pass_is_logged(self):
        await self.pipeline.run_pass(PAGE_URL, [cookie("_ga")], self.prefs)

        args, kwargs = self.client.log_action.await_args
        assert args[0] == ActivityAction.COOKIES_DELETED
        assert kwargs["domain"] == "www.example.com"
        assert kwargs["count"] == 1
        assert kwargs["cookies"] == ["_ga"]

    def test_sensitive_urls(self):
        assert is_sensitive_url("https://example.com/account/settings")
        assert is_sensitive_url("https://example.com/SignIn")
        assert not is_sensitive_url("https://example.com/news")


class TestManifestPass:
    """Test cleanup on a site with a declared manifest."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = Mock()
        self.client.classify_cookie = AsyncMock(return_value=external(CookieCategory.ANALYTICS, 0.6))
        self.client.delete_cookie = AsyncMock(return_value=ServiceResponse.ok({"outcome": "deleted"}))
        self.client.add_to_review_queue = AsyncMock(return_value=ServiceResponse.ok({"added": 1}))
        self.client.log_action = AsyncMock(return_value=ServiceResponse.ok({"recorded": True}))

        self.manifest = CookieManifest(
            domain="example.com",
            source="website_provided",
            cookies=[
                ManifestEntry(name="_fbp", category="advertising", vendor="Meta", cross_site=True),
                ManifestEntry(name="sid", category="essential", essential=True),
            ],
        )
        self.loader = Mock()
        self.loader.load = AsyncMock(return_value=self.manifest)
        self.pipeline = ClassificationPipeline(self.client, manifest_loader=self.loader)

    @pytest.mark.asyncio
    async def test_declared_cookies_follow_the_manifest(self):
        report = await self.pipeline.run_pass(PAGE_URL, [cookie("_fbp"), cookie("sid")], Preferences())

        assert report.deleted == ["_fbp"]
        assert report.kept == ["sid"]
        assert report.manifest_source == "website_provided"
        assert report.by_source == {"manifest": 2}

    @pytest.mark.asyncio
    async def test_undeclared_cookie_is_escalated_and_queued(self):
        report = await self.pipeline.run_pass(PAGE_URL, [cookie("_ga")], Preferences())

        assert report.undeclared == ["_ga"]
        assert report.queued_for_review == ["_ga"]
        (batch,), _ = self.client.add_to_review_queue.await_args
        assert batch[0].source == "undeclared"

    @pytest.mark.asyncio
    async def test_undeclared_cookie_kept_without_escalation(self):
        report = await self.pipeline.run_pass(PAGE_URL, [cookie("_ga")], Preferences(ai_enabled=False))

        assert report.kept == ["_ga"]
        self.client.classify_cookie.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manifest_detection_logged_once(self):
        await self.pipeline.run_pass(PAGE_URL, [cookie("_fbp")], Preferences())
        await self.pipeline.run_pass(PAGE_URL, [cookie("_fbp")], Preferences())

        actions = [c.args[0] for c in self.client.log_action.await_args_list]
        assert actions.count(ActivityAction.MANIFEST_DETECTED) == 1
        manifest_call = self.client.log_action.await_args_list[0]
        assert manifest_call.kwargs["vendor_count"] == 2
        assert manifest_call.kwargs["cross_site_count"] == 1


class TestMonitorTick:
    """Test the known-tracker monitor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = Mock()
        self.client.delete_cookie = AsyncMock(return_value=ServiceResponse.ok({"outcome": "deleted"}))
        self.pipeline = ClassificationPipeline(self.client)

    @pytest.mark.asyncio
    async def test_only_known_trackers_are_checked(self):
        cookies = [cookie("_ga"), cookie("_fbp"), cookie("theme"), cookie("session_id")]

        deleted = await self.pipeline.run_monitor_tick(PAGE_URL, cookies, Preferences())

        assert deleted == ["_ga", "_fbp"]

    @pytest.mark.asyncio
    async def test_allowed_trackers_are_kept(self):
        deleted = await self.pipeline.run_monitor_tick(
            PAGE_URL, [cookie("_ga")], Preferences(allow_analytics=True)
        )
        assert deleted == []

    @pytest.mark.asyncio
    async def test_sensitive_page(self):
        deleted = await self.pipeline.run_monitor_tick("https://example.com/login", [cookie("_ga")], Preferences())

        assert deleted == []
        self.client.delete_cookie.assert_not_awaited()
