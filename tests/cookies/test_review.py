"""Unit tests for the review queue."""

from unittest.mock import AsyncMock, Mock

import pytest

from consentkeeper.cookies.enforcement import DeletionOutcome, DeletionResult
from consentkeeper.cookies.models import (
    ClassificationResult, ClassificationSource, CookieCategory, ReviewStatus,
)
from consentkeeper.cookies.review import REVIEW_QUEUE_KEY, ReviewCandidate, ReviewQueue
from consentkeeper.storage import JsonStateStore


def uncertain(category=CookieCategory.ANALYTICS, confidence=0.6):
    return ClassificationResult(
        category=category,
        source=ClassificationSource.EXTERNAL_CLASSIFIER,
        confidence=confidence,
        reasoning="Looks like a visit counter",
    )


class TestReviewQueue:
    """Test queueing, uniqueness and decisions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.state = JsonStateStore()
        self.deleter = AsyncMock(return_value=DeletionResult(key="k", outcome=DeletionOutcome.DELETED))
        self.pending_counts = []
        self.queue = ReviewQueue(
            self.state,
            deleter=self.deleter,
            on_pending_count=self.pending_counts.append,
            clock=lambda: 1700000000.0,
        )

    @pytest.mark.asyncio
    async def test_add_creates_pending_item(self):
        item = await self.queue.add("xk_9f2", "example.com", "abc" * 100, uncertain(), source="unknown_pattern")

        assert item.id == "example.com_xk_9f2_1700000000000"
        assert item.status == ReviewStatus.PENDING
        assert item.category == CookieCategory.ANALYTICS
        assert item.confidence == 0.6
        assert len(item.value) == 100
        assert item.source == "unknown_pattern"
        assert self.pending_counts == [1]

    @pytest.mark.asyncio
    async def test_one_pending_item_per_name_and_domain(self):
        await self.queue.add("xk_9f2", "example.com", "", uncertain())
        duplicate = await self.queue.add("xk_9f2", ".example.com", "", uncertain())
        other_domain = await self.queue.add("xk_9f2", "other.org", "", uncertain())

        assert duplicate is None
        assert other_domain is not None
        assert await self.queue.pending_count() == 2

    @pytest.mark.asyncio
    async def test_add_many_deduplicates_within_batch(self):
        candidates = [
            ReviewCandidate(name="a", domain="example.com", classification=uncertain()),
            ReviewCandidate(name="a", domain="example.com", classification=uncertain()),
            ReviewCandidate(name="b", domain="example.com", classification=uncertain()),
        ]

        added = await self.queue.add_many(candidates)

        assert [i.cookie_name for i in added] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_keep_decision(self):
        item = await self.queue.add("xk_9f2", "example.com", "", uncertain())

        decided = await self.queue.decide(item.id, ReviewStatus.KEEP)

        assert decided.status == ReviewStatus.KEEP
        assert decided.decided_at is not None
        assert await self.queue.pending() == []
        assert len(await self.queue.all_items()) == 1
        self.deleter.assert_not_awaited()
        assert self.pending_counts[-1] == 0

    @pytest.mark.asyncio
    async def test_delete_decision_calls_deleter_with_domain(self):
        item = await self.queue.add("xk_9f2", ".example.com", "", uncertain())

        await self.queue.decide(item.id, ReviewStatus.DELETE)

        self.deleter.assert_awaited_once_with("xk_9f2", "example.com")

    @pytest.mark.asyncio
    async def test_delete_decision_targets_open_pages(self):
        queue = ReviewQueue(
            self.state,
            deleter=self.deleter,
            open_pages=Mock(return_value=[
                "https://shop.example.com/cart",
                "https://www.example.com/",
                "https://unrelated.org/",
            ]),
        )
        item = await queue.add("xk_9f2", "example.com", "", uncertain())

        await queue.decide(item.id, "delete")

        hosts = [c.args[1] for c in self.deleter.await_args_list]
        assert hosts == ["shop.example.com", "www.example.com"]

    @pytest.mark.asyncio
    async def test_decided_item_can_be_queued_again(self):
        item = await self.queue.add("xk_9f2", "example.com", "", uncertain())
        await self.queue.decide(item.id, ReviewStatus.KEEP)

        again = await self.queue.add("xk_9f2", "example.com", "", uncertain())
        assert again is not None

    @pytest.mark.asyncio
    async def test_unknown_or_decided_id(self):
        item = await self.queue.add("xk_9f2", "example.com", "", uncertain())
        await self.queue.decide(item.id, ReviewStatus.KEEP)

        assert await self.queue.decide(item.id, ReviewStatus.DELETE) is None
        assert await self.queue.decide("nope", ReviewStatus.KEEP) is None

    @pytest.mark.asyncio
    async def test_pending_is_not_a_decision(self):
        with pytest.raises(ValueError):
            await self.queue.decide("any", ReviewStatus.PENDING)

    @pytest.mark.asyncio
    async def test_persisted_under_shared_key(self):
        await self.queue.add("xk_9f2", "example.com", "", uncertain())

        raw = await self.state.get(REVIEW_QUEUE_KEY)
        assert raw[0]["cookie_name"] == "xk_9f2"
        assert raw[0]["status"] == "pending"
