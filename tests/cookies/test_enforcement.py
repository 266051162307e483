"""Unit tests for cookie deletion, attempt tracking and recreation suppression."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from consentkeeper.config import EnforcementConfig
from consentkeeper.cookies.enforcement import DeletionOutcome, EnforcementEngine
from consentkeeper.cookies.models import CookieRecord
from consentkeeper.cookies.store import MemoryCookieStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDeleteCookie:
    """Test the deletion contract."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = MemoryCookieStore()
        self.clock = FakeClock()
        self.engine = EnforcementEngine(
            self.store,
            EnforcementConfig(attempt_cooldown_s=30, max_deletion_attempts=3, inactivity_window_s=300),
            clock=self.clock,
        )

    async def _set(self, name, domain, partition_id="default", path="/", secure=False):
        await self.store.set_cookie(CookieRecord(
            name=name, domain=domain, path=path, secure=secure, partition_id=partition_id
        ))

    @pytest.mark.asyncio
    async def test_deletes_all_related_instances(self):
        await self._set("_ga", ".example.com")
        await self._set("_ga", "shop.example.com", path="/cart", secure=True)
        await self._set("_ga", "badexample.com")

        result = await self.engine.delete_cookie("_ga", "example.com")

        assert result.outcome == DeletionOutcome.DELETED
        assert result.matched == 2
        assert result.removed == 2
        remaining = await self.store.get_all("_ga")
        assert [c.domain for c in remaining] == ["badexample.com"]

    @pytest.mark.asyncio
    async def test_deletes_across_partitions(self):
        await self._set("_fbp", "example.com", partition_id="default")
        await self._set("_fbp", "example.com", partition_id="isolated")

        result = await self.engine.delete_cookie("_fbp", "example.com")

        assert result.removed == 2
        assert await self.store.get_all("_fbp") == []

    @pytest.mark.asyncio
    async def test_cooldown_blocks_repeat_attempts(self):
        await self._set("_ga", "example.com")
        first = await self.engine.delete_cookie("_ga", "example.com")

        await self._set("_ga", "other.org")
        self.clock.now += 10
        second = await self.engine.delete_cookie("_ga", "example.com")

        assert first.success
        assert second.outcome == DeletionOutcome.BLOCKED
        assert second.reason == "cooldown"

    @pytest.mark.asyncio
    async def test_blocked_call_issues_no_storage_operation(self):
        self.store.get_all = AsyncMock(return_value=[])
        await self.engine.delete_cookie("_ga", "example.com")
        await self.engine.delete_cookie("_ga", "example.com")

        assert self.store.get_all.await_count == 1

    @pytest.mark.asyncio
    async def test_attempt_ceiling(self):
        for _ in range(3):
            result = await self.engine.delete_cookie("ghost", "example.com")
            assert result.outcome == DeletionOutcome.NOT_FOUND
            self.clock.now += 31

        result = await self.engine.delete_cookie("ghost", "example.com")

        assert result.outcome == DeletionOutcome.BLOCKED
        assert result.reason == "max_attempts"
        assert self.engine.attempt_record("example.com:ghost").attempts == 3

    @pytest.mark.asyncio
    async def test_concurrent_calls_delete_once(self):
        await self._set("_ga", "example.com")
        remove = AsyncMock(wraps=self.store.remove)
        self.store.remove = remove

        results = await asyncio.gather(
            self.engine.delete_cookie("_ga", "example.com"),
            self.engine.delete_cookie("_ga", ".example.com"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["blocked", "deleted"]
        assert remove.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_removal(self):
        await self._set("_ga", "example.com")
        self.store.remove = AsyncMock(return_value=False)

        result = await self.engine.delete_cookie("_ga", "example.com")

        assert result.outcome == DeletionOutcome.FAILED
        assert result.failures == ["default:http://example.com/"]
        assert not self.engine.is_blocklisted("example.com:_ga")

    @pytest.mark.asyncio
    async def test_enumeration_failure(self):
        self.store.get_all = AsyncMock(side_effect=RuntimeError("store gone"))

        result = await self.engine.delete_cookie("_ga", "example.com")

        assert result.outcome == DeletionOutcome.FAILED
        assert result.reason == "enumeration_failed"

    @pytest.mark.asyncio
    async def test_success_blocklists_target_and_instances(self):
        await self._set("_ga", "www.example.com")

        await self.engine.delete_cookie("_ga", "example.com")

        assert self.engine.is_blocklisted("example.com:_ga")
        assert self.engine.is_blocklisted("www.example.com:_ga")

    def test_result_dict(self):
        from consentkeeper.cookies.enforcement import DeletionResult

        data = DeletionResult(key="example.com:_ga", outcome=DeletionOutcome.DELETED, matched=1, removed=1).to_dict()
        assert data["success"] is True
        assert data["outcome"] == "deleted"


class TestRecreationSuppression:
    """Test that blocklisted cookies are removed when they come back."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = MemoryCookieStore()
        self.clock = FakeClock()
        self.engine = EnforcementEngine(self.store, EnforcementConfig(), clock=self.clock)

    @pytest.mark.asyncio
    async def test_recreated_cookie_is_removed_once(self):
        await self.engine.start()
        try:
            await self.store.set_cookie(CookieRecord(name="_fbp", domain="example.com"))
            await self.engine.delete_cookie("_fbp", "example.com")

            remove = AsyncMock(wraps=self.store.remove)
            self.store.remove = remove
            await self.store.set_cookie(CookieRecord(name="_fbp", domain="example.com", value="again"))

            assert await self.store.get_all("_fbp") == []
            assert remove.await_count == 1
            assert self.engine.stats["suppressed"] == 1
        finally:
            await self.engine.stop()

    @pytest.mark.asyncio
    async def test_unrelated_cookie_is_left_alone(self):
        await self.engine.start()
        try:
            await self.store.set_cookie(CookieRecord(name="_fbp", domain="example.com"))
            await self.engine.delete_cookie("_fbp", "example.com")

            await self.store.set_cookie(CookieRecord(name="_fbp", domain="other.org"))

            assert len(await self.store.get_all("_fbp")) == 1
        finally:
            await self.engine.stop()

    @pytest.mark.asyncio
    async def test_no_suppression_after_stop(self):
        await self.engine.start()
        await self.store.set_cookie(CookieRecord(name="_fbp", domain="example.com"))
        await self.engine.delete_cookie("_fbp", "example.com")
        await self.engine.stop()

        await self.store.set_cookie(CookieRecord(name="_fbp", domain="example.com"))

        assert len(await self.store.get_all("_fbp")) == 1


class TestSweep:
    """Test eviction of idle attempt records and blocklist entries."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = MemoryCookieStore()
        self.clock = FakeClock()
        self.engine = EnforcementEngine(
            self.store, EnforcementConfig(inactivity_window_s=300), clock=self.clock
        )

    @pytest.mark.asyncio
    async def test_sweep_evicts_idle_entries(self):
        await self.store.set_cookie(CookieRecord(name="_ga", domain="example.com"))
        await self.engine.delete_cookie("_ga", "example.com")

        assert self.engine.sweep(now=self.clock.now + 100).attempts_evicted == 0

        result = self.engine.sweep(now=self.clock.now + 301)

        assert result.attempts_evicted == 1
        assert result.blocklist_evicted == 1
        assert not self.engine.is_blocklisted("example.com:_ga")
        assert self.engine.attempt_record("example.com:_ga") is None

    @pytest.mark.asyncio
    async def test_sweep_resets_attempt_ceiling(self):
        for _ in range(3):
            await self.engine.delete_cookie("ghost", "example.com")
            self.clock.now += 31
        assert (await self.engine.delete_cookie("ghost", "example.com")).reason == "max_attempts"

        self.clock.now += 400
        self.engine.sweep()

        result = await self.engine.delete_cookie("ghost", "example.com")
        assert result.outcome == DeletionOutcome.NOT_FOUND
