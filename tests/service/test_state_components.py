"""Tests for activity log, banner counters, badge and preferences."""

import asyncio
from datetime import date
from unittest.mock import Mock

import pytest

from consentkeeper.cookies.models import ActivityAction, ActivityEntry, Preferences
from consentkeeper.service.activity import ActivityLog
from consentkeeper.service.counters import (
    BANNER_BADGE_COLOR, REVIEW_BADGE_COLOR, Badge, BadgeState, BannerCounter,
)
from consentkeeper.service.preferences import PREFERENCES_KEY, PreferenceStore
from consentkeeper.storage import JsonStateStore


class TestActivityLog:

    @pytest.mark.asyncio
    async def test_newest_first_and_capped(self):
        log = ActivityLog(JsonStateStore(), max_entries=3)

        for i in range(5):
            await log.record(ActivityEntry(
                domain=f"site{i}.com", action=ActivityAction.COOKIES_DELETED, details={"count": i}
            ))

        entries = await log.entries()
        assert [e.domain for e in entries] == ["site4.com", "site3.com", "site2.com"]

    @pytest.mark.asyncio
    async def test_clear(self):
        log = ActivityLog(JsonStateStore())
        await log.record(ActivityEntry(domain="a.com", action=ActivityAction.TCF_DETECTED), isolated=True)

        await log.clear(isolated=True)
        assert await log.entries(isolated=True) == []


class TestBannerCounter:

    @pytest.mark.asyncio
    async def test_today_resets_on_new_day(self):
        state = JsonStateStore()
        today = Mock(return_value=date(2024, 3, 1))
        counter = BannerCounter(state, today=today)

        await counter.increment()
        await counter.increment()
        today.return_value = date(2024, 3, 2)

        assert await counter.counts() == {"today": 0, "lifetime": 2}
        assert await counter.increment() == {"today": 1, "lifetime": 3}
        assert await state.get("lastResetDate") == "2024-03-02"

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, tmp_path):
        counter = BannerCounter(JsonStateStore(tmp_path / "s.json"), today=lambda: date(2024, 3, 1))

        await asyncio.gather(*(counter.increment() for _ in range(5)))

        assert await counter.counts() == {"today": 5, "lifetime": 5}


class TestBadge:

    @pytest.mark.asyncio
    async def test_pending_reviews_take_precedence(self):
        notified = []
        badge = Badge(notified.append)

        await badge.update(banners_today=4)
        assert badge.current == BadgeState(text="4", color=BANNER_BADGE_COLOR)

        await badge.update(pending_reviews=2)
        assert badge.current == BadgeState(text="2", color=REVIEW_BADGE_COLOR)

        await badge.update(pending_reviews=0, banners_today=0)
        assert badge.current == BadgeState(text="")
        assert len(notified) == 3


class TestPreferenceStore:

    @pytest.mark.asyncio
    async def test_defaults(self):
        prefs = await PreferenceStore(JsonStateStore()).get()

        assert prefs.enabled is True
        assert prefs.safe_mode is False
        assert prefs.allow_analytics is False

    @pytest.mark.asyncio
    async def test_roundtrip_uses_camel_case(self):
        state = JsonStateStore()
        store = PreferenceStore(state)

        await store.set(Preferences(safe_mode=True, allow_advertising=True))

        raw = await state.get(PREFERENCES_KEY)
        assert raw["safeMode"] is True
        assert (await store.get()).allow_advertising is True

    @pytest.mark.asyncio
    async def test_invalid_stored_preferences(self):
        state = JsonStateStore()
        await state.set(PREFERENCES_KEY, {"safeMode": "definitely"})

        assert await PreferenceStore(state).get() == Preferences()

    @pytest.mark.asyncio
    async def test_cooldown_window(self):
        now = [10000.0]
        store = PreferenceStore(JsonStateStore(), clock=lambda: now[0])

        assert not await store.is_on_cooldown("www.example.com", 3600)

        await store.set_cooldown("www.example.com")
        now[0] += 3599
        assert await store.is_on_cooldown("WWW.example.com", 3600)
        assert not await store.is_on_cooldown("other.example.com", 3600)

        now[0] += 2
        assert not await store.is_on_cooldown("www.example.com", 3600)
