"""Banner counters and the status badge."""

import inspect
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

from ..storage import JsonStateStore

logger = logging.getLogger(__name__)

REVIEW_BADGE_COLOR = "#FF9800"
BANNER_BADGE_COLOR = "#667eea"


@dataclass(frozen=True)
class BadgeState:
    text: str
    color: Optional[str] = None


BadgeNotifier = Callable[[BadgeState], Any]


class Badge:
    """Computes the badge from pending reviews and today's banner count.

    Pending reviews take precedence; with neither the badge is cleared.
    """

    def __init__(self, notifier: Optional[BadgeNotifier] = None):
        self.notifier = notifier
        self.pending_reviews = 0
        self.banners_today = 0
        self.current = BadgeState(text="")

    def _compute(self) -> BadgeState:
        if self.pending_reviews > 0:
            return BadgeState(text=str(self.pending_reviews), color=REVIEW_BADGE_COLOR)
        if self.banners_today > 0:
            return BadgeState(text=str(self.banners_today), color=BANNER_BADGE_COLOR)
        return BadgeState(text="")

    async def update(
        self,
        pending_reviews: Optional[int] = None,
        banners_today: Optional[int] = None
    ) -> BadgeState:
        if pending_reviews is not None:
            self.pending_reviews = pending_reviews
        if banners_today is not None:
            self.banners_today = banners_today

        self.current = self._compute()
        if self.notifier is not None:
            result = self.notifier(self.current)
            if inspect.isawaitable(result):
                await result
        return self.current


class BannerCounter:
    """Handled-banner counts for today and overall, persisted.

    Every read and write goes through one atomic state update so concurrent
    increments from several pages are never lost.
    """

    KEYS = ('todayBannerCount', 'lifetimeBannerCount', 'lastResetDate')

    def __init__(self, state: JsonStateStore, today: Callable[[], date] = date.today):
        self.state = state
        self.today = today

    def _reset_if_new_day(self, data: Dict[str, Any], today: str) -> Dict[str, Any]:
        if data.get('lastResetDate') != today:
            logger.info("New day, resetting today's banner count")
            return {'todayBannerCount': 0, 'lastResetDate': today}
        return {}

    @staticmethod
    def _as_counts(data: Dict[str, Any]) -> Dict[str, int]:
        return {
            'today': int(data.get('todayBannerCount', 0)),
            'lifetime': int(data.get('lifetimeBannerCount', 0)),
        }

    async def counts(self) -> Dict[str, int]:
        """Current counts, resetting today's count when the date changed."""
        today = self.today().isoformat()
        data = await self.state.update_many(self.KEYS, lambda current: self._reset_if_new_day(current, today))
        return self._as_counts(data)

    async def increment(self) -> Dict[str, int]:
        today = self.today().isoformat()

        def bump(current: Dict[str, Any]) -> Dict[str, Any]:
            current.update(self._reset_if_new_day(current, today))
            return {
                'todayBannerCount': int(current.get('todayBannerCount', 0)) + 1,
                'lifetimeBannerCount': int(current.get('lifetimeBannerCount', 0)) + 1,
                'lastResetDate': today,
            }

        counts = self._as_counts(await self.state.update_many(self.KEYS, bump))
        logger.info(f"Banner handled: {counts['today']} today, {counts['lifetime']} lifetime")
        return counts
