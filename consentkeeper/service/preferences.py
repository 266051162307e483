"""User preferences and per-site cooldowns in shared state."""

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from ..cookies.domains import normalize_domain
from ..cookies.models import Preferences
from ..storage import JsonStateStore

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "preferences"


class PreferenceStore:
    """Reads preferences with defaults and tracks site cooldowns."""

    def __init__(self, state: JsonStateStore, clock: Callable[[], float] = time.time):
        self.state = state
        self.clock = clock

    async def get(self) -> Preferences:
        raw = await self.state.get(PREFERENCES_KEY, {})
        try:
            return Preferences.model_validate(raw or {})
        except ValidationError as e:
            logger.warning(f"Stored preferences are invalid, using defaults: {e}")
            return Preferences()

    async def set(self, preferences: Preferences) -> None:
        await self.state.set(PREFERENCES_KEY, preferences.model_dump(by_alias=True))

    @staticmethod
    def _cooldown_key(hostname: str) -> str:
        return f"cooldown_{normalize_domain(hostname)}"

    async def is_on_cooldown(self, hostname: str, window_s: float) -> bool:
        last_action = await self.state.get(self._cooldown_key(hostname), 0) or 0
        return self.clock() - float(last_action) < window_s

    async def set_cooldown(self, hostname: str, at: Optional[float] = None) -> None:
        await self.state.set(self._cooldown_key(hostname), self.clock() if at is None else at)
