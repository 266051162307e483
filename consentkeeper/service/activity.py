"""Activity log shared with reporting.

Entries are kept newest first, separately for normal and isolated browsing,
and each list is capped so the oldest entries fall off.
"""

import logging
from typing import Any, Dict, List

from ..cookies.models import ActivityEntry
from ..storage import JsonStateStore

logger = logging.getLogger(__name__)

NORMAL_LOG_KEY = "logs"
ISOLATED_LOG_KEY = "incognito_logs"


class ActivityLog:
    """Capped, persisted activity log."""

    def __init__(self, state: JsonStateStore, max_entries: int = 1000):
        self.state = state
        self.max_entries = max_entries

    @staticmethod
    def _key(isolated: bool) -> str:
        return ISOLATED_LOG_KEY if isolated else NORMAL_LOG_KEY

    async def record(self, entry: ActivityEntry, isolated: bool = False) -> None:
        data = entry.model_dump(mode='json')

        def prepend(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            return ([data] + entries)[:self.max_entries]

        await self.state.update(self._key(isolated), prepend, default=[])
        logger.debug(f"Recorded {entry.action.value} for {entry.domain}")

    async def entries(self, isolated: bool = False) -> List[ActivityEntry]:
        raw = await self.state.get(self._key(isolated), [])
        return [ActivityEntry.model_validate(item) for item in raw]

    async def clear(self, isolated: bool = False) -> None:
        await self.state.set(self._key(isolated), [])
