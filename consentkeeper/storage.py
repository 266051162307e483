"""Persisted shared state for consentkeeper.

The background service and page sessions share a small key/value document:
preferences, the review queue, activity logs, site cooldowns and banner
counters. ``JsonStateStore`` keeps that document in memory and, when given a
path, writes it through to a JSON file with aiofiles.
"""

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import aiofiles

from .errors import StorageError

logger = logging.getLogger(__name__)


class JsonStateStore:
    """Async key/value store backed by a single JSON file."""

    def __init__(self, path: Optional[Path] = None):
        """Initialize the store.

        Args:
            path: JSON file to persist to. ``None`` keeps state in memory only.
        """
        self.path = Path(path) if path is not None else None
        self._data: Dict[str, Any] = {}
        self._loaded = self.path is None
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        self._loaded = True
        if not self.path.exists():
            logger.info(f"State file {self.path} does not exist yet, starting empty")
            return

        try:
            async with aiofiles.open(self.path, 'r') as f:
                content = await f.read()
            self._data = json.loads(content) if content.strip() else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            self._data = {}

    async def _flush(self) -> None:
        if self.path is None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, 'w') as f:
                await f.write(json.dumps(self._data, indent=2, default=str))
        except OSError as e:
            logger.error(f"Failed to save state file {self.path}: {e}")
            raise StorageError(f"Could not write state file {self.path}: {e}")

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            await self._ensure_loaded()
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: Dict[str, Any]) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._data.update(copy.deepcopy(values))
            await self._flush()

    async def delete(self, key: str) -> None:
        async with self._lock:
            await self._ensure_loaded()
            if self._data.pop(key, None) is not None:
                await self._flush()

    async def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace ``key`` with ``fn(current)``.

        Args:
            key: State key to update
            fn: Receives a copy of the current value (or ``default``) and
                returns the new value
            default: Value passed to ``fn`` when the key is absent

        Returns:
            The new value
        """
        async with self._lock:
            await self._ensure_loaded()
            current = copy.deepcopy(self._data.get(key, default))
            new_value = fn(current)
            self._data[key] = new_value
            await self._flush()
            return copy.deepcopy(new_value)

    async def update_many(
        self,
        keys: Iterable[str],
        fn: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Atomically merge ``fn(current)`` into the state.

        Args:
            keys: State keys read for ``fn``; absent keys are left out
            fn: Receives a copy of the current values and returns the
                values to write, possibly empty

        Returns:
            The values of ``keys`` after the update
        """
        keys = list(keys)
        async with self._lock:
            await self._ensure_loaded()
            current = {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}
            changes = fn(current)
            if changes:
                self._data.update(copy.deepcopy(changes))
                await self._flush()
            return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}
