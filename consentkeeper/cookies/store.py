"""Cookie storage backends.

A cookie store spans every storage partition the browser session has (for
Playwright, one BrowserContext per partition). It can enumerate cookies,
remove one instance from one partition, and notify subscribers when cookies
are created or removed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .domains import normalize_domain
from .models import CookieRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CookieChange:
    """A cookie was created (or overwritten) or removed."""
    cookie: CookieRecord
    removed: bool = False


ChangeListener = Callable[[CookieChange], Awaitable[None]]


class CookieStore(ABC):
    """Abstract cookie store over all storage partitions."""

    def __init__(self):
        self._listeners: List[ChangeListener] = []

    @abstractmethod
    async def get_all(self, name: Optional[str] = None) -> List[CookieRecord]:
        """Enumerate cookies in every partition, optionally filtered by name."""
        pass

    @abstractmethod
    async def remove(self, url: str, name: str, partition_id: str) -> bool:
        """Remove one cookie from one partition.

        Args:
            url: ``<scheme>://<domain><path>`` addressing the cookie
            name: Cookie name
            partition_id: Storage partition holding the cookie

        Returns:
            True if a cookie was removed
        """
        pass

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, change: CookieChange) -> None:
        for listener in list(self._listeners):
            try:
                await listener(change)
            except Exception as e:
                logger.error(f"Cookie change listener failed for {change.cookie.key}: {e}")


def _split_removal_url(url: str) -> Tuple[str, str]:
    parsed = urlparse(url)
    return normalize_domain(parsed.hostname or ""), parsed.path or "/"


class MemoryCookieStore(CookieStore):
    """In-process cookie store with named partitions."""

    def __init__(self):
        super().__init__()
        self._partitions: Dict[str, Dict[Tuple[str, str, str], CookieRecord]] = {}

    async def set_cookie(self, cookie: CookieRecord) -> None:
        """Create or overwrite a cookie and notify listeners."""
        jar = self._partitions.setdefault(cookie.partition_id, {})
        jar[(cookie.name, cookie.normalized_domain, cookie.path)] = cookie
        await self._notify(CookieChange(cookie=cookie))

    async def get_all(self, name: Optional[str] = None) -> List[CookieRecord]:
        cookies = []
        for jar in self._partitions.values():
            for cookie in jar.values():
                if name is None or cookie.name == name:
                    cookies.append(cookie)
        return cookies

    async def remove(self, url: str, name: str, partition_id: str) -> bool:
        domain, path = _split_removal_url(url)
        jar = self._partitions.get(partition_id, {})
        cookie = jar.pop((name, domain, path), None)
        if cookie is None:
            return False

        await self._notify(CookieChange(cookie=cookie, removed=True))
        return True


class PlaywrightCookieStore(CookieStore):
    """Cookie store over Playwright BrowserContexts.

    Each registered context is one storage partition. Playwright has no
    cookie change event, so creations are detected by diffing
    ``context.cookies()`` on a polling interval.
    """

    def __init__(self, poll_interval_s: float = 1.0):
        super().__init__()
        self.poll_interval_s = poll_interval_s
        self._contexts: Dict[str, Any] = {}
        self._known: Dict[Tuple[str, str, str, str], str] = {}
        self._poll_task: Optional[asyncio.Task] = None

    def register_context(self, context: Any, partition_id: str) -> None:
        """Add a BrowserContext as a storage partition."""
        self._contexts[partition_id] = context
        logger.info(f"Registered browser context as partition {partition_id}")

    def unregister_context(self, partition_id: str) -> None:
        self._contexts.pop(partition_id, None)
        self._known = {k: v for k, v in self._known.items() if k[0] != partition_id}

    @property
    def partitions(self) -> List[str]:
        return list(self._contexts)

    async def _read_partition(self, partition_id: str) -> List[CookieRecord]:
        context = self._contexts[partition_id]
        raw_cookies = await context.cookies()
        return [CookieRecord.from_playwright_cookie(c, partition_id) for c in raw_cookies]

    async def get_all(self, name: Optional[str] = None) -> List[CookieRecord]:
        cookies = []
        for partition_id in list(self._contexts):
            try:
                records = await self._read_partition(partition_id)
            except Exception as e:
                logger.warning(f"Failed to read cookies from partition {partition_id}: {e}")
                continue
            cookies.extend(c for c in records if name is None or c.name == name)
        return cookies

    async def remove(self, url: str, name: str, partition_id: str) -> bool:
        context = self._contexts.get(partition_id)
        if context is None:
            logger.warning(f"Cannot remove {name}: unknown partition {partition_id}")
            return False

        domain, path = _split_removal_url(url)
        try:
            matches = [
                c for c in await self._read_partition(partition_id)
                if c.name == name and c.normalized_domain == domain and c.path == path
            ]
            if not matches:
                return False

            for cookie in matches:
                await context.clear_cookies(name=cookie.name, domain=cookie.domain, path=cookie.path)

            remaining = [
                c for c in await self._read_partition(partition_id)
                if c.name == name and c.normalized_domain == domain and c.path == path
            ]
        except Exception as e:
            logger.error(f"Failed to remove cookie {name} from {url} in {partition_id}: {e}")
            return False

        if remaining:
            return False

        for cookie in matches:
            self._known.pop((partition_id, cookie.name, cookie.normalized_domain, cookie.path), None)
            await self._notify(CookieChange(cookie=cookie, removed=True))
        return True

    async def poll_once(self) -> None:
        """Diff every partition against the last snapshot and emit changes."""
        seen: Dict[Tuple[str, str, str, str], CookieRecord] = {}
        for partition_id in list(self._contexts):
            try:
                records = await self._read_partition(partition_id)
            except Exception as e:
                logger.debug(f"Cookie poll failed for partition {partition_id}: {e}")
                continue
            for cookie in records:
                seen[(partition_id, cookie.name, cookie.normalized_domain, cookie.path)] = cookie

        previous = self._known
        self._known = {key: cookie.value for key, cookie in seen.items()}

        for key, cookie in seen.items():
            if previous.get(key) != cookie.value:
                await self._notify(CookieChange(cookie=cookie))

        for key in previous.keys() - seen.keys():
            partition_id, name, domain, path = key
            removed = CookieRecord(name=name, domain=domain, path=path, partition_id=partition_id)
            await self._notify(CookieChange(cookie=removed, removed=True))

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_s)
            await self.poll_once()

    async def start(self) -> None:
        if self._poll_task is not None:
            return

        # Baseline snapshot so pre-existing cookies are not reported as new
        for partition_id in list(self._contexts):
            try:
                for cookie in await self._read_partition(partition_id):
                    self._known[(partition_id, cookie.name, cookie.normalized_domain, cookie.path)] = cookie.value
            except Exception as e:
                logger.debug(f"Baseline cookie read failed for partition {partition_id}: {e}")

        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None
