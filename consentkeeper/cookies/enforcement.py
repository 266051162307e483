"""Cookie deletion, attempt tracking and recreation suppression.

The enforcement engine owns two process-scoped maps keyed by ``domain:name``:

- attempt records, consulted before every deletion so a key is never retried
  inside the cooldown window or beyond the attempt ceiling
- the blocklist, filled only after a confirmed deletion and used to remove
  the cookie again whenever it is recreated

Both maps are cleared only by the periodic sweep.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..config import EnforcementConfig
from .domains import domains_related
from .models import CookieRecord, cookie_key
from .store import CookieChange, CookieStore

logger = logging.getLogger(__name__)


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class DeletionResult:
    """Result of one call to the deletion contract."""

    key: str
    outcome: DeletionOutcome
    matched: int = 0
    removed: int = 0
    reason: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == DeletionOutcome.DELETED

    def to_dict(self) -> Dict[str, object]:
        return {
            'key': self.key,
            'outcome': self.outcome.value,
            'success': self.success,
            'matched': self.matched,
            'removed': self.removed,
            'reason': self.reason,
            'failures': list(self.failures),
        }


@dataclass
class AttemptRecord:
    timestamp: float
    attempts: int = 0


@dataclass
class SweepResult:
    attempts_evicted: int = 0
    blocklist_evicted: int = 0


class EnforcementEngine:
    """Deletes disallowed cookies across partitions and keeps them deleted."""

    def __init__(
        self,
        store: CookieStore,
        config: Optional[EnforcementConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        """Initialize enforcement engine.

        Args:
            store: Cookie store spanning all storage partitions
            config: Cooldown, attempt ceiling and sweep settings
            clock: Time source in seconds; injectable for tests
        """
        self.store = store
        self.config = config or EnforcementConfig()
        self.clock = clock

        self._attempts: Dict[str, AttemptRecord] = {}
        self._blocklist: Dict[str, float] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._sweep_task: Optional[asyncio.Task] = None

        self.stats = {
            'deleted': 0,
            'blocked': 0,
            'not_found': 0,
            'failed': 0,
            'suppressed': 0,
        }

    # Lifecycle

    async def start(self) -> None:
        """Subscribe to cookie creations and start the periodic sweep."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_cookie_change)
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                f"Started enforcement engine (sweep every {self.config.sweep_interval_s}s)"
            )

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Stopped enforcement engine")

    # Inspection

    def is_blocklisted(self, key: str) -> bool:
        return key in self._blocklist

    def blocklist_keys(self) -> List[str]:
        return sorted(self._blocklist)

    def attempt_record(self, key: str) -> Optional[AttemptRecord]:
        return self._attempts.get(key)

    # Deletion contract

    def _check_attempts(self, key: str, now: float) -> Optional[str]:
        record = self._attempts.get(key)
        if record is None:
            return None
        if record.attempts >= self.config.max_deletion_attempts:
            return "max_attempts"
        if now - record.timestamp < self.config.attempt_cooldown_s:
            return "cooldown"
        return None

    async def delete_cookie(self, name: str, domain: str) -> DeletionResult:
        """Delete every instance of ``name`` related to ``domain``.

        Instances in all partitions whose domain is equal to, a superdomain
        of or a subdomain of ``domain`` are removed using their own scheme,
        path and partition.

        Args:
            name: Cookie name
            domain: Owning domain of the logical key

        Returns:
            DeletionResult; BLOCKED when the cooldown or the attempt ceiling
            applies, in which case no storage operation is issued
        """
        key = cookie_key(domain, name)
        now = self.clock()

        blocked_reason = self._check_attempts(key, now)
        if blocked_reason is not None:
            self.stats['blocked'] += 1
            logger.debug(f"Deletion of {key} blocked ({blocked_reason})")
            return DeletionResult(key=key, outcome=DeletionOutcome.BLOCKED, reason=blocked_reason)

        # Claim the attempt before the first suspend point so a concurrent
        # call for the same key sees the cooldown
        record = self._attempts.setdefault(key, AttemptRecord(timestamp=now))
        record.timestamp = now
        record.attempts += 1

        try:
            candidates = await self.store.get_all(name)
        except Exception as e:
            logger.error(f"Failed to enumerate cookies for {key}: {e}")
            self.stats['failed'] += 1
            return DeletionResult(
                key=key, outcome=DeletionOutcome.FAILED, reason="enumeration_failed",
                failures=[str(e)]
            )

        matches = [c for c in candidates if domains_related(c.domain, domain)]
        if not matches:
            self.stats['not_found'] += 1
            logger.debug(f"No instances of {key} found (attempt {record.attempts})")
            return DeletionResult(key=key, outcome=DeletionOutcome.NOT_FOUND, reason="not_found")

        removed: List[CookieRecord] = []
        failures: List[str] = []
        for cookie in matches:
            try:
                ok = await self.store.remove(cookie.removal_url, cookie.name, cookie.partition_id)
            except Exception as e:
                ok = False
                logger.warning(f"Removal of {cookie.key} in {cookie.partition_id} raised: {e}")
            if ok:
                removed.append(cookie)
            else:
                failures.append(f"{cookie.partition_id}:{cookie.removal_url}")

        record.timestamp = self.clock()

        if not removed:
            self.stats['failed'] += 1
            logger.warning(f"Failed to delete any of {len(matches)} instances of {key}")
            return DeletionResult(
                key=key, outcome=DeletionOutcome.FAILED, matched=len(matches),
                reason="removal_failed", failures=failures
            )

        touched = self.clock()
        self._blocklist[key] = touched
        for cookie in removed:
            self._blocklist[cookie.key] = touched

        self.stats['deleted'] += 1
        logger.info(
            f"Deleted {len(removed)}/{len(matches)} instances of {key}"
            + (f" ({len(failures)} failed)" if failures else "")
        )
        return DeletionResult(
            key=key, outcome=DeletionOutcome.DELETED, matched=len(matches),
            removed=len(removed), failures=failures
        )

    # Recreation suppression

    async def _on_cookie_change(self, change: CookieChange) -> None:
        if change.removed:
            return

        cookie = change.cookie
        key = cookie.key
        if key not in self._blocklist:
            return

        self._blocklist[key] = self.clock()
        self.stats['suppressed'] += 1
        logger.info(f"Blocked recreation of {key} in partition {cookie.partition_id}")
        try:
            await self.store.remove(cookie.removal_url, cookie.name, cookie.partition_id)
        except Exception as e:
            logger.error(f"Failed to remove recreated cookie {key}: {e}")

    # Sweep

    def sweep(self, now: Optional[float] = None) -> SweepResult:
        """Evict attempt records and blocklist entries idle past the window."""
        now = self.clock() if now is None else now
        window = self.config.inactivity_window_s
        result = SweepResult()

        for key in [k for k, r in self._attempts.items() if now - r.timestamp > window]:
            del self._attempts[key]
            result.attempts_evicted += 1
            if self._blocklist.pop(key, None) is not None:
                result.blocklist_evicted += 1

        for key in [k for k, t in self._blocklist.items() if now - t > window]:
            del self._blocklist[key]
            result.blocklist_evicted += 1

        if result.attempts_evicted or result.blocklist_evicted:
            logger.info(
                f"Sweep evicted {result.attempts_evicted} attempt records and "
                f"{result.blocklist_evicted} blocklist entries"
            )
        return result

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.config.sweep_interval_s)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in enforcement sweep: {e}")
