"""Review queue for low-confidence classifications.

Cookies the pipeline cannot classify confidently are kept and queued here
for a human decision. Only one pending item exists per (name, domain);
decided items stay in the persisted list for audit but leave the active
queue. A ``delete`` decision is handed to the enforcement engine.
"""

import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..storage import JsonStateStore
from .domains import domains_related, hostname_of, normalize_domain
from .enforcement import DeletionResult
from .models import ClassificationResult, ReviewItem, ReviewStatus, VALUE_SAMPLE_CHARS

logger = logging.getLogger(__name__)

REVIEW_QUEUE_KEY = "uncertainCookies"

Deleter = Callable[[str, str], Awaitable[DeletionResult]]
OpenPagesProvider = Callable[[], Union[List[str], Awaitable[List[str]]]]
PendingCountListener = Callable[[int], Any]


class ReviewCandidate(BaseModel):
    """A sighting submitted to the queue by the cleanup pipeline."""

    name: str
    domain: str
    value: str = ""
    classification: ClassificationResult
    source: Optional[str] = Field(default=None, description="e.g. unknown_pattern, undeclared")


class ReviewQueue:
    """Persisted queue of cookies awaiting a keep/delete decision."""

    def __init__(
        self,
        state: JsonStateStore,
        deleter: Optional[Deleter] = None,
        open_pages: Optional[OpenPagesProvider] = None,
        on_pending_count: Optional[PendingCountListener] = None,
        clock: Callable[[], float] = time.time
    ):
        """Initialize review queue.

        Args:
            state: Shared state store holding the queue
            deleter: Enforcement deletion contract, called as deleter(name, domain)
            open_pages: Returns the URLs of currently open pages
            on_pending_count: Notified with the pending count after every change
            clock: Time source in seconds
        """
        self.state = state
        self.deleter = deleter
        self.open_pages = open_pages
        self.on_pending_count = on_pending_count
        self.clock = clock

    async def _load(self) -> List[ReviewItem]:
        raw = await self.state.get(REVIEW_QUEUE_KEY, [])
        return [ReviewItem.model_validate(item) for item in raw]

    @staticmethod
    def _dump(items: List[ReviewItem]) -> List[Dict[str, Any]]:
        return [item.model_dump(mode='json') for item in items]

    async def _notify(self, items: Optional[List[ReviewItem]] = None) -> None:
        if self.on_pending_count is None:
            return
        if items is None:
            items = await self._load()
        count = sum(1 for item in items if item.is_pending)
        result = self.on_pending_count(count)
        if inspect.isawaitable(result):
            await result

    def _new_item(self, candidate: ReviewCandidate) -> ReviewItem:
        epoch_ms = int(self.clock() * 1000)
        classification = candidate.classification
        return ReviewItem(
            id=f"{candidate.domain}_{candidate.name}_{epoch_ms}",
            cookie_name=candidate.name,
            domain=candidate.domain,
            value=(candidate.value or "")[:VALUE_SAMPLE_CHARS],
            category=classification.category,
            confidence=classification.confidence,
            reasoning=classification.reasoning or "Analysis based on cookie name and domain",
            source=candidate.source or classification.source.value,
            timestamp=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
        )

    async def add_many(self, candidates: List[ReviewCandidate]) -> List[ReviewItem]:
        """Append candidates that have no pending item yet.

        Returns:
            The items actually added
        """
        added: List[ReviewItem] = []

        def append(raw: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            items = [ReviewItem.model_validate(item) for item in raw]
            pending = {
                (item.cookie_name, normalize_domain(item.domain))
                for item in items if item.is_pending
            }
            for candidate in candidates:
                identity = (candidate.name, normalize_domain(candidate.domain))
                if identity in pending:
                    logger.debug(f"{candidate.name} ({candidate.domain}) already pending review")
                    continue
                item = self._new_item(candidate)
                items.append(item)
                added.append(item)
                pending.add(identity)
            return self._dump(items)

        if not candidates:
            return added

        raw = await self.state.update(REVIEW_QUEUE_KEY, append, default=[])
        if added:
            logger.info(f"Added {len(added)} cookies to the review queue")
        await self._notify([ReviewItem.model_validate(item) for item in raw])
        return added

    async def add(
        self,
        name: str,
        domain: str,
        value: str,
        classification: ClassificationResult,
        source: Optional[str] = None
    ) -> Optional[ReviewItem]:
        """Append one item unless the same (name, domain) is already pending."""
        added = await self.add_many([
            ReviewCandidate(name=name, domain=domain, value=value,
                            classification=classification, source=source)
        ])
        return added[0] if added else None

    async def pending(self) -> List[ReviewItem]:
        return [item for item in await self._load() if item.is_pending]

    async def pending_count(self) -> int:
        return len(await self.pending())

    async def all_items(self) -> List[ReviewItem]:
        return await self._load()

    async def decide(self, item_id: str, decision: ReviewStatus) -> Optional[ReviewItem]:
        """Record a human decision for a pending item.

        Args:
            item_id: Review item id
            decision: ``delete`` or ``keep``

        Returns:
            The decided item, or None if no pending item has that id
        """
        decision = ReviewStatus(decision)
        if decision == ReviewStatus.PENDING:
            raise ValueError("A review decision must be 'delete' or 'keep'")

        decided: List[ReviewItem] = []

        def mark(raw: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
            items = [ReviewItem.model_validate(item) for item in raw]
            for index, item in enumerate(items):
                if item.id == item_id and item.is_pending:
                    items[index] = item.model_copy(update={
                        'status': decision,
                        'decided_at': datetime.fromtimestamp(self.clock(), tz=timezone.utc),
                    })
                    decided.append(items[index])
                    break
            return self._dump(items)

        raw = await self.state.update(REVIEW_QUEUE_KEY, mark, default=[])
        if not decided:
            logger.warning(f"Review item {item_id} not found or already decided")
            return None

        item = decided[0]
        logger.info(f"Review decision for {item.cookie_name} ({item.domain}): {decision.value}")

        if decision == ReviewStatus.DELETE:
            await self._apply_delete(item)

        await self._notify([ReviewItem.model_validate(i) for i in raw])
        return item

    async def _open_page_hosts(self, domain: str) -> List[str]:
        if self.open_pages is None:
            return []
        urls = self.open_pages()
        if inspect.isawaitable(urls):
            urls = await urls

        hosts: List[str] = []
        for url in urls:
            host = hostname_of(url)
            if host and domains_related(host, domain) and host not in hosts:
                hosts.append(host)
        return hosts

    async def _apply_delete(self, item: ReviewItem) -> List[DeletionResult]:
        if self.deleter is None:
            logger.warning(f"No deleter configured, cannot delete {item.cookie_name}")
            return []

        # Without a matching open page the cookie is deleted against its own domain
        hosts = await self._open_page_hosts(item.domain) or [normalize_domain(item.domain)]

        results = []
        for host in hosts:
            result = await self.deleter(item.cookie_name, host)
            logger.info(f"Deletion of reviewed cookie {item.cookie_name} on {host}: {result.outcome.value}")
            results.append(result)
        return results
