"""Long-lived background service.

The background service owns enforcement state (attempt records and the
blocklist), the review queue, the external classifier, banner counters and
the badge. Page sessions reach it only through ``handle()`` with a
ServiceMessage; each message kind is dispatched through a table to a handler
with a declared request model.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from ..config import ConsentKeeperConfig
from ..cookies.enforcement import EnforcementEngine
from ..cookies.escalation import ExternalClassifier, fallback_result
from ..cookies.review import OpenPagesProvider, ReviewQueue
from ..cookies.store import CookieStore
from ..storage import JsonStateStore
from .activity import ActivityLog
from .counters import Badge, BadgeNotifier, BannerCounter
from .messages import (
    AddToReviewQueueRequest, ClassifyCookieRequest, DecideCookieRequest, DeleteCookieRequest,
    EmptyRequest, GetReviewQueueRequest, LogActionRequest, MessageType, ServiceMessage,
    ServiceResponse,
)
from .preferences import PreferenceStore

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class BackgroundService:
    """Coordinates classification, enforcement and review for all pages."""

    def __init__(
        self,
        config: ConsentKeeperConfig,
        store: CookieStore,
        state: Optional[JsonStateStore] = None,
        classifier: Optional[ExternalClassifier] = None,
        open_pages: Optional[OpenPagesProvider] = None,
        badge_notifier: Optional[BadgeNotifier] = None
    ):
        """Initialize background service.

        Args:
            config: Complete configuration
            store: Cookie store spanning every storage partition
            state: Shared persisted state; in-memory when omitted
            classifier: External classifier client; created from config when omitted
            open_pages: Returns URLs of currently open pages, for review deletions
            badge_notifier: Receives badge updates
        """
        self.config = config
        self.store = store
        self.state = state or JsonStateStore(config.storage.state_path)
        self.classifier = classifier or ExternalClassifier(config.classifier)

        self.enforcement = EnforcementEngine(store, config.enforcement)
        self.badge = Badge(badge_notifier)
        self.review_queue = ReviewQueue(
            self.state,
            deleter=self.enforcement.delete_cookie,
            open_pages=open_pages,
            on_pending_count=self._on_pending_count,
        )
        self.activity = ActivityLog(self.state, config.storage.max_activity_entries)
        self.banner_counter = BannerCounter(self.state)
        self.preferences = PreferenceStore(self.state)

        self._handlers: Dict[MessageType, Tuple[Type[BaseModel], Handler]] = {
            MessageType.CLASSIFY_COOKIE: (ClassifyCookieRequest, self._classify_cookie),
            MessageType.DELETE_COOKIE: (DeleteCookieRequest, self._delete_cookie),
            MessageType.ADD_TO_REVIEW_QUEUE: (AddToReviewQueueRequest, self._add_to_review_queue),
            MessageType.GET_REVIEW_QUEUE: (GetReviewQueueRequest, self._get_review_queue),
            MessageType.DECIDE_COOKIE: (DecideCookieRequest, self._decide_cookie),
            MessageType.LOG_ACTION: (LogActionRequest, self._log_action),
            MessageType.GET_AI_STATUS: (EmptyRequest, self._get_ai_status),
            MessageType.INIT_AI: (EmptyRequest, self._init_ai),
            MessageType.INCREMENT_BANNER_COUNT: (EmptyRequest, self._increment_banner_count),
            MessageType.GET_BANNER_COUNTS: (EmptyRequest, self._get_banner_counts),
        }
        self.running = False

    async def start(self) -> None:
        """Start enforcement and publish the initial badge."""
        if self.running:
            return

        await self.store.start()
        await self.enforcement.start()

        counts = await self.banner_counter.counts()
        pending = await self.review_queue.pending_count()
        await self.badge.update(pending_reviews=pending, banners_today=counts['today'])

        self.running = True
        logger.info(
            f"Background service started ({pending} pending reviews, "
            f"{counts['today']} banners today)"
        )

    async def stop(self) -> None:
        if not self.running:
            return

        await self.enforcement.stop()
        await self.store.stop()
        await self.classifier.aclose()
        self.running = False
        logger.info("Background service stopped")

    async def handle(self, message: ServiceMessage) -> ServiceResponse:
        """Validate and dispatch one message; never raises."""
        entry = self._handlers.get(message.type)
        if entry is None:
            return ServiceResponse.failure(f"Unknown message type {message.type}", "unknown_message")

        request_model, handler = entry
        try:
            request = request_model.model_validate(message.payload)
        except ValidationError as e:
            logger.warning(f"Invalid {message.type.value} request: {e}")
            return ServiceResponse.failure(str(e), "invalid_request")

        try:
            data = await handler(request)
        except Exception as e:
            logger.error(f"Handler for {message.type.value} failed: {e}")
            return ServiceResponse.failure(str(e), "handler_error")

        return ServiceResponse.ok(data)

    # Handlers

    async def _classify_cookie(self, request: ClassifyCookieRequest) -> Dict[str, Any]:
        if not self.config.classifier.enabled:
            result = fallback_result("External classifier disabled")
        else:
            result = await self.classifier.classify(request.cookie_name, request.domain, request.value)
        return result.model_dump(mode='json')

    async def _delete_cookie(self, request: DeleteCookieRequest) -> Dict[str, Any]:
        result = await self.enforcement.delete_cookie(request.cookie_name, request.domain)
        return result.to_dict()

    async def _add_to_review_queue(self, request: AddToReviewQueueRequest) -> Dict[str, Any]:
        added = await self.review_queue.add_many(request.items)
        return {'added': len(added), 'ids': [item.id for item in added]}

    async def _get_review_queue(self, request: GetReviewQueueRequest) -> Dict[str, Any]:
        if request.include_decided:
            items = await self.review_queue.all_items()
        else:
            items = await self.review_queue.pending()
        return {'items': [item.model_dump(mode='json') for item in items]}

    async def _decide_cookie(self, request: DecideCookieRequest) -> Dict[str, Any]:
        item = await self.review_queue.decide(request.item_id, request.decision)
        if item is None:
            return {'found': False}
        return {'found': True, 'item': item.model_dump(mode='json')}

    async def _log_action(self, request: LogActionRequest) -> Dict[str, Any]:
        await self.activity.record(request.entry, isolated=request.isolated)
        return {'recorded': True}

    async def _get_ai_status(self, request: EmptyRequest) -> Dict[str, Any]:
        return {'enabled': self.config.classifier.enabled, **self.classifier.status()}

    async def _init_ai(self, request: EmptyRequest) -> Dict[str, Any]:
        initialized = await self.classifier.initialize()
        return {'initialized': initialized}

    async def _increment_banner_count(self, request: EmptyRequest) -> Dict[str, int]:
        counts = await self.banner_counter.increment()
        await self.badge.update(banners_today=counts['today'])
        return counts

    async def _get_banner_counts(self, request: EmptyRequest) -> Dict[str, int]:
        return await self.banner_counter.counts()

    async def _on_pending_count(self, count: int) -> None:
        await self.badge.update(pending_reviews=count)
