"""Page-side client for the background service.

Every call has a timeout and returns a ServiceResponse; an absent or slow
service yields a failed response instead of an exception or a hang.
"""

import asyncio
import logging
from typing import Any, List, Optional

from ..cookies.models import ActivityAction, ActivityEntry, ClassificationResult
from ..cookies.review import ReviewCandidate
from .background import BackgroundService
from .messages import MessageType, ServiceMessage, ServiceResponse

logger = logging.getLogger(__name__)


class ServiceClient:
    """Sends messages to a BackgroundService with a per-request timeout."""

    def __init__(
        self,
        service: Optional[BackgroundService],
        timeout_s: float = 10.0,
        isolated: bool = False
    ):
        """Initialize client.

        Args:
            service: Background service to talk to; None means unavailable
            timeout_s: Timeout for each request
            isolated: Page runs in an isolated browsing context
        """
        self.service = service
        self.timeout_s = timeout_s
        self.isolated = isolated

    async def request(self, message_type: MessageType, **payload: Any) -> ServiceResponse:
        if self.service is None or not self.service.running:
            logger.warning(f"Background service unavailable for {message_type.value}")
            return ServiceResponse.failure("Background service unavailable", "unavailable")

        message = ServiceMessage(type=message_type, payload=payload)
        try:
            return await asyncio.wait_for(self.service.handle(message), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"{message_type.value} timed out after {self.timeout_s}s")
            return ServiceResponse.failure(
                f"No response within {self.timeout_s}s", "timeout"
            )

    async def classify_cookie(self, name: str, domain: str, value: Optional[str] = None) -> Optional[ClassificationResult]:
        response = await self.request(
            MessageType.CLASSIFY_COOKIE, cookie_name=name, domain=domain, value=value
        )
        if not response.success:
            return None
        return ClassificationResult.model_validate(response.data)

    async def delete_cookie(self, name: str, domain: str) -> ServiceResponse:
        return await self.request(MessageType.DELETE_COOKIE, cookie_name=name, domain=domain)

    async def add_to_review_queue(self, items: List[ReviewCandidate]) -> ServiceResponse:
        return await self.request(
            MessageType.ADD_TO_REVIEW_QUEUE,
            items=[item.model_dump(mode='json') for item in items]
        )

    async def get_review_queue(self, include_decided: bool = False) -> ServiceResponse:
        return await self.request(MessageType.GET_REVIEW_QUEUE, include_decided=include_decided)

    async def decide_cookie(self, item_id: str, decision: str) -> ServiceResponse:
        return await self.request(MessageType.DECIDE_COOKIE, item_id=item_id, decision=decision)

    async def log_action(self, action: ActivityAction, domain: str, url: str, **details: Any) -> ServiceResponse:
        entry = ActivityEntry(domain=domain, url=url, action=action, details=details)
        return await self.request(
            MessageType.LOG_ACTION,
            entry=entry.model_dump(mode='json'),
            isolated=self.isolated
        )

    async def get_ai_status(self) -> ServiceResponse:
        return await self.request(MessageType.GET_AI_STATUS)

    async def init_ai(self) -> ServiceResponse:
        return await self.request(MessageType.INIT_AI)

    async def increment_banner_count(self) -> ServiceResponse:
        return await self.request(MessageType.INCREMENT_BANNER_COUNT)

    async def get_banner_counts(self) -> ServiceResponse:
        return await self.request(MessageType.GET_BANNER_COUNTS)
