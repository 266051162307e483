"""Message shapes for the background service.

Page sessions talk to the background service only through these messages.
Each message kind has a request model; every request is answered with a
ServiceResponse, including failures.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..cookies.models import ActivityEntry, ReviewStatus
from ..cookies.review import ReviewCandidate


class MessageType(str, Enum):
    CLASSIFY_COOKIE = "classify_cookie"
    DELETE_COOKIE = "delete_cookie"
    ADD_TO_REVIEW_QUEUE = "add_to_review_queue"
    GET_REVIEW_QUEUE = "get_review_queue"
    DECIDE_COOKIE = "decide_cookie"
    LOG_ACTION = "log_action"
    GET_AI_STATUS = "get_ai_status"
    INIT_AI = "init_ai"
    INCREMENT_BANNER_COUNT = "increment_banner_count"
    GET_BANNER_COUNTS = "get_banner_counts"


class ServiceMessage(BaseModel):
    """Envelope sent to the background service."""

    type: MessageType
    payload: Dict[str, Any] = Field(default_factory=dict)


class ServiceResponse(BaseModel):
    """Answer to a ServiceMessage."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = Field(
        default=None,
        description="invalid_request, unknown_message, handler_error, unavailable or timeout"
    )

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResponse":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_type: str) -> "ServiceResponse":
        return cls(success=False, error=error, error_type=error_type)


class EmptyRequest(BaseModel):
    pass


class ClassifyCookieRequest(BaseModel):
    cookie_name: str
    domain: str
    value: Optional[str] = None


class DeleteCookieRequest(BaseModel):
    cookie_name: str
    domain: str


class AddToReviewQueueRequest(BaseModel):
    items: List[ReviewCandidate] = Field(default_factory=list)


class GetReviewQueueRequest(BaseModel):
    include_decided: bool = False


class DecideCookieRequest(BaseModel):
    item_id: str
    decision: ReviewStatus


class LogActionRequest(BaseModel):
    entry: ActivityEntry
    isolated: bool = Field(default=False, description="Entry comes from an isolated browsing context")
