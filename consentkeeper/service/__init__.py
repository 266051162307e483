"""Background service and its page-side client."""

from .messages import MessageType, ServiceMessage, ServiceResponse
from .background import BackgroundService
from .client import ServiceClient
from .preferences import PreferenceStore

__all__ = [
    'MessageType',
    'ServiceMessage',
    'ServiceResponse',
    'BackgroundService',
    'ServiceClient',
    'PreferenceStore',
]
