"""consentkeeper: consent prompt resolution and cookie enforcement.

This package detects and answers cookie consent prompts on visited pages and
classifies, deletes and blocks tracking cookies according to the user's
preferences, escalating uncertain cookies to an external classifier and a
human review queue.
"""

__version__ = "0.1.0"

from .config import ConsentKeeperConfig, get_config
from .errors import ConsentKeeperError

__all__ = [
    '__version__',
    'ConsentKeeperConfig',
    'get_config',
    'ConsentKeeperError',
]
