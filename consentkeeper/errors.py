"""Exception hierarchy for consentkeeper.

Most component seams return result objects (DeletionResult, ServiceResponse,
ResolutionResult) instead of raising. These exceptions cover the remaining
failure paths: configuration, persistence, transport to the external
classifier and the page driver.
"""


class ConsentKeeperError(Exception):
    """Base exception for all consentkeeper errors."""
    pass


class ConfigurationError(ConsentKeeperError):
    """Invalid or unreadable configuration."""
    pass


class StorageError(ConsentKeeperError):
    """Persisted state could not be read or written."""
    pass


class ClassifierError(ConsentKeeperError):
    """External classifier request failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ClassifierRateLimited(ClassifierError):
    """External classifier signalled a rate limit (HTTP 429)."""
    pass


class DriverError(ConsentKeeperError):
    """Page driver could not complete an operation."""
    pass
