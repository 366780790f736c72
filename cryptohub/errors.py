class CryptoHubError(Exception):
    """Base class for errors raised by the portfolio core."""


class InvalidInput(CryptoHubError, ValueError):
    pass


class DecryptionFailed(CryptoHubError):
    pass


class SyncFailure(CryptoHubError):
    """A remote balance aggregation call failed."""


class AuthorizationFailure(SyncFailure):
    """The aggregation service rejected the credentials. Never retried automatically."""

    def __init__(self, message: str = "authorization_failed", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSyncFailure(SyncFailure):
    """Any other aggregation failure: network, 5xx, malformed payload."""
