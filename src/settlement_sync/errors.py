"""Exception types raised by the settlement sync engine."""

from typing import Optional


class SettlementSyncError(Exception):
    """Base class for all settlement sync errors."""
    pass


class ValidationError(SettlementSyncError):
    """Invalid parameters (date range, region list, configuration).

    Raised before any network call is made and never retried.
    """
    pass


class AuthError(SettlementSyncError):
    """The provider rejected the credentials or returned no usable token."""
    pass


class RemoteError(SettlementSyncError):
    """The provider answered with a non-success response code."""

    def __init__(self, message: str, response_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.response_code = response_code

    def __str__(self) -> str:
        if self.response_code:
            return f"[{self.response_code}] {self.message}"
        return self.message


class TransientNetworkError(SettlementSyncError):
    """Timeout, connection reset or other retryable transport failure."""
    pass


class PersistenceError(SettlementSyncError):
    """The local datastore rejected the reconciliation batch write."""
    pass
