"""Exception types raised by the ingestion pipeline and the record store boundary."""

from typing import Optional


class RiskTrackerError(Exception):
    """Base class for all errors raised by this package."""


class IngestionError(RiskTrackerError):
    """The uploaded file could not be parsed into rows.

    Carries the first diagnostic reported by the underlying parser so it can
    be shown to the operator as-is.
    """

    def __init__(self, message: str, row: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.row = row


class IdentityResolutionError(RiskTrackerError):
    """No identity could be derived for a row. Indicates a bug, not bad input."""


class StoreError(RiskTrackerError):
    """Failure reported by the record store boundary."""


class CommitError(StoreError):
    """A batch write failed. Nothing from the batch should be assumed persisted."""


class DeleteError(StoreError):
    """A point delete failed or targeted an unknown identity."""

    def __init__(self, message: str, identity: str, not_found: bool = False):
        super().__init__(message)
        self.identity = identity
        self.not_found = not_found


class SubscriptionError(StoreError):
    """The change stream can no longer be maintained."""
