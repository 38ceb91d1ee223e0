"""
Custom exception hierarchy for the book tracker.

Scan and reconciliation failures carry the phase they happened in so
callers can report which half of an ownership scan went wrong.
"""
from typing import Any, Dict, Optional


class BookTrackerError(Exception):
    """Base exception for all book tracker errors."""
    pass


class OwnershipScanError(BookTrackerError):
    """Base for failures of the scan + reconcile pipeline."""
    phase = "scan"


class CollectionRootUnavailable(OwnershipScanError):
    """Raised when the collection root is missing or unreadable."""

    def __init__(self, root, reason: str = "not accessible"):
        self.root = root
        self.reason = reason
        super().__init__(f"Collection root {reason}: {root}")


class ScanFailed(OwnershipScanError):
    """Raised when directory traversal fails after the root check passed."""

    def __init__(self, root, cause: BaseException):
        self.root = root
        self.cause = cause
        super().__init__(f"Filesystem scan failed for {root}: {cause}")


class ReconciliationFailed(OwnershipScanError):
    """Raised when the catalog ownership transaction fails and is rolled back."""
    phase = "reconcile"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Ownership reconciliation failed: {cause}")


class DatabaseError(BookTrackerError):
    """Raised when database operations fail."""
    pass


class NotFoundError(BookTrackerError):
    """Raised when a requested catalog record does not exist."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class ValidationError(BookTrackerError):
    """Raised when a request conflicts with catalog state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)
