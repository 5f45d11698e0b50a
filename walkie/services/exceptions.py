"""
Custom exceptions for the delivery core.

Every error surfaced to a caller maps onto bad-input, not-found or
internal-failure; `status_code` carries that mapping for the HTTP layer.
"""

from typing import Optional


class DeliveryError(Exception):
    """Base exception for delivery errors."""

    status_code = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(DeliveryError):
    """Malformed or missing input. Not retryable without fixing the input."""

    status_code = 400


class PayloadTooLarge(ValidationError):
    """Upload exceeded the configured size limit."""

    status_code = 413

    def __init__(self, limit: int):
        super().__init__(f"Audio exceeds the {limit} byte limit")
        self.limit = limit


class NotFound(DeliveryError):
    """Unknown or logically deleted message, receipt or blob."""

    status_code = 404


class IntegrityFault(NotFound):
    """The ledger references a blob that is missing from storage."""


class Conflict(DeliveryError):
    """Uniqueness conflict. Absorbed by the receipt ledger, never returned to callers."""

    status_code = 409


class StorageFault(DeliveryError):
    """Blob store or ledger unavailable. Transient, safe to retry with backoff."""

    status_code = 500
