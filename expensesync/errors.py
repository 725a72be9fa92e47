"""
Exception taxonomy for expensesync.

Transport failures abort a whole sync cycle; everything else is reported per
record and leaves that record dirty for the next attempt.
"""

from __future__ import annotations

from typing import Optional


class ExpenseSyncError(Exception):
    """Base class for all expensesync errors."""


class GatewayError(ExpenseSyncError):
    """The remote authority rejected or could not serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayTransportError(GatewayError):
    """The request never got a usable answer (network failure, timeout, 5xx)."""


class RecordNotFoundError(GatewayError):
    """The remote authority does not know the record."""


class RecordValidationError(ExpenseSyncError):
    """Wire data could not be turned into a domain record."""


__all__ = [
    "ExpenseSyncError",
    "GatewayError",
    "GatewayTransportError",
    "RecordNotFoundError",
    "RecordValidationError",
]
