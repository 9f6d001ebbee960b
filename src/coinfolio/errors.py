"""Exception hierarchy for Coinfolio.

Every error raised by the stores, the accounting core and the price client
derives from CoinfolioError, so callers can report any failure uniformly.
None of them is fatal: on failure the lot and balance stores are left as
they were.
"""

from __future__ import annotations

from typing import Optional


class CoinfolioError(Exception):
    """Base exception for Coinfolio errors."""


class ValidationError(CoinfolioError):
    """User input violates a precondition (non-positive amount, oversell)."""


class InsufficientFundsError(CoinfolioError):
    """A purchase costs more than the available cash balance."""

    def __init__(self, required: float, available: float):
        super().__init__(
            f"insufficient balance: required {required:.2f}, available {available:.2f}"
        )
        self.required = required
        self.available = available


class LotNotFoundError(CoinfolioError):
    """No lot with the given id exists in the store."""

    def __init__(self, lot_id: str):
        super().__init__(f"lot not found: {lot_id}")
        self.lot_id = lot_id


class StorageError(CoinfolioError):
    """A persisted payload could not be read, decoded or migrated."""


class ExternalFetchError(CoinfolioError):
    """The price source was unreachable or answered with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
