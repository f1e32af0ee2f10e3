from __future__ import annotations


class ArcadeError(Exception):
    """Base class for errors surfaced to API callers."""


class NotFound(ArcadeError):
    """Unknown user or catalog item."""


class InsufficientFunds(ArcadeError):
    def __init__(self, *, currency: str, balance: int, price: int) -> None:
        super().__init__(f"Insufficient {currency}: balance {balance}, price {price}")
        self.currency = currency
        self.balance = balance
        self.price = price


class InvalidInput(ArcadeError, ValueError):
    """Malformed request rejected before any mutation."""


class TransientStorageFailure(ArcadeError):
    """Storage unavailable or contended; callers may retry."""
