"""Custom exceptions for the cart service."""
from __future__ import annotations


class CartServiceException(Exception):
    """Base exception for all cart service errors."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class InvalidArgumentException(CartServiceException):
    """Missing or empty required input (customer id, product id, item)."""

    pass


class StoreUnavailableException(CartServiceException):
    """Redis could not be reached or timed out."""

    def __init__(self, operation: str, reason: object) -> None:
        super().__init__(f"Cart store unavailable during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class LostUpdateException(CartServiceException):
    """A cart update kept conflicting with concurrent writers."""

    def __init__(self, customer_id: str, attempts: int) -> None:
        super().__init__(
            f"Cart {customer_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.customer_id = customer_id
        self.attempts = attempts


class CartPayloadException(CartServiceException):
    """Stored cart value could not be decoded."""

    def __init__(self, key: str, reason: object) -> None:
        super().__init__(f"Stored cart under {key} is not a valid cart: {reason}")
        self.key = key


class ConfigurationException(CartServiceException):
    """Configuration errors."""

    pass
