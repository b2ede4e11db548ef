"""Cart domain models."""
from __future__ import annotations

from .cart import DEFAULT_CURRENCY, Cart, CartItem

__all__ = ["DEFAULT_CURRENCY", "Cart", "CartItem"]
