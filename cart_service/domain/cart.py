"""Cart aggregate: line items plus a derived total kept in sync by every mutation."""
from __future__ import annotations

import time

from pydantic import BaseModel, Field, model_validator

from cart_service.core.exceptions import InvalidArgumentException

DEFAULT_CURRENCY = "USD"


def now_ms() -> int:
    return int(time.time() * 1000)


class CartItem(BaseModel):
    """Single line item. Price is in minor currency units (cents)."""

    product_id: str = Field(..., alias="productId", min_length=1, description="Product ID")
    price: int = Field(..., ge=0, description="Unit price in minor currency units")
    quantity: int = Field(..., gt=0, description="Number of units")

    class Config:
        """Pydantic config."""

        populate_by_name = True

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


class Cart(BaseModel):
    """Shopping cart of one customer.

    ``total`` is never trusted from input: it is recomputed whenever a cart
    is built (from a request payload or from the store) and after every
    mutation. Duplicate product ids in a payload are merged the same way
    ``add_item`` merges them.
    """

    customer_id: str = Field(..., alias="customerId", min_length=1, description="Cart owner")
    items: list[CartItem] = Field(default_factory=list)
    total: int = Field(0, description="Sum of price * quantity in minor units")
    currency: str = Field(DEFAULT_CURRENCY)
    last_updated: int = Field(default_factory=now_ms, alias="lastUpdated")
    version: int = Field(0, ge=0, description="Stored version, 0 if never written")

    class Config:
        """Pydantic config."""

        populate_by_name = True

    @model_validator(mode="after")
    def _normalize_items(self):
        merged: dict[str, CartItem] = {}
        for item in self.items:
            existing = merged.get(item.product_id)
            if existing is None:
                merged[item.product_id] = item.model_copy()
            else:
                existing.quantity += item.quantity
        self.items = list(merged.values())
        self.recalculate_total()
        return self

    @classmethod
    def new(cls, customer_id: str, currency: str = DEFAULT_CURRENCY) -> Cart:
        """Create an empty cart for ``customer_id``."""
        if not customer_id or not customer_id.strip():
            raise InvalidArgumentException("Customer ID cannot be empty")
        return cls(customer_id=customer_id, currency=currency)

    def _find(self, product_id: str) -> CartItem | None:
        return next((item for item in self.items if item.product_id == product_id), None)

    def _touch(self) -> None:
        self.last_updated = max(now_ms(), self.last_updated)

    def recalculate_total(self) -> int:
        self.total = sum(item.line_total for item in self.items)
        return self.total

    def add_item(self, item: CartItem | None) -> None:
        """Add ``item``, or bump the quantity of the line with the same product.

        The price of an existing line is kept; only the quantity grows.
        """
        if item is None or not item.product_id:
            raise InvalidArgumentException("Item and product ID cannot be empty")

        existing = self._find(item.product_id)
        if existing is not None:
            existing.quantity += item.quantity
        else:
            self.items.append(item.model_copy())

        self.recalculate_total()
        self._touch()

    def remove_item(self, product_id: str) -> None:
        if not product_id:
            raise InvalidArgumentException("Product ID cannot be empty")

        self.items = [item for item in self.items if item.product_id != product_id]
        self.recalculate_total()
        self._touch()

    def update_item_quantity(self, product_id: str, quantity: int) -> None:
        """Set the quantity of a line; zero or less removes it.

        Unknown product ids are ignored.
        """
        if not product_id:
            raise InvalidArgumentException("Product ID cannot be empty")

        if quantity <= 0:
            self.remove_item(product_id)
            return

        item = self._find(product_id)
        if item is None:
            return
        item.quantity = quantity
        self.recalculate_total()
        self._touch()

    def clear(self) -> None:
        self.items = []
        self.total = 0
        self._touch()

    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_empty(self) -> bool:
        return len(self.items) == 0

    def to_dict(self) -> dict:
        """Serialize with the wire field names."""
        return self.model_dump(by_alias=True)

    def to_json(self, exclude: set[str] | None = None) -> str:
        return self.model_dump_json(by_alias=True, exclude=exclude)
