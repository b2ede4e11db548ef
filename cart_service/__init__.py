"""Per-customer shopping carts stored in Redis."""

__version__ = "1.0.0"
