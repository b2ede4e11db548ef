"""Logging setup shared by the cart service modules."""
from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [customer=%(customer_id)s] %(message)s"

customer_id_var: ContextVar[str] = ContextVar("customer_id", default="-")


class CustomerContextFilter(logging.Filter):
    """Attach the customer id bound to the current task to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "customer_id"):
            record.customer_id = customer_id_var.get()
        return True


@contextmanager
def bind_customer(customer_id: str) -> Iterator[None]:
    """Bind customer id for log records emitted inside the block."""
    token = customer_id_var.set(customer_id or "-")
    try:
        yield
    finally:
        customer_id_var.reset(token)


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure the ``cart_service`` logger once and return it."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(CustomerContextFilter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger


logger = logging.getLogger("cart_service")
logger.addFilter(CustomerContextFilter())
