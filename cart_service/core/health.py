"""Store reachability probe used by the /health endpoint."""
from __future__ import annotations

import time
from typing import Any

from cart_service.core.exceptions import StoreUnavailableException
from logging_config import logger


async def check_store_health(gateway: Any) -> tuple[bool, dict[str, Any]]:
    """Ping Redis through the gateway and describe the outcome.

    Returns ``(is_up, payload)`` where payload mirrors the service health
    document: ``status`` is ``UP`` or ``DOWN`` and ``details`` names the
    store state and the probe time in epoch milliseconds.
    """
    timestamp = int(time.time() * 1000)
    try:
        reachable = await gateway.ping()
        error = None if reachable else "Ping failed"
    except StoreUnavailableException as exc:
        reachable = False
        error = str(exc.reason)

    if reachable:
        return True, {
            "status": "UP",
            "details": {"redis": "Available", "timestamp": timestamp},
        }

    logger.warning("Health check: Redis unavailable - %s", error)
    return False, {
        "status": "DOWN",
        "details": {"redis": "Unavailable", "timestamp": timestamp, "error": error},
    }
