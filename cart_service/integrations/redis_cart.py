"""Redis-backed cart store with versioned read-modify-write updates."""
from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from cart_service.core.config import Settings
from cart_service.core.exceptions import (
    CartPayloadException,
    InvalidArgumentException,
    LostUpdateException,
    StoreUnavailableException,
)
from cart_service.core.metrics import metrics, track_operation
from cart_service.domain.cart import DEFAULT_CURRENCY, Cart, CartItem
from logging_config import logger

CartMutation = Callable[[Cart], Any]

# KEYS[1] cart key; ARGV[1] expected version; ARGV[2] payload; ARGV[3] ttl (0 = none).
# A missing key counts as version 0.
CONDITIONAL_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
local stored = 0
if current then
    stored = tonumber(cjson.decode(current)['version']) or 0
end
if stored ~= tonumber(ARGV[1]) then
    return 0
end
if tonumber(ARGV[3]) > 0 then
    redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
else
    redis.call('SET', KEYS[1], ARGV[2])
end
return 1
"""

# KEYS[1] cart key; ARGV[1] payload without its version; ARGV[2] ttl (0 = none).
# Always writes, one version past whatever is stored. A stored value that does
# not decode counts as version 0 so a corrupt cart can still be replaced.
OVERWRITE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
local stored = 0
if current then
    local ok, decoded = pcall(cjson.decode, current)
    if ok and type(decoded) == 'table' then
        stored = tonumber(decoded['version']) or 0
    end
end
local version = stored + 1
local payload = string.sub(ARGV[1], 1, -2) .. ',"version":' .. version .. '}'
if tonumber(ARGV[2]) > 0 then
    redis.call('SET', KEYS[1], payload, 'EX', ARGV[2])
else
    redis.call('SET', KEYS[1], payload)
end
return version
"""


def create_redis_client(url: str, socket_timeout: float = 5.0):
    """Build the asyncio Redis client shared by every request."""
    return aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=socket_timeout,
        socket_timeout=socket_timeout,
    )


class RedisCartGateway:
    """Cart store over a shared Redis instance.

    Each cart lives under ``<prefix><customer id>`` as one JSON document.
    ``apply_mutation`` is the only safe way to change a cart concurrently:
    it writes back only if the stored ``version`` still equals the one it
    read, and repeats the whole read-modify-write cycle otherwise.
    ``put_cart`` is last-writer-wins.
    """

    MAX_RETRY_DELAY = 0.5

    def __init__(
        self,
        client: Any,
        key_prefix: str = "cart:",
        cart_ttl_seconds: int | None = None,
        max_update_attempts: int = 5,
        retry_delay: float = 0.01,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        if max_update_attempts < 1:
            raise ValueError("max_update_attempts must be at least 1")
        self._client = client
        self._key_prefix = key_prefix
        self._ttl = cart_ttl_seconds or 0
        self._max_attempts = max_update_attempts
        self._retry_delay = retry_delay
        self._default_currency = default_currency

    @classmethod
    def from_settings(cls, settings: Settings, client: Any = None) -> RedisCartGateway:
        if client is None:
            client = create_redis_client(settings.redis.url, settings.redis.socket_timeout)
        return cls(
            client,
            key_prefix=settings.redis.key_prefix,
            cart_ttl_seconds=settings.redis.cart_ttl_seconds,
            max_update_attempts=settings.max_update_attempts,
            retry_delay=settings.retry_delay,
            default_currency=settings.default_currency,
        )

    @property
    def max_update_attempts(self) -> int:
        return self._max_attempts

    def _cart_key(self, customer_id: str) -> str:
        return f"{self._key_prefix}{customer_id}"

    @staticmethod
    def _require_customer_id(customer_id: str) -> None:
        if not customer_id or not customer_id.strip():
            raise InvalidArgumentException("Customer ID cannot be empty")

    def _decode(self, key: str, raw: str) -> Cart:
        try:
            return Cart.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Undecodable cart payload under %s: %s", key, exc)
            raise CartPayloadException(key, exc) from exc

    async def _load(self, customer_id: str, operation: str) -> Cart | None:
        key = self._cart_key(customer_id)
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            logger.error("Redis GET failed for %s during %s: %s", key, operation, exc)
            raise StoreUnavailableException(operation, exc) from exc
        if raw is None:
            return None
        return self._decode(key, raw)

    async def _write(self, cart: Cart, expected_version: int, operation: str) -> Cart | None:
        """Store ``cart`` as ``expected_version + 1`` if nobody wrote in between."""
        key = self._cart_key(cart.customer_id)
        stored = cart.model_copy(update={"version": expected_version + 1})
        try:
            written = await self._client.eval(
                CONDITIONAL_SET_SCRIPT, 1, key, expected_version, stored.to_json(), self._ttl
            )
        except RedisError as exc:
            logger.error("Redis conditional SET failed for %s during %s: %s", key, operation, exc)
            raise StoreUnavailableException(operation, exc) from exc

        if not int(written):
            metrics.update_conflicts.inc(operation=operation)
            return None
        return stored

    async def _backoff(self, attempt: int) -> None:
        delay = min(self._retry_delay * (2 ** (attempt - 1)), self.MAX_RETRY_DELAY)
        await asyncio.sleep(delay)

    @track_operation("get")
    async def get_cart(self, customer_id: str) -> Cart | None:
        """Return the stored cart, or ``None`` when the customer has none."""
        self._require_customer_id(customer_id)
        return await self._load(customer_id, "get")

    async def list_carts(self) -> AsyncIterator[Cart]:
        """Yield every stored cart. Unordered and not a consistent snapshot.

        Async generators cannot use ``track_operation``, so the listing
        records its own metrics once the scan ends or fails.
        """
        pattern = f"{self._key_prefix}*"
        start_time = time.perf_counter()
        status = "success"
        try:
            async for key in self._client.scan_iter(match=pattern):
                raw = await self._client.get(key)
                if raw is None:
                    continue
                try:
                    yield self._decode(key, raw)
                except CartPayloadException:
                    logger.warning("Skipping undecodable cart %s while listing", key)
        except RedisError as exc:
            status = "error"
            logger.error("Redis SCAN failed for %s: %s", pattern, exc)
            error = StoreUnavailableException("list", exc)
            metrics.errors_total.inc(operation="list", error_type=type(error).__name__)
            raise error from exc
        finally:
            metrics.operations_total.inc(operation="list", status=status)
            metrics.operation_duration.observe(time.perf_counter() - start_time, operation="list")

    @track_operation("put")
    async def put_cart(self, cart: Cart) -> Cart:
        """Overwrite whatever is stored for ``cart.customer_id``.

        One atomic write, never retried. The stored version is still bumped
        past the current one so that readers in the middle of
        ``apply_mutation`` notice the overwrite.
        """
        if cart is None:
            raise InvalidArgumentException("Cart cannot be empty")
        self._require_customer_id(cart.customer_id)

        key = self._cart_key(cart.customer_id)
        try:
            version = await self._client.eval(
                OVERWRITE_SCRIPT, 1, key, cart.to_json(exclude={"version"}), self._ttl
            )
        except RedisError as exc:
            logger.error("Redis overwrite failed for %s: %s", key, exc)
            raise StoreUnavailableException("put", exc) from exc
        return cart.model_copy(update={"version": int(version)})

    @track_operation("create_or_replace")
    async def create_or_replace(self, payload: Mapping[str, Any]) -> Cart:
        """Validate an inbound cart payload and store it in place of the old cart.

        Client supplied ``total``, ``version`` and ``lastUpdated`` are ignored.
        """
        if not isinstance(payload, Mapping):
            raise InvalidArgumentException("Cart payload must be an object")

        customer_id = payload.get("customerId", payload.get("customer_id"))
        if not isinstance(customer_id, str) or not customer_id.strip():
            logger.error("Customer Id is missing.")
            raise InvalidArgumentException("Customer ID is missing")

        data = {
            key: value
            for key, value in payload.items()
            if key not in ("total", "version", "lastUpdated", "last_updated")
        }
        if not data.get("currency"):
            data["currency"] = self._default_currency

        try:
            cart = Cart.model_validate(data)
        except ValidationError as exc:
            raise InvalidArgumentException(f"Invalid cart payload: {exc.errors()}") from exc

        logger.info(
            "Replacing cart for customer %s (%d items, total %d)",
            cart.customer_id,
            len(cart.items),
            cart.total,
        )
        return await self.put_cart(cart)

    @track_operation("apply_mutation")
    async def apply_mutation(self, customer_id: str, mutation: CartMutation) -> Cart:
        """Read, mutate and conditionally write back one cart.

        A missing cart is created. ``mutation`` may run more than once when
        other writers get in between, so it must only touch the cart it is
        given.
        """
        self._require_customer_id(customer_id)

        for attempt in range(1, self._max_attempts + 1):
            cart = await self._load(customer_id, "apply_mutation")
            if cart is None:
                cart = Cart.new(customer_id, currency=self._default_currency)
            expected_version = cart.version

            mutation(cart)

            stored = await self._write(cart, expected_version, "apply_mutation")
            if stored is not None:
                return stored

            logger.warning(
                "Cart %s changed concurrently (attempt %d/%d), retrying",
                customer_id,
                attempt,
                self._max_attempts,
            )
            if attempt < self._max_attempts:
                await self._backoff(attempt)

        logger.error("Giving up on cart %s after %d attempts", customer_id, self._max_attempts)
        raise LostUpdateException(customer_id, self._max_attempts)

    async def add_item(self, customer_id: str, item: CartItem) -> Cart:
        if item is None or not item.product_id:
            raise InvalidArgumentException("Item and product ID cannot be empty")
        return await self.apply_mutation(customer_id, lambda cart: cart.add_item(item))

    async def remove_item(self, customer_id: str, product_id: str) -> Cart:
        return await self.apply_mutation(customer_id, lambda cart: cart.remove_item(product_id))

    async def update_item_quantity(self, customer_id: str, product_id: str, quantity: int) -> Cart:
        return await self.apply_mutation(
            customer_id, lambda cart: cart.update_item_quantity(product_id, quantity)
        )

    async def clear_cart(self, customer_id: str) -> Cart:
        return await self.apply_mutation(customer_id, lambda cart: cart.clear())

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise StoreUnavailableException("ping", exc) from exc

    async def close(self) -> None:
        await self._client.aclose()
