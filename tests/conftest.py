"""Shared pytest fixtures: an in-memory async Redis double and HTTP clients."""
from __future__ import annotations

import asyncio
import fnmatch
import json
from dataclasses import dataclass, field

import pytest

from cart_service.api.server import create_app
from cart_service.integrations.redis_cart import OVERWRITE_SCRIPT, RedisCartGateway


@dataclass
class FakeAsyncRedis:
    """Subset of ``redis.asyncio.Redis`` used by the cart gateway.

    ``eval`` emulates the two cart scripts: the conditional write compares
    the ``version`` inside the stored JSON with the expected one, and the
    overwrite always stores one version past the current one. The scripts
    themselves run against fakeredis in ``test_redis_cart_scripts.py``.
    """

    data: dict[str, str] = field(default_factory=dict)
    expiry: dict[str, int] = field(default_factory=dict)
    yield_after_read: bool = False
    force_conflict: bool = False
    error: Exception | None = None
    get_calls: int = 0
    eval_calls: int = 0
    closed: bool = False

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    async def ping(self) -> bool:
        self._maybe_fail()
        return True

    async def get(self, key: str) -> str | None:
        self._maybe_fail()
        self.get_calls += 1
        value = self.data.get(key)
        if self.yield_after_read:
            # Let other tasks run between the read and its use.
            await asyncio.sleep(0)
        return value

    async def eval(self, script: str, _numkeys: int, key: str, *args) -> int:
        self._maybe_fail()
        self.eval_calls += 1
        if script == OVERWRITE_SCRIPT:
            payload, ttl = args
            version = self._stored_version(key) + 1
            self._set(key, payload[:-1] + f',"version":{version}}}', ttl)
            return version

        expected, payload, ttl = args
        if self.force_conflict or self._stored_version(key) != int(expected):
            return 0
        self._set(key, payload, ttl)
        return 1

    def _stored_version(self, key: str) -> int:
        current = self.data.get(key)
        if current is None:
            return 0
        try:
            decoded = json.loads(current)
        except ValueError:
            return 0
        if not isinstance(decoded, dict):
            return 0
        return int(decoded.get("version") or 0)

    def _set(self, key: str, payload: str, ttl) -> None:
        self.data[key] = payload
        if int(ttl) > 0:
            self.expiry[key] = int(ttl)
        else:
            self.expiry.pop(key, None)

    async def scan_iter(self, match: str | None = None):
        self._maybe_fail()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_redis() -> FakeAsyncRedis:
    return FakeAsyncRedis()


@pytest.fixture()
def gateway(fake_redis: FakeAsyncRedis) -> RedisCartGateway:
    return RedisCartGateway(fake_redis, key_prefix="cart:", retry_delay=0)


@pytest.fixture()
async def aiohttp_client():
    """Minimal aiohttp_client fixture to avoid pytest-aiohttp dependency."""
    clients: list[object] = []

    async def _make_client(app):
        from aiohttp.test_utils import TestClient, TestServer

        server = TestServer(app)
        client = TestClient(server)
        await client.start_server()
        clients.append(client)
        return client

    try:
        yield _make_client
    finally:
        for client in clients:
            await client.close()


@pytest.fixture()
async def client(aiohttp_client, gateway: RedisCartGateway):
    """HTTP client bound to an app backed by the fake Redis."""
    return await aiohttp_client(create_app(gateway))
