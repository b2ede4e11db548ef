"""Environment-driven configuration objects for the cart service."""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from cart_service.core.exceptions import ConfigurationException


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationException(f"{name} must be a number, got {raw!r}") from None


@dataclass(slots=True)
class RedisConfig:
    url: str
    socket_timeout: float
    key_prefix: str
    cart_ttl_seconds: int | None


@dataclass(slots=True)
class Settings:
    redis: RedisConfig
    host: str
    port: int
    max_update_attempts: int
    retry_delay: float
    default_currency: str
    cors_allow_origin: str
    log_level: str

    @property
    def redis_url(self) -> str:
        return self.redis.url


def load_settings() -> Settings:
    """Load environment variables once and expose typed settings."""
    load_dotenv()

    ttl = _int_env("CART_TTL_SECONDS", 0)
    if ttl < 0:
        raise ConfigurationException("CART_TTL_SECONDS must not be negative")

    max_attempts = _int_env("CART_MAX_UPDATE_ATTEMPTS", 5)
    if max_attempts < 1:
        raise ConfigurationException("CART_MAX_UPDATE_ATTEMPTS must be at least 1")

    redis_config = RedisConfig(
        url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        socket_timeout=_float_env("REDIS_SOCKET_TIMEOUT", 5.0),
        key_prefix=os.getenv("CART_KEY_PREFIX", "cart:"),
        cart_ttl_seconds=ttl or None,
    )

    return Settings(
        redis=redis_config,
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 8080),
        max_update_attempts=max_attempts,
        retry_delay=_float_env("CART_RETRY_DELAY", 0.01),
        default_currency=os.getenv("CART_DEFAULT_CURRENCY", "USD"),
        cors_allow_origin=os.getenv("CORS_ALLOW_ORIGIN", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
