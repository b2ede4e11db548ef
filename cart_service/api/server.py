"""aiohttp application and process entry point for the cart service."""
from __future__ import annotations

from aiohttp import web

from cart_service.api.cart_routes import setup_cart_routes
from cart_service.api.utils import CORS_ALLOW_ORIGIN_KEY, cors_on_prepare, cors_preflight
from cart_service.core.config import Settings, load_settings
from cart_service.core.health import check_store_health
from cart_service.core.metrics import metrics as app_metrics
from cart_service.integrations.redis_cart import RedisCartGateway
from logging_config import logger, setup_logging

GATEWAY_KEY = web.AppKey("cart_gateway", RedisCartGateway)


def create_app(gateway: RedisCartGateway, cors_allow_origin: str = "*") -> web.Application:
    """Create aiohttp web application around an already constructed gateway."""
    app = web.Application()
    app[GATEWAY_KEY] = gateway
    app[CORS_ALLOW_ORIGIN_KEY] = cors_allow_origin
    app.on_response_prepare.append(cors_on_prepare)

    async def health_check(request: web.Request) -> web.Response:
        """Redis reachability; 503 when the store is down."""
        healthy, payload = await check_store_health(gateway)
        return web.json_response(payload, status=200 if healthy else 503)

    async def metrics_prom(request: web.Request) -> web.Response:
        """Return Prometheus-style metrics."""
        return web.Response(
            text=app_metrics.export_prometheus(),
            content_type="text/plain",
            charset="utf-8",
        )

    async def metrics_json(request: web.Request) -> web.Response:
        return web.json_response(app_metrics.get_summary())

    setup_cart_routes(app, gateway)
    app.router.add_get("/health", health_check)
    app.router.add_get("/metrics", metrics_prom)
    app.router.add_get("/metrics.json", metrics_json)
    app.router.add_route("OPTIONS", "/{tail:.*}", cors_preflight)
    return app


async def _close_gateway(app: web.Application) -> None:
    logger.info("Cart service shutting down, closing Redis client")
    await app[GATEWAY_KEY].close()


def build_app_from_settings(settings: Settings) -> web.Application:
    gateway = RedisCartGateway.from_settings(settings)
    app = create_app(gateway, cors_allow_origin=settings.cors_allow_origin)
    app.on_cleanup.append(_close_gateway)
    return app


def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level)
    logger.info(
        "Cart service starting on %s:%d (redis=%s, prefix=%r)",
        settings.host,
        settings.port,
        settings.redis.url,
        settings.redis.key_prefix,
    )
    web.run_app(build_app_from_settings(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
