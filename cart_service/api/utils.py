"""Shared helpers for the cart HTTP API."""
from __future__ import annotations

from typing import Any

from aiohttp import web

from cart_service.core.exceptions import (
    CartServiceException,
    InvalidArgumentException,
    LostUpdateException,
    StoreUnavailableException,
)

CORS_ALLOW_ORIGIN_KEY = web.AppKey("cors_allow_origin", str)

_STATUS_BY_EXCEPTION: tuple[tuple[type[CartServiceException], int], ...] = (
    (InvalidArgumentException, 400),
    (LostUpdateException, 409),
    (StoreUnavailableException, 503),
)


def detail_response(detail: Any, status_code: int) -> web.Response:
    if isinstance(detail, str):
        payload = {"detail": detail, "error": detail}
    else:
        payload = {"detail": detail, "error": "Validation error"}
    return web.json_response(payload, status=status_code)


def error_response(exc: CartServiceException) -> web.Response:
    """Map a service exception to its HTTP status."""
    for exc_type, status in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return detail_response(exc.message, status)
    return detail_response(exc.message, 500)


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    formatted: list[dict[str, Any]] = []
    for err in errors:
        formatted.append(
            {
                "loc": ["body", *err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
        )
    return formatted


def add_cors_headers(response: web.StreamResponse, origin: str) -> web.StreamResponse:
    """Add CORS headers to response."""
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


async def cors_on_prepare(request: web.Request, response: web.StreamResponse) -> None:
    add_cors_headers(response, request.app.get(CORS_ALLOW_ORIGIN_KEY, "*"))


async def cors_preflight(request: web.Request) -> web.Response:
    """Handle CORS preflight requests."""
    return web.Response(status=204)
