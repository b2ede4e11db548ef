"""Cart routes for the HTTP API."""
from __future__ import annotations

import json
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from cart_service.api.utils import detail_response, error_response, format_validation_errors
from cart_service.core.exceptions import CartServiceException
from cart_service.domain.cart import CartItem
from cart_service.integrations.redis_cart import RedisCartGateway
from logging_config import bind_customer, logger


class UpdateQuantityRequest(BaseModel):
    """Body of PUT /cart/{customerId}/items/{productId}; zero or less removes the line."""

    quantity: int = Field(..., description="New quantity")


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def build_cart_handlers(gateway: RedisCartGateway) -> dict[str, Any]:
    async def index(request: web.Request) -> web.Response:
        return web.json_response({"name": "Cart API", "version": "1.0.0"})

    async def list_carts(request: web.Request) -> web.Response:
        """GET /cart - every stored cart, unordered."""
        try:
            carts = [cart.to_dict() async for cart in gateway.list_carts()]
        except CartServiceException as e:
            return error_response(e)
        return web.json_response(carts)

    async def get_cart(request: web.Request) -> web.Response:
        """GET /cart/{customerId} - 204 when the customer has no cart."""
        customer_id = request.match_info["customer_id"]
        with bind_customer(customer_id):
            try:
                cart = await gateway.get_cart(customer_id)
            except CartServiceException as e:
                return error_response(e)
            if cart is None:
                return web.Response(status=204)
            return web.json_response(cart.to_dict())

    async def create_cart(request: web.Request) -> web.Response:
        """POST /cart - create or replace a whole cart."""
        data = await _read_json(request)
        if data is None:
            return detail_response("Invalid JSON", 400)

        customer_id = data.get("customerId", "") if isinstance(data, dict) else ""
        with bind_customer(str(customer_id or "")):
            logger.info("Storing cart payload")
            try:
                await gateway.create_or_replace(data)
            except CartServiceException as e:
                return error_response(e)
        return web.Response(status=204)

    async def add_item(request: web.Request) -> web.Response:
        """POST /cart/{customerId}/items - add or merge a line item."""
        customer_id = request.match_info["customer_id"]
        data = await _read_json(request)
        if data is None:
            return detail_response("Invalid JSON", 400)

        try:
            item = CartItem.model_validate(data)
        except ValidationError as exc:
            return detail_response(format_validation_errors(exc.errors()), 422)

        with bind_customer(customer_id):
            logger.info("Adding item to cart, product: %s", item.product_id)
            try:
                cart = await gateway.add_item(customer_id, item)
            except CartServiceException as e:
                return error_response(e)
            return web.json_response(cart.to_dict())

    async def update_item(request: web.Request) -> web.Response:
        """PUT /cart/{customerId}/items/{productId} - set a line's quantity."""
        customer_id = request.match_info["customer_id"]
        product_id = request.match_info["product_id"]
        data = await _read_json(request)
        if data is None:
            return detail_response("Invalid JSON", 400)

        try:
            body = UpdateQuantityRequest.model_validate(data)
        except ValidationError as exc:
            return detail_response(format_validation_errors(exc.errors()), 422)

        with bind_customer(customer_id):
            logger.info("Setting quantity of %s to %d", product_id, body.quantity)
            try:
                cart = await gateway.update_item_quantity(customer_id, product_id, body.quantity)
            except CartServiceException as e:
                return error_response(e)
            return web.json_response(cart.to_dict())

    async def remove_item(request: web.Request) -> web.Response:
        """DELETE /cart/{customerId}/items/{productId}."""
        customer_id = request.match_info["customer_id"]
        product_id = request.match_info["product_id"]
        with bind_customer(customer_id):
            logger.info("Removing item from cart, product: %s", product_id)
            try:
                cart = await gateway.remove_item(customer_id, product_id)
            except CartServiceException as e:
                return error_response(e)
            return web.json_response(cart.to_dict())

    async def clear_cart(request: web.Request) -> web.Response:
        """DELETE /cart/{customerId}/items - empty the cart, keep the record."""
        customer_id = request.match_info["customer_id"]
        with bind_customer(customer_id):
            logger.info("Clearing cart")
            try:
                cart = await gateway.clear_cart(customer_id)
            except CartServiceException as e:
                return error_response(e)
            return web.json_response(cart.to_dict())

    return {
        "index": index,
        "list_carts": list_carts,
        "get_cart": get_cart,
        "create_cart": create_cart,
        "add_item": add_item,
        "update_item": update_item,
        "remove_item": remove_item,
        "clear_cart": clear_cart,
    }


def setup_cart_routes(app: web.Application, gateway: RedisCartGateway) -> None:
    handlers = build_cart_handlers(gateway)
    app.router.add_get("/", handlers["index"])
    app.router.add_get("/cart", handlers["list_carts"])
    app.router.add_post("/cart", handlers["create_cart"])
    app.router.add_get("/cart/{customer_id}", handlers["get_cart"])
    app.router.add_post("/cart/{customer_id}/items", handlers["add_item"])
    app.router.add_delete("/cart/{customer_id}/items", handlers["clear_cart"])
    app.router.add_put("/cart/{customer_id}/items/{product_id}", handlers["update_item"])
    app.router.add_delete("/cart/{customer_id}/items/{product_id}", handlers["remove_item"])
