"""
storefront/routers/carrito.py — Customer shopping cart
Endpoints: /api/carrito, /api/carrito/{producto_id}
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from storefront.core.api_validation import (
    ApiValidationConfig,
    ValidatedRequest,
    create_api_handler,
    parse_path_id,
)
from storefront.core.rate_limiter import api_rate_limit
from storefront.models import AddToCarritoRequest, Role, UpdateCantidadRequest
from storefront.services import cart as cart_service

router = APIRouter()

CUSTOMER_ONLY = (Role.CUSTOMER,)


async def get_cart(request: Request, ctx: ValidatedRequest) -> Response:
    items = cart_service.list_items(request.app.state.engine, ctx.user.id)
    return JSONResponse({"items": items})


async def add_to_cart(request: Request, ctx: ValidatedRequest) -> Response:
    total = cart_service.add_item(
        request.app.state.engine,
        ctx.user.id,
        ctx.body["producto_id"],
        ctx.body["cantidad"],
    )
    return JSONResponse({"message": "Producto agregado al carrito", "cantidad_total": total})


async def clear_cart(request: Request, ctx: ValidatedRequest) -> Response:
    cart_service.clear(request.app.state.engine, ctx.user.id)
    return JSONResponse({"message": "Carrito vaciado"})


async def update_quantity(request: Request, ctx: ValidatedRequest) -> Response:
    producto_id = parse_path_id(request, "producto_id")
    cart_service.set_quantity(request.app.state.engine, ctx.user.id, producto_id, ctx.body["cantidad"])
    return JSONResponse({"message": "Cantidad actualizada"})


async def remove_from_cart(request: Request, ctx: ValidatedRequest) -> Response:
    producto_id = parse_path_id(request, "producto_id")
    cart_service.remove_item(request.app.state.engine, ctx.user.id, producto_id)
    return JSONResponse({"message": "Producto eliminado del carrito"})


def _config(method: str, **extra) -> ApiValidationConfig:
    return ApiValidationConfig(
        require_auth=True,
        allowed_roles=CUSTOMER_ONLY,
        rate_limit=api_rate_limit,
        allowed_methods=(method,),
        **extra,
    )


router.add_api_route("/carrito", create_api_handler(_config("GET"), get_cart), methods=["GET"])
router.add_api_route(
    "/carrito",
    create_api_handler(_config("POST", schema=AddToCarritoRequest, max_body_size=1024), add_to_cart),
    methods=["POST"],
)
router.add_api_route("/carrito", create_api_handler(_config("DELETE"), clear_cart), methods=["DELETE"])
router.add_api_route(
    "/carrito/{producto_id}",
    create_api_handler(_config("PUT", schema=UpdateCantidadRequest, max_body_size=1024), update_quantity),
    methods=["PUT"],
)
router.add_api_route(
    "/carrito/{producto_id}",
    create_api_handler(_config("DELETE"), remove_from_cart),
    methods=["DELETE"],
)
