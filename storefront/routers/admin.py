"""
storefront/routers/admin.py — Back-office endpoints (admin role only)
Endpoints: /api/admin/stats, /api/admin/productos[/{id}],
           /api/admin/pedidos/{id}, /api/admin/upload/producto
Every mutation is audited as DATA_MODIFICATION.
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from storefront.core.api_validation import (
    ApiValidationConfig,
    ValidatedRequest,
    create_api_handler,
    parse_path_id,
)
from storefront.core.errors import ApiError
from storefront.core.logging import get_security_logger
from storefront.core.rate_limiter import api_rate_limit, upload_rate_limit
from storefront.models import CreateProductoRequest, Role, UpdateEstadoRequest, UpdateProductoRequest
from storefront.services import catalog, orders, stats, uploads

router = APIRouter()

ADMIN_ONLY = (Role.ADMIN,)


def _config(method: str, **extra) -> ApiValidationConfig:
    extra.setdefault("rate_limit", api_rate_limit)
    return ApiValidationConfig(
        require_auth=True,
        allowed_roles=ADMIN_ONLY,
        allowed_methods=(method,),
        **extra,
    )


def _audit(request: Request, ctx: ValidatedRequest, entity: str, action: str, entity_id: int) -> None:
    get_security_logger(request).data_modification(
        ctx.user.id, ctx.user.email, entity, action, entity_id, ctx.ip,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Dashboard
# ──────────────────────────────────────────────────────────────────────────────

async def get_stats(request: Request, ctx: ValidatedRequest) -> Response:
    return JSONResponse(stats.get_dashboard_stats(request.app.state.engine))


# ──────────────────────────────────────────────────────────────────────────────
# Products
# ──────────────────────────────────────────────────────────────────────────────

async def list_productos(request: Request, ctx: ValidatedRequest) -> Response:
    productos = catalog.list_all_products(request.app.state.engine)
    return JSONResponse({"success": True, "data": productos, "total": len(productos)})


async def create_producto(request: Request, ctx: ValidatedRequest) -> Response:
    producto = catalog.create_product(request.app.state.engine, ctx.body, get_security_logger(request))
    _audit(request, ctx, "producto", "CREATE", producto["id"])
    return JSONResponse(
        {"success": True, "data": producto, "message": "Producto creado correctamente"},
        status_code=status.HTTP_201_CREATED,
    )


async def get_producto(request: Request, ctx: ValidatedRequest) -> Response:
    producto = catalog.get_product(request.app.state.engine, parse_path_id(request))
    return JSONResponse({"success": True, "data": producto})


async def update_producto(request: Request, ctx: ValidatedRequest) -> Response:
    producto_id = parse_path_id(request)
    producto = catalog.update_product(
        request.app.state.engine, producto_id, ctx.body, get_security_logger(request),
    )
    _audit(request, ctx, "producto", "UPDATE", producto_id)
    return JSONResponse({"success": True, "data": producto, "message": "Producto actualizado correctamente"})


async def delete_producto(request: Request, ctx: ValidatedRequest) -> Response:
    producto_id = parse_path_id(request)
    deactivated = catalog.delete_product(request.app.state.engine, producto_id)
    if deactivated:
        _audit(request, ctx, "producto", "DEACTIVATE", producto_id)
        return JSONResponse({
            "success": True,
            "desactivado": True,
            "message": "El producto tiene pedidos asociados; se desactivó en lugar de eliminarse",
        })
    _audit(request, ctx, "producto", "DELETE", producto_id)
    return JSONResponse({"success": True, "message": "Producto eliminado correctamente"})


# ──────────────────────────────────────────────────────────────────────────────
# Orders
# ──────────────────────────────────────────────────────────────────────────────

async def get_pedido(request: Request, ctx: ValidatedRequest) -> Response:
    return JSONResponse(orders.get_order(request.app.state.engine, parse_path_id(request)))


async def update_pedido(request: Request, ctx: ValidatedRequest) -> Response:
    pedido_id = parse_path_id(request)
    pedido = orders.update_status(request.app.state.engine, pedido_id, ctx.body["estado"])
    _audit(request, ctx, "pedido", "UPDATE", pedido_id)
    return JSONResponse({"success": True, "message": "Estado actualizado correctamente", "pedido": pedido})


async def delete_pedido(request: Request, ctx: ValidatedRequest) -> Response:
    pedido_id = parse_path_id(request)
    orders.delete_order(request.app.state.engine, pedido_id)
    _audit(request, ctx, "pedido", "DELETE", pedido_id)
    return JSONResponse({"success": True, "message": "Pedido eliminado correctamente"})


# ──────────────────────────────────────────────────────────────────────────────
# Uploads
# ──────────────────────────────────────────────────────────────────────────────

async def upload_producto_image(request: Request, ctx: ValidatedRequest) -> Response:
    form = await request.form()
    file = form.get("file")
    if not isinstance(file, UploadFile):
        raise ApiError("No se envió ningún archivo")
    try:
        data = await file.read()
    finally:
        await file.close()

    result = uploads.save_product_image(
        data,
        file.filename or "archivo",
        ctx.user,
        ctx.ip,
        request.app.state.settings,
        get_security_logger(request),
    )
    return JSONResponse(result)


router.add_api_route("/admin/stats", create_api_handler(_config("GET"), get_stats), methods=["GET"])

router.add_api_route("/admin/productos", create_api_handler(_config("GET"), list_productos), methods=["GET"])
router.add_api_route(
    "/admin/productos",
    create_api_handler(_config("POST", schema=CreateProductoRequest, max_body_size=10240), create_producto),
    methods=["POST"],
)
router.add_api_route("/admin/productos/{id}", create_api_handler(_config("GET"), get_producto), methods=["GET"])
router.add_api_route(
    "/admin/productos/{id}",
    create_api_handler(_config("PUT", schema=UpdateProductoRequest, max_body_size=10240), update_producto),
    methods=["PUT"],
)
router.add_api_route(
    "/admin/productos/{id}", create_api_handler(_config("DELETE"), delete_producto), methods=["DELETE"],
)

router.add_api_route("/admin/pedidos/{id}", create_api_handler(_config("GET"), get_pedido), methods=["GET"])
router.add_api_route(
    "/admin/pedidos/{id}",
    create_api_handler(_config("PUT", schema=UpdateEstadoRequest, max_body_size=1024), update_pedido),
    methods=["PUT"],
)
router.add_api_route(
    "/admin/pedidos/{id}", create_api_handler(_config("DELETE"), delete_pedido), methods=["DELETE"],
)

router.add_api_route(
    "/admin/upload/producto",
    create_api_handler(_config("POST", rate_limit=upload_rate_limit, parse_body=False), upload_producto_image),
    methods=["POST"],
)
