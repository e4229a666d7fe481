"""
storefront/routers/productos.py — Public catalog
Endpoints: /api/productos, /api/productos/{slug}
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from storefront.core.api_validation import (
    ApiValidationConfig,
    ValidatedRequest,
    create_api_handler,
    field_errors,
)
from storefront.core.errors import ApiError, error_response
from storefront.core.rate_limiter import api_rate_limit
from storefront.models import ProductoQuery
from storefront.services import catalog
from storefront.utils.slugify import is_valid_slug
from storefront.utils.timezone import iso_utc

router = APIRouter()

PUBLIC_GET = ApiValidationConfig(rate_limit=api_rate_limit, allowed_methods=("GET",))


async def list_productos(request: Request, ctx: ValidatedRequest) -> Response:
    try:
        params = ProductoQuery.model_validate(dict(request.query_params))
    except ValidationError as exc:
        return error_response(400, "Parámetros de búsqueda inválidos", errors=field_errors(exc))

    productos = catalog.list_products(request.app.state.engine, params)
    filters = params.model_dump(
        by_alias=True, exclude_none=True, exclude={"limit", "page", "ordenar"},
    )
    if not filters.get("soloStock"):
        filters.pop("soloStock", None)
    return JSONResponse({
        "success": True,
        "data": productos,
        "meta": {
            "count": len(productos),
            "page": params.page,
            "limit": params.limit,
            "filters_applied": filters,
        },
        "timestamp": iso_utc(),
    })


async def get_producto(request: Request, ctx: ValidatedRequest) -> Response:
    slug = request.path_params.get("slug", "")
    if not is_valid_slug(slug):
        raise ApiError("Slug inválido")
    producto = catalog.get_product_by_slug(request.app.state.engine, slug)
    return JSONResponse({"success": True, "data": producto})


router.add_api_route("/productos", create_api_handler(PUBLIC_GET, list_productos), methods=["GET"])
router.add_api_route("/productos/{slug}", create_api_handler(PUBLIC_GET, get_producto), methods=["GET"])
