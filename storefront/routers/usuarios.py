"""
storefront/routers/usuarios.py — Account administration (admin role only)
Endpoints: /api/usuarios, /api/usuarios/{id}
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from storefront.core.api_validation import (
    ApiValidationConfig,
    ValidatedRequest,
    create_api_handler,
    parse_path_id,
)
from storefront.core.logging import get_security_logger
from storefront.core.rate_limiter import api_rate_limit
from storefront.models import CreateUsuarioRequest, Role, UpdateUsuarioRequest
from storefront.services import users as user_service

router = APIRouter()


def _config(method: str, **extra) -> ApiValidationConfig:
    return ApiValidationConfig(
        require_auth=True,
        allowed_roles=(Role.ADMIN,),
        rate_limit=api_rate_limit,
        allowed_methods=(method,),
        **extra,
    )


async def list_usuarios(request: Request, ctx: ValidatedRequest) -> Response:
    return JSONResponse(user_service.list_users(request.app.state.engine))


async def create_usuario(request: Request, ctx: ValidatedRequest) -> Response:
    created = user_service.create_user(request.app.state.engine, ctx.body)
    get_security_logger(request).data_modification(
        ctx.user.id, ctx.user.email, "usuario", "CREATE", created["id"], ctx.ip,
    )
    return JSONResponse(created, status_code=status.HTTP_201_CREATED)


async def update_usuario(request: Request, ctx: ValidatedRequest) -> Response:
    usuario_id = parse_path_id(request)
    updated = user_service.update_user(request.app.state.engine, usuario_id, ctx.body)
    get_security_logger(request).data_modification(
        ctx.user.id, ctx.user.email, "usuario", "UPDATE", usuario_id, ctx.ip,
    )
    return JSONResponse(updated)


async def delete_usuario(request: Request, ctx: ValidatedRequest) -> Response:
    usuario_id = parse_path_id(request)
    user_service.delete_user(request.app.state.engine, usuario_id)
    get_security_logger(request).data_modification(
        ctx.user.id, ctx.user.email, "usuario", "DELETE", usuario_id, ctx.ip,
    )
    return JSONResponse({"message": "Usuario eliminado exitosamente"})


router.add_api_route("/usuarios", create_api_handler(_config("GET"), list_usuarios), methods=["GET"])
router.add_api_route(
    "/usuarios",
    create_api_handler(_config("POST", schema=CreateUsuarioRequest, max_body_size=2048), create_usuario),
    methods=["POST"],
)
router.add_api_route(
    "/usuarios/{id}",
    create_api_handler(_config("PUT", schema=UpdateUsuarioRequest, max_body_size=2048), update_usuario),
    methods=["PUT"],
)
router.add_api_route("/usuarios/{id}", create_api_handler(_config("DELETE"), delete_usuario), methods=["DELETE"])
