"""
storefront/routers/auth.py — Session endpoints
Endpoints: /api/auth/login, /api/auth/registro, /api/auth/logout, /api/auth/me
The session token travels only in the httponly cookie, never in a body.
"""
from __future__ import annotations

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger

from storefront.core.api_validation import ApiValidationConfig, ValidatedRequest, create_api_handler
from storefront.core.auth import clear_auth_cookie, set_auth_cookie, sign_jwt
from storefront.core.logging import get_security_logger
from storefront.core.rate_limiter import api_rate_limit, login_rate_limit, registro_rate_limit
from storefront.models import IdentityClaim, LoginRequest, RegistroRequest
from storefront.services import users as user_service

router = APIRouter()


async def login(request: Request, ctx: ValidatedRequest) -> Response:
    settings = request.app.state.settings
    account = user_service.authenticate(
        request.app.state.engine,
        ctx.body["email"],
        ctx.body["password"],
        get_security_logger(request),
        ctx.ip,
        ctx.user_agent,
    )
    token = sign_jwt(
        IdentityClaim(id=account["id"], email=account["email"], role=account["rol"]),
        settings,
    )
    response = JSONResponse({"mensaje": "Login exitoso", "usuario": account})
    set_auth_cookie(response, token, settings)
    return response


async def register(request: Request, ctx: ValidatedRequest) -> Response:
    created = user_service.register(
        request.app.state.engine, ctx.body, get_security_logger(request), ctx.ip,
    )
    return JSONResponse(
        {"mensaje": "Cuenta creada exitosamente", "usuario": created},
        status_code=status.HTTP_201_CREATED,
    )


async def logout(request: Request, ctx: ValidatedRequest) -> Response:
    if ctx.user is not None:
        get_security_logger(request).logout(ctx.user.id, ctx.user.email, ctx.ip)
    logger.info(f"Logout - {ctx.user.email if ctx.user else 'anonymous'}")
    response = JSONResponse({"mensaje": "Sesión cerrada exitosamente"})
    clear_auth_cookie(response, request.app.state.settings)
    return response


async def me(request: Request, ctx: ValidatedRequest) -> Response:
    account = user_service.get_active_user(request.app.state.engine, ctx.user.id)
    account.pop("ultima_sesion", None)
    return JSONResponse({"usuario": account})


router.add_api_route(
    "/auth/login",
    create_api_handler(
        ApiValidationConfig(
            schema=LoginRequest,
            rate_limit=login_rate_limit,
            allowed_methods=("POST",),
            max_body_size=1024,
        ),
        login,
    ),
    methods=["POST"],
)
router.add_api_route(
    "/auth/registro",
    create_api_handler(
        ApiValidationConfig(
            schema=RegistroRequest,
            rate_limit=registro_rate_limit,
            allowed_methods=("POST",),
            max_body_size=2048,
        ),
        register,
    ),
    methods=["POST"],
)
router.add_api_route(
    "/auth/logout",
    create_api_handler(
        ApiValidationConfig(
            rate_limit=api_rate_limit,
            allowed_methods=("POST",),
            parse_body=False,
        ),
        logout,
    ),
    methods=["POST"],
)
router.add_api_route(
    "/auth/me",
    create_api_handler(
        ApiValidationConfig(
            require_auth=True,
            rate_limit=api_rate_limit,
            allowed_methods=("GET",),
        ),
        me,
    ),
    methods=["GET"],
)
