"""
storefront/core/api_validation.py — Route-level request pipeline
Wraps a business callback with, in order: method check, rate limiting,
authentication and role check, body validation and sanitization. The first
stage that rejects short-circuits; its response is returned as-is.
Unexpected exceptions are caught once, here, and turned into a 500.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from fastapi import Request, Response, status
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.config import Settings
from storefront.core.auth import get_token, verify_jwt
from storefront.core.errors import ApiError, error_response
from storefront.core.logging import SecurityLogger
from storefront.core.rate_limiter import RateLimitCheck, get_client_ip
from storefront.core.sanitize import ThreatDetector, sanitize_integer, sanitize_object
from storefront.core.security_headers import apply_security_headers
from storefront.models import IdentityClaim, Role

BODYLESS_METHODS = frozenset({"GET", "DELETE", "HEAD"})


@dataclass(frozen=True)
class ApiValidationConfig:
    require_auth: bool = False
    allowed_roles: Optional[tuple[Role, ...]] = None
    schema: Optional[type[BaseModel]] = None
    rate_limit: Optional[RateLimitCheck] = None
    max_body_size: Optional[int] = None
    allowed_methods: Optional[tuple[str, ...]] = None
    # multipart/empty-body routes read the request themselves
    parse_body: bool = True


@dataclass
class ValidatedRequest:
    user: Optional[IdentityClaim]
    body: Any
    ip: str
    user_agent: str


ApiHandler = Callable[[Request, ValidatedRequest], Awaitable[Response]]


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _security_logger(request: Request) -> SecurityLogger:
    return request.app.state.security_logger


def _detector(request: Request) -> ThreatDetector:
    return request.app.state.threat_detector


def get_client_info(request: Request) -> tuple[str, str]:
    """Return (ip, user_agent) for logging and rate-limit keys."""
    return get_client_ip(request), request.headers.get("user-agent") or "unknown"


def field_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors into {field: [messages]}."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        field = str(loc[0]) if loc else "_"
        message = str(err.get("msg", "Valor inválido")).removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)
    return errors


def _parse_json(text: str) -> Any:
    return json.loads(text)


def parse_path_id(request: Request, name: str = "id") -> int:
    """Positive integer path parameter, else ApiError 400."""
    value = sanitize_integer(request.path_params.get(name))
    if not value or value < 1:
        raise ApiError("ID inválido")
    return value


# ──────────────────────────────────────────────────────────────────────────────
# Stages
# ──────────────────────────────────────────────────────────────────────────────

def check_method(request: Request, config: ApiValidationConfig) -> Optional[Response]:
    if not config.allowed_methods:
        return None
    if request.method in config.allowed_methods:
        return None
    return error_response(
        status.HTTP_405_METHOD_NOT_ALLOWED,
        f"Método {request.method} no permitido",
        headers={"Allow": ", ".join(config.allowed_methods)},
        allowedMethods=list(config.allowed_methods),
    )


async def check_rate_limit(request: Request, config: ApiValidationConfig) -> Optional[Response]:
    if config.rate_limit is None:
        return None
    rejection = await config.rate_limit(request)
    if rejection is not None:
        ip, user_agent = get_client_info(request)
        _security_logger(request).rate_limit_exceeded(ip, request.url.path, user_agent)
    return rejection


def check_auth(
    request: Request,
    config: ApiValidationConfig,
) -> tuple[Optional[IdentityClaim], Optional[Response]]:
    settings = _settings(request)
    token = get_token(request, settings)

    if not config.require_auth:
        # Optional identity: a bad token on a public route is simply ignored.
        return verify_jwt(token, settings), None

    ip, _ = get_client_info(request)
    sec_log = _security_logger(request)
    path = request.url.path

    if not token:
        sec_log.unauthorized_access(path, ip, reason="missing_token")
        return None, error_response(status.HTTP_401_UNAUTHORIZED, "No autenticado")

    user = verify_jwt(token, settings)
    if user is None:
        sec_log.unauthorized_access(path, ip, reason="invalid_token")
        return None, error_response(status.HTTP_401_UNAUTHORIZED, "Token inválido o expirado")

    if config.allowed_roles and user.role not in config.allowed_roles:
        sec_log.unauthorized_access(path, ip, user_id=user.id, user_email=user.email, reason="role")
        return None, error_response(
            status.HTTP_403_FORBIDDEN,
            "No tenés permisos para acceder a este recurso",
        )

    return user, None


async def validate_body(
    request: Request,
    config: ApiValidationConfig,
) -> tuple[Any, Optional[Response]]:
    if request.method in BODYLESS_METHODS or not config.parse_body:
        return None, None

    content_type = request.headers.get("content-type") or ""
    if "application/json" not in content_type:
        return None, error_response(
            status.HTTP_400_BAD_REQUEST,
            "Content-Type debe ser application/json",
        )

    text = (await request.body()).decode("utf-8", errors="replace")
    ip, _ = get_client_info(request)
    path = request.url.path
    sec_log = _security_logger(request)

    if config.max_body_size is not None and len(text) > config.max_body_size:
        sec_log.suspicious_activity(
            "BODY_TOO_LARGE", ip, path,
            {"size": len(text), "maxSize": config.max_body_size},
        )
        return None, error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Body demasiado grande")

    detector = _detector(request)
    is_sqli = detector.looks_like_sql_injection(text)
    is_xss = detector.looks_like_xss(text)
    if is_sqli or is_xss:
        if is_sqli:
            sec_log.sql_injection_attempt(ip, text, path)
        if is_xss:
            sec_log.xss_attempt(ip, text, path)
        return None, error_response(status.HTTP_400_BAD_REQUEST, "Input sospechoso detectado")

    try:
        body = _parse_json(text)
    except ValueError:
        return None, error_response(status.HTTP_400_BAD_REQUEST, "JSON inválido")

    if config.schema is not None:
        try:
            body = config.schema.model_validate(body).model_dump(mode="json")
        except ValidationError as exc:
            return None, error_response(
                status.HTTP_400_BAD_REQUEST,
                "Datos inválidos",
                errors=field_errors(exc),
            )

    if isinstance(body, dict):
        body = sanitize_object(body)
    return body, None


async def validate_api_request(
    request: Request,
    config: ApiValidationConfig,
) -> tuple[ValidatedRequest, Optional[Response]]:
    ip, user_agent = get_client_info(request)
    rejected = ValidatedRequest(user=None, body=None, ip=ip, user_agent=user_agent)

    rejection = check_method(request, config)
    if rejection is not None:
        return rejected, rejection

    rejection = await check_rate_limit(request, config)
    if rejection is not None:
        return rejected, rejection

    user, rejection = check_auth(request, config)
    if rejection is not None:
        return rejected, rejection

    body, rejection = await validate_body(request, config)
    if rejection is not None:
        rejected.user = user
        return rejected, rejection

    return ValidatedRequest(user=user, body=body, ip=ip, user_agent=user_agent), None


# ──────────────────────────────────────────────────────────────────────────────
# Boundary
# ──────────────────────────────────────────────────────────────────────────────

def handle_api_error(exc: Exception, request: Request) -> Response:
    """Log an unexpected failure and convert it to an error envelope."""
    ip, _ = get_client_info(request)
    _security_logger(request).error(
        f"Error en {request.url.path}",
        error=exc,
        data={"ip": ip, "method": request.method},
    )

    if isinstance(exc, ValidationError):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Validación fallida",
            errors=field_errors(exc),
        )

    extra: dict[str, Any] = {}
    if not _settings(request).is_production:
        extra["error"] = str(exc)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Error interno del servidor",
        **extra,
    )


def create_api_handler(config: ApiValidationConfig, handler: ApiHandler) -> Callable[[Request], Awaitable[Response]]:
    """Build a FastAPI endpoint running `handler` behind the validation pipeline."""

    async def endpoint(request: Request) -> Response:
        try:
            validated, rejection = await validate_api_request(request, config)
            if rejection is not None:
                return apply_security_headers(rejection)
            response = await handler(request, validated)
        except ApiError as exc:
            response = exc.to_response()
        except StarletteHTTPException as exc:
            response = error_response(exc.status_code, str(exc.detail), headers=exc.headers)
        except Exception as exc:
            response = handle_api_error(exc, request)
        return apply_security_headers(response)

    endpoint.__name__ = getattr(handler, "__name__", "endpoint")
    endpoint.__doc__ = handler.__doc__
    return endpoint
