"""
storefront/core/edge.py — Edge security middleware
Runs ahead of routing for every request:
  1. suspicious URL / query screen      → 400
  2. CSRF origin screen                 → 403
  3. multipart upload size pre-screen   → 413
  4. path-prefix authorization gate     → redirect (pages) / 403 (API)
Every response leaving the process gets the security headers and
X-Response-Time.
"""
from __future__ import annotations

import re
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote_plus

from fastapi import Request, Response, status
from fastapi.responses import RedirectResponse
from loguru import logger

from storefront.config import Settings
from storefront.core.auth import clear_auth_cookie, get_token, verify_jwt
from storefront.core.errors import error_response
from storefront.core.logging import SecurityLogger
from storefront.core.rate_limiter import get_client_ip
from storefront.core.sanitize import ThreatDetector
from storefront.core.security_headers import apply_security_headers
from storefront.models import IdentityClaim, Role

SUSPICIOUS_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.\./|\.\.\\"),
    re.compile(r"<script|javascript:|onerror=|onload=", re.IGNORECASE),
    re.compile(r"union.*select|insert.*into|drop.*table", re.IGNORECASE),
    re.compile(r"eval\(|exec\(|system\(", re.IGNORECASE),
    re.compile(r"cmd\.exe|powershell|bash", re.IGNORECASE),
)

SAFE_METHODS = frozenset({"GET", "HEAD"})

PROTECTED_PATHS = (
    "/panel",
    "/cuenta",
    "/api/admin",
    "/api/cuenta",
    "/api/carrito",
    "/api/checkout",
    "/api/usuarios",
    "/api/auth/me",
)

PUBLIC_PATHS = (
    "/api/auth/login",
    "/api/auth/registro",
    "/api/auth/logout",
    "/api/productos",
    "/api/categorias",
    "/api/consultas",
    "/api/ping",
    "/login",
    "/registro",
)

ADMIN_API_PREFIXES = ("/api/admin/", "/api/usuarios")
CUSTOMER_API_PREFIXES = ("/api/cuenta/", "/api/carrito", "/api/checkout")
ADMIN_PAGE_PREFIX = "/panel/admin"
CUSTOMER_PAGE_PREFIX = "/cuenta"

CallNext = Callable[[Request], Awaitable[Response]]


def is_protected_path(path: str) -> bool:
    return path.startswith(PROTECTED_PATHS)


def is_public_path(path: str) -> bool:
    return path.startswith(PUBLIC_PATHS)


def is_api_path(path: str) -> bool:
    return path.startswith("/api/")


def _reject(status_code: int, message: str) -> Response:
    return error_response(status_code, message)


# ──────────────────────────────────────────────────────────────────────────────
# Screens
# ──────────────────────────────────────────────────────────────────────────────

def check_suspicious_patterns(
    request: Request,
    sec_log: SecurityLogger,
    detector: ThreatDetector,
) -> Optional[Response]:
    """
    Reject traversal, script, SQL and shell signatures in the decoded URL.

    The query is matched after unquote_plus, so "+" and "%20" count as
    whitespace. Encoded payloads cannot slip past the signatures, at the cost
    of rejecting plain searches such as "update kit" that happen to read as
    SQL.
    """
    ip = get_client_ip(request)
    path = request.url.path
    full_url = unquote_plus(str(request.url))

    for pattern in SUSPICIOUS_URL_PATTERNS:
        if pattern.search(full_url):
            sec_log.suspicious_activity(
                "SUSPICIOUS_URL_PATTERN", ip, path,
                {"pattern": pattern.pattern, "url": full_url[:500]},
            )
            return _reject(status.HTTP_400_BAD_REQUEST, "Solicitud rechazada")

    query = unquote_plus(request.url.query)
    if query:
        if detector.looks_like_sql_injection(query):
            sec_log.sql_injection_attempt(ip, query, path)
            return _reject(status.HTTP_400_BAD_REQUEST, "Solicitud rechazada")
        if detector.looks_like_xss(query):
            sec_log.xss_attempt(ip, query, path)
            return _reject(status.HTTP_400_BAD_REQUEST, "Solicitud rechazada")
    return None


def allowed_origins(request: Request, settings: Settings) -> list[str]:
    host = request.headers.get("host")
    origins = [settings.site_url]
    if host:
        origins += [f"https://{host}", f"http://{host}"]
    origins += settings.allowed_origins
    return [o.rstrip("/") for o in origins if o]


def check_csrf(request: Request, settings: Settings, sec_log: SecurityLogger) -> Optional[Response]:
    """
    State-changing requests must come from an allowed Origin.

    Requests without an Origin header are let through unchecked.
    """
    if request.method in SAFE_METHODS:
        return None
    path = request.url.path
    if path.startswith(tuple(settings.csrf_exempt_prefixes)):
        return None

    origin = request.headers.get("origin")
    if not origin:
        return None

    allowed = allowed_origins(request, settings)
    origin = origin.rstrip("/")
    if any(origin == a or origin.startswith(a + "/") for a in allowed):
        return None

    sec_log.suspicious_activity(
        "CSRF_ORIGIN_MISMATCH", get_client_ip(request), path,
        {"origin": origin, "allowedOrigins": allowed},
    )
    return _reject(status.HTTP_403_FORBIDDEN, "Origen no permitido")


def check_file_upload(request: Request, settings: Settings, sec_log: SecurityLogger) -> Optional[Response]:
    """Reject oversized multipart uploads from Content-Length, before the body is read."""
    path = request.url.path
    if "/upload" not in path:
        return None
    if "multipart/form-data" not in (request.headers.get("content-type") or ""):
        return None

    raw_length = request.headers.get("content-length") or ""
    try:
        length = int(raw_length)
    except ValueError:
        return None
    if length <= settings.max_multipart_bytes:
        return None

    sec_log.suspicious_activity(
        "FILE_TOO_LARGE", get_client_ip(request), path,
        {"size": length, "maxSize": settings.max_multipart_bytes},
    )
    max_mb = settings.max_multipart_bytes // (1024 * 1024)
    return _reject(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, f"Archivo demasiado grande (máx {max_mb}MB)")


# ──────────────────────────────────────────────────────────────────────────────
# Authorization gate
# ──────────────────────────────────────────────────────────────────────────────

def _login_redirect(path: Optional[str] = None) -> RedirectResponse:
    url = "/login" if path is None else f"/login?redirect={path}"
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


def _role_violation(path: str, user: IdentityClaim) -> bool:
    if is_api_path(path):
        if path.startswith(ADMIN_API_PREFIXES) and user.role != Role.ADMIN:
            return True
        if path.startswith(CUSTOMER_API_PREFIXES) and user.role != Role.CUSTOMER:
            return True
        return False
    if path.startswith(ADMIN_PAGE_PREFIX) and user.role != Role.ADMIN:
        return True
    if path.startswith(CUSTOMER_PAGE_PREFIX) and user.role != Role.CUSTOMER:
        return True
    return False


def check_route_authorization(
    request: Request,
    settings: Settings,
    sec_log: SecurityLogger,
) -> tuple[Optional[Response], bool]:
    """
    Coarse path-prefix role rules. Returns (rejection, clear_stale_cookie).

    API calls without a usable token are passed on so the route itself
    answers 401; page navigations are redirected to /login instead.
    """
    path = request.url.path
    api = is_api_path(path)
    token = get_token(request, settings)

    if not token:
        if not api and is_protected_path(path):
            return _login_redirect(path), False
        return None, False

    user = verify_jwt(token, settings)
    ip = get_client_ip(request)

    if user is None:
        if api:
            return None, not is_public_path(path)
        sec_log.unauthorized_access(path, ip, reason="invalid_token")
        response = _login_redirect()
        clear_auth_cookie(response, settings)
        return response, False

    if _role_violation(path, user):
        sec_log.unauthorized_access(path, ip, user_id=user.id, user_email=user.email, reason="role")
        if api:
            return _reject(status.HTTP_403_FORBIDDEN, "No autorizado"), False
        return RedirectResponse("/unauthorized", status_code=status.HTTP_307_TEMPORARY_REDIRECT), False

    return None, False


# ──────────────────────────────────────────────────────────────────────────────
# Middleware
# ──────────────────────────────────────────────────────────────────────────────

async def edge_security_middleware(request: Request, call_next: CallNext) -> Response:
    started = time.perf_counter()
    state = request.app.state
    settings: Settings = state.settings
    sec_log: SecurityLogger = state.security_logger

    if settings.is_development:
        logger.debug(f"{request.method} {request.url.path} - IP: {get_client_ip(request)}")

    rejection = (
        check_suspicious_patterns(request, sec_log, state.threat_detector)
        or check_csrf(request, settings, sec_log)
        or check_file_upload(request, settings, sec_log)
    )
    clear_cookie = False
    if rejection is None:
        rejection, clear_cookie = check_route_authorization(request, settings, sec_log)

    response = rejection if rejection is not None else await call_next(request)
    if clear_cookie:
        clear_auth_cookie(response, settings)

    duration_ms = int((time.perf_counter() - started) * 1000)
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    if settings.is_development and duration_ms > settings.slow_request_ms:
        logger.warning(f"Slow response: {request.url.path} - {duration_ms}ms")
    return apply_security_headers(response)
