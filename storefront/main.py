"""
storefront/main.py — FastAPI application entry point
Includes: lifespan management, CORS, edge security middleware, envelope error
handlers, rate-limit window sweeper, ping liveness endpoint.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.config import Settings, get_settings
from storefront.core.edge import edge_security_middleware
from storefront.core.errors import error_response
from storefront.core.logging import SecurityLogger, setup_logging
from storefront.core.rate_limiter import RateLimiter, RateLimitSweeper, build_store, get_client_ip
from storefront.core.sanitize import RegexThreatDetector
from storefront.db import create_db_engine, init_db
from storefront.routers import admin, auth, carrito, consultas, productos, usuarios
from storefront.utils.timezone import iso_utc


def _validate_env(settings: Settings) -> None:
    """Report placeholder secrets loudly; the app still starts."""
    if settings.has_placeholder_secret:
        logger.critical("JWT_SECRET is missing or a placeholder value.")
        if settings.is_production:
            logger.warning("Session tokens signed with a placeholder secret can be forged. Set JWT_SECRET.")


# ──────────────────────────────────────────────────────────────────────────────
# Error handlers — framework errors use the same envelope as the API
# ──────────────────────────────────────────────────────────────────────────────

async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    messages = {
        status.HTTP_404_NOT_FOUND: "Recurso no encontrado",
        status.HTTP_405_METHOD_NOT_ALLOWED: f"Método {request.method} no permitido",
    }
    message = messages.get(exc.status_code) or str(exc.detail)
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.setdefault(loc[0] if loc else "_", []).append(str(err.get("msg", "Valor inválido")))
    return error_response(status.HTTP_400_BAD_REQUEST, "Datos inválidos", errors=errors)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    sec_log: SecurityLogger = request.app.state.security_logger
    sec_log.error(
        f"Error no controlado en {request.url.path}",
        error=exc,
        data={"ip": get_client_ip(request), "method": request.method},
    )
    extra = {} if request.app.state.settings.is_production else {"error": str(exc)}
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error interno del servidor", **extra)


# ──────────────────────────────────────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────────────────────────────────────

def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings)
    store = build_store(settings.rate_limit_storage_uri)
    sweeper = RateLimitSweeper(store, interval_seconds=settings.rate_limit_sweep_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup: logging, env validation, schema, sweeper. Log files are never pruned here."""
        setup_logging(settings.log_level, serialize=settings.is_production)
        logger.info("Storefront API starting up...")
        _validate_env(settings)
        init_db(engine)
        sweeper.start()
        logger.info("Startup complete.")
        yield
        sweeper.stop()
        engine.dispose()
        logger.info("Shutting down Storefront API.")

    app = FastAPI(
        title="Storefront API",
        description="Product catalog, cart and back-office API behind a request-validation and security pipeline.",
        version="1.0.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.security_logger = SecurityLogger(settings.logs_dir, settings.environment)
    app.state.threat_detector = RegexThreatDetector()
    app.state.rate_limiter = RateLimiter(store)

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # ── Edge security — suspicious URLs, CSRF, upload size, role gate ─────────
    app.middleware("http")(edge_security_middleware)

    # ── CORS ──────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.site_url, *settings.allowed_origins],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(productos.router, prefix="/api", tags=["productos"])
    app.include_router(carrito.router, prefix="/api", tags=["carrito"])
    app.include_router(consultas.router, prefix="/api", tags=["consultas"])
    app.include_router(admin.router, prefix="/api", tags=["admin"])
    app.include_router(usuarios.router, prefix="/api", tags=["usuarios"])

    @app.get("/api/ping", tags=["health"])
    async def ping():
        """Liveness check. Touches neither the database nor the limiter."""
        return {"status": "ok", "timestamp": iso_utc()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "storefront.main:app",
        host="0.0.0.0",
        port=_settings.port,
        reload=_settings.is_development,
    )
