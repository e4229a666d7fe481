"""
storefront/models.py — All Pydantic data schemas
Request-scoped pipeline values (identity, rate-limit records, log entries)
and the request bodies accepted by the storefront API.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from storefront.core.sanitize import (
    sanitize_email,
    sanitize_phone_number,
    sanitize_string,
)


# ──────────────────────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────────────────────

class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "cliente"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    SECURITY = "SECURITY"
    AUDIT = "AUDIT"


class SecurityEvent(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    SQL_INJECTION_ATTEMPT = "SQL_INJECTION_ATTEMPT"
    XSS_ATTEMPT = "XSS_ATTEMPT"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FILE_UPLOAD = "FILE_UPLOAD"
    DATA_MODIFICATION = "DATA_MODIFICATION"
    API_KEY_USAGE = "API_KEY_USAGE"


class OrderStatus(str, Enum):
    PENDIENTE = "pendiente"
    PROCESANDO = "procesando"
    ENVIADO = "enviado"
    ENTREGADO = "entregado"
    CANCELADO = "cancelado"


class ProductSort(str, Enum):
    RECIENTE = "reciente"
    PRECIO_ASC = "precio_asc"
    PRECIO_DESC = "precio_desc"
    NOMBRE_ASC = "nombre_asc"
    NOMBRE_DESC = "nombre_desc"
    POPULAR = "popular"


# ──────────────────────────────────────────────────────────────────────────────
# Pipeline values
# ──────────────────────────────────────────────────────────────────────────────

class IdentityClaim(BaseModel):
    """Authenticated principal decoded from a verified token. Never persisted."""
    id: int = Field(gt=0)
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class RateLimitRecord(BaseModel):
    count: int = 0
    reset_time: float  # epoch seconds at which the window closes


class SecurityLogEntry(BaseModel):
    """One append-only log line; serialized with camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    level: LogLevel
    event: Optional[str] = None
    message: str
    user_id: Optional[int] = Field(default=None, alias="userId")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    ip: Optional[str] = None
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    endpoint: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    data: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Auth
# ──────────────────────────────────────────────────────────────────────────────

class _SanitizedEmailMixin(BaseModel):
    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return sanitize_email(v)


class LoginRequest(_SanitizedEmailMixin):
    email: EmailStr
    password: str = Field(min_length=1, max_length=100)


class RegistroRequest(_SanitizedEmailMixin):
    nombre: str = Field(min_length=2, max_length=100)
    apellido: str = Field(min_length=2, max_length=100)
    email: EmailStr
    telefono: Optional[str] = Field(default=None, max_length=20)
    password: str = Field(min_length=6, max_length=100)

    @field_validator("nombre", "apellido")
    @classmethod
    def clean_text(cls, v: str) -> str:
        return sanitize_string(v)

    @field_validator("telefono")
    @classmethod
    def clean_phone(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if len(v) < 8:
            raise ValueError("Teléfono inválido")
        return sanitize_phone_number(v)


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Cart
# ──────────────────────────────────────────────────────────────────────────────

class AddToCarritoRequest(BaseModel):
    producto_id: int = Field(gt=0)
    cantidad: int = Field(default=1, ge=1, le=100)


class UpdateCantidadRequest(BaseModel):
    cantidad: int = Field(ge=1, le=100)


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Catalog (admin)
# ──────────────────────────────────────────────────────────────────────────────

class CreateProductoRequest(BaseModel):
    nombre: str = Field(min_length=2, max_length=200)
    descripcion: Optional[str] = Field(default=None, max_length=5000)
    descripcion_corta: Optional[str] = Field(default=None, max_length=500)
    precio: float = Field(gt=0, le=9_999_999)
    precio_anterior: Optional[float] = Field(default=None, gt=0, le=9_999_999)
    stock: int = Field(ge=0, le=999_999)
    categoria_id: int = Field(gt=0)
    imagen_url: Optional[str] = Field(default=None, max_length=500)
    sku: str = Field(min_length=1, max_length=100)
    peso_gramos: Optional[int] = Field(default=None, gt=0)
    destacado: bool = False
    activo: bool = True

    @field_validator("nombre", "sku")
    @classmethod
    def clean_text(cls, v: str) -> str:
        return sanitize_string(v)

    @field_validator("descripcion", "descripcion_corta")
    @classmethod
    def clean_optional_text(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v) if v else None

    @field_validator("imagen_url")
    @classmethod
    def check_image_url(cls, v: Optional[str]) -> Optional[str]:
        # uploaded images are served from a relative path
        if not v:
            return None
        if v.startswith("/") or v.startswith("http://") or v.startswith("https://"):
            return v
        raise ValueError("La URL de imagen debe ser relativa (/uploads/...) o absoluta (http/https)")


class UpdateProductoRequest(CreateProductoRequest):
    destacado: bool
    activo: bool


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Orders (admin)
# ──────────────────────────────────────────────────────────────────────────────

class UpdateEstadoRequest(BaseModel):
    estado: OrderStatus


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Users (admin)
# ──────────────────────────────────────────────────────────────────────────────

class CreateUsuarioRequest(_SanitizedEmailMixin):
    nombre: str = Field(min_length=2, max_length=100)
    apellido: str = Field(min_length=2, max_length=100)
    email: EmailStr
    telefono: str = Field(min_length=8, max_length=20)
    password: str = Field(min_length=6, max_length=100)
    rol: Role

    @field_validator("nombre", "apellido")
    @classmethod
    def clean_text(cls, v: str) -> str:
        return sanitize_string(v)

    @field_validator("telefono")
    @classmethod
    def clean_phone(cls, v: str) -> str:
        return sanitize_phone_number(v)


class UpdateUsuarioRequest(CreateUsuarioRequest):
    telefono: Optional[str] = Field(default=None, min_length=8, max_length=20)
    password: Optional[str] = Field(default=None, min_length=6, max_length=100)

    @field_validator("telefono")
    @classmethod
    def clean_phone(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_phone_number(v) if v else None


# ──────────────────────────────────────────────────────────────────────────────
# Request bodies — Public
# ──────────────────────────────────────────────────────────────────────────────

class ConsultaRequest(_SanitizedEmailMixin):
    nombre: str = Field(min_length=2, max_length=100)
    email: EmailStr
    mensaje: str = Field(min_length=1, max_length=5000)

    @field_validator("nombre", "mensaje")
    @classmethod
    def clean_text(cls, v: str) -> str:
        return sanitize_string(v)


class ProductoQuery(BaseModel):
    """Query-string filters for the public catalog listing."""
    categoria: Optional[str] = Field(default=None, max_length=100)
    busqueda: Optional[str] = Field(default=None, max_length=200)
    precio_min: Optional[float] = Field(default=None, ge=0, le=999_999, alias="precioMin")
    precio_max: Optional[float] = Field(default=None, ge=0, le=999_999, alias="precioMax")
    solo_stock: bool = Field(default=False, alias="soloStock")
    destacado: Optional[bool] = None
    ordenar: ProductSort = ProductSort.RECIENTE
    limit: int = Field(default=20, ge=1, le=100)
    page: int = Field(default=1, ge=1, le=1000)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("categoria", "busqueda")
    @classmethod
    def clean_optional_text(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_string(v) or None if v else None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
