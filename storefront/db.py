"""
storefront/db.py — Relational schema and engine factory (SQLAlchemy Core)
SQLite for local work and tests, PostgreSQL in production. Column names are
part of the JSON contract and follow the shop's Spanish schema.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.pool import StaticPool

from storefront.config import Settings
from storefront.utils.timezone import utc_now

metadata = MetaData()


def db_now() -> datetime:
    """Naive UTC timestamp, the representation stored in DateTime columns."""
    return utc_now().replace(tzinfo=None)


# ──────────────────────────────────────────────────────────────────────────────
# Tables
# ──────────────────────────────────────────────────────────────────────────────

usuario = Table(
    "usuario",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("nombre", String(100), nullable=False),
    Column("apellido", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("telefono", String(20), nullable=True),
    Column("password", String(255), nullable=False),
    Column("rol", String(20), nullable=False, default="cliente"),
    Column("activo", Boolean, nullable=False, default=True),
    Column("email_verificado", Boolean, nullable=False, default=False),
    Column("fecha_registro", DateTime, nullable=False, default=db_now),
    Column("ultima_sesion", DateTime, nullable=True),
)

categoria = Table(
    "categoria",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("nombre", String(100), nullable=False),
    Column("slug", String(120), nullable=False, unique=True),
    Column("descripcion", Text, nullable=True),
    Column("activo", Boolean, nullable=False, default=True),
)

producto = Table(
    "producto",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("nombre", String(200), nullable=False),
    Column("slug", String(120), nullable=False, unique=True),
    Column("descripcion", Text, nullable=True),
    Column("descripcion_corta", String(500), nullable=True),
    Column("precio", Float, nullable=False),
    Column("precio_anterior", Float, nullable=True),
    Column("stock", Integer, nullable=False, default=0),
    Column("categoria_id", Integer, ForeignKey("categoria.id"), nullable=True),
    Column("imagen_url", String(500), nullable=True),
    Column("sku", String(100), nullable=False, unique=True),
    Column("peso_gramos", Integer, nullable=True),
    Column("destacado", Boolean, nullable=False, default=False),
    Column("activo", Boolean, nullable=False, default=True),
    Column("vistas", Integer, nullable=False, default=0),
    Column("ventas", Integer, nullable=False, default=0),
    Column("fecha_creacion", DateTime, nullable=False, default=db_now),
    Column("fecha_actualizacion", DateTime, nullable=False, default=db_now, onupdate=db_now),
    Index("idx_producto_categoria", "categoria_id"),
)

carrito = Table(
    "carrito",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("usuario_id", Integer, ForeignKey("usuario.id", ondelete="CASCADE"), nullable=False),
    Column("producto_id", Integer, ForeignKey("producto.id", ondelete="CASCADE"), nullable=False),
    Column("cantidad", Integer, nullable=False, default=1),
    Column("fecha_agregado", DateTime, nullable=False, default=db_now),
    Column("fecha_actualizacion", DateTime, nullable=True, onupdate=db_now),
    UniqueConstraint("usuario_id", "producto_id", name="uq_carrito_usuario_producto"),
)

direccion = Table(
    "direccion",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("usuario_id", Integer, ForeignKey("usuario.id", ondelete="CASCADE"), nullable=False),
    Column("nombre_contacto", String(200), nullable=True),
    Column("telefono_contacto", String(20), nullable=True),
    Column("direccion", String(300), nullable=False),
    Column("ciudad", String(100), nullable=False),
    Column("provincia", String(100), nullable=False),
    Column("codigo_postal", String(20), nullable=False),
    Column("referencias", Text, nullable=True),
)

pedido = Table(
    "pedido",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("numero_pedido", String(50), nullable=False, unique=True),
    Column("usuario_id", Integer, ForeignKey("usuario.id"), nullable=False),
    Column("direccion_id", Integer, ForeignKey("direccion.id"), nullable=True),
    Column("estado", String(20), nullable=False, default="pendiente"),
    Column("subtotal", Float, nullable=False, default=0),
    Column("descuento", Float, nullable=False, default=0),
    Column("costo_envio", Float, nullable=False, default=0),
    Column("total", Float, nullable=False, default=0),
    Column("metodo_pago", String(50), nullable=True),
    Column("mercadopago_payment_id", String(100), nullable=True),
    Column("mercadopago_status", String(50), nullable=True),
    Column("notas", Text, nullable=True),
    Column("notas_admin", Text, nullable=True),
    Column("fecha_pedido", DateTime, nullable=False, default=db_now),
    Column("fecha_pago", DateTime, nullable=True),
    Column("fecha_procesado", DateTime, nullable=True),
    Column("fecha_enviado", DateTime, nullable=True),
    Column("fecha_entregado", DateTime, nullable=True),
    Index("idx_pedido_estado", "estado"),
)

detalle_pedido = Table(
    "detalle_pedido",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("pedido_id", Integer, ForeignKey("pedido.id", ondelete="CASCADE"), nullable=False),
    Column("producto_id", Integer, ForeignKey("producto.id"), nullable=True),
    Column("nombre_producto", String(200), nullable=False),
    Column("sku", String(100), nullable=True),
    Column("cantidad", Integer, nullable=False),
    Column("precio_unitario", Float, nullable=False),
    Column("subtotal", Float, nullable=False),
)

consultas = Table(
    "consultas",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("nombre", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("mensaje", Text, nullable=False),
    Column("leida", Boolean, nullable=False, default=False),
    Column("fecha_creacion", DateTime, nullable=False, default=db_now),
)


# ──────────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────────

def create_db_engine(settings: Settings) -> Engine:
    url = settings.database_url
    echo = settings.debug_sql and settings.is_development

    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise each checkout sees an empty db
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **options)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=settings.db_pool_size,
        pool_pre_ping=True,
        pool_timeout=2,
        pool_recycle=1800,
    )


def init_db(engine: Engine) -> None:
    """Create missing tables. Existing tables are left untouched."""
    metadata.create_all(engine)
    logger.info(f"Database schema ready ({engine.url.get_backend_name()}).")


def row_to_dict(row: Optional[RowMapping]) -> Optional[dict[str, Any]]:
    """Copy a result mapping into a JSON-friendly dict (datetimes as ISO strings)."""
    if row is None:
        return None
    result: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, datetime):
            result[key] = value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()
        else:
            result[key] = value
    return result
