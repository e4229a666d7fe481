"""
storefront/services/catalog.py — Product catalog queries and admin mutations
"""
from __future__ import annotations

from typing import Any, Optional

from loguru import logger
from sqlalchemy import delete, exists, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine

from storefront.core.errors import ApiError, NotFoundError
from storefront.core.logging import SecurityLogger
from storefront.db import categoria, db_now, detalle_pedido, producto, row_to_dict
from storefront.models import ProductSort, ProductoQuery
from storefront.utils.slugify import generate_unique_slug

LOW_STOCK_THRESHOLD = 5

_ORDER_BY = {
    ProductSort.PRECIO_ASC: producto.c.precio.asc(),
    ProductSort.PRECIO_DESC: producto.c.precio.desc(),
    ProductSort.NOMBRE_ASC: producto.c.nombre.asc(),
    ProductSort.NOMBRE_DESC: producto.c.nombre.desc(),
    ProductSort.POPULAR: producto.c.ventas.desc(),
    ProductSort.RECIENTE: producto.c.fecha_creacion.desc(),
}

_PUBLIC_COLUMNS = (
    producto.c.id, producto.c.nombre, producto.c.slug, producto.c.descripcion,
    producto.c.descripcion_corta, producto.c.precio, producto.c.precio_anterior,
    producto.c.stock, producto.c.categoria_id, producto.c.imagen_url, producto.c.sku,
    producto.c.peso_gramos, producto.c.destacado, producto.c.activo,
    producto.c.fecha_creacion, producto.c.fecha_actualizacion,
    producto.c.vistas, producto.c.ventas,
    categoria.c.id.label("cat_id"),
    categoria.c.nombre.label("cat_nombre"),
    categoria.c.slug.label("cat_slug"),
    categoria.c.descripcion.label("cat_descripcion"),
)


def _public_product(row: dict[str, Any], with_category_description: bool = False) -> dict[str, Any]:
    cat_id = row.pop("cat_id")
    cat = {"id": cat_id, "nombre": row.pop("cat_nombre"), "slug": row.pop("cat_slug")}
    cat_description = row.pop("cat_descripcion")
    if with_category_description:
        cat["descripcion"] = cat_description
    row["categoria"] = cat if cat_id is not None else None
    row["vistas"] = row.get("vistas") or 0
    row["ventas"] = row.get("ventas") or 0
    return row


def stock_status(stock: int) -> str:
    if stock == 0:
        return "sin_stock"
    if stock <= LOW_STOCK_THRESHOLD:
        return "stock_bajo"
    return "disponible"


def discount_info(precio: float, precio_anterior: Optional[float]) -> tuple[bool, int]:
    if not precio_anterior:
        return False, 0
    return precio_anterior > precio, round((precio_anterior - precio) / precio_anterior * 100)


# ──────────────────────────────────────────────────────────────────────────────
# Public catalog
# ──────────────────────────────────────────────────────────────────────────────

def list_products(engine: Engine, params: ProductoQuery) -> list[dict[str, Any]]:
    query = (
        select(*_PUBLIC_COLUMNS)
        .select_from(producto.outerjoin(categoria, producto.c.categoria_id == categoria.c.id))
        .where(producto.c.activo.is_(True))
    )
    if params.categoria:
        query = query.where(categoria.c.slug == params.categoria)
    if params.busqueda and params.busqueda.strip():
        term = f"%{params.busqueda.strip().lower()}%"
        query = query.where(or_(
            func.lower(producto.c.nombre).like(term),
            func.lower(producto.c.descripcion).like(term),
            func.lower(producto.c.descripcion_corta).like(term),
            func.lower(producto.c.sku).like(term),
        ))
    if params.precio_min is not None:
        query = query.where(producto.c.precio >= params.precio_min)
    if params.precio_max is not None:
        query = query.where(producto.c.precio <= params.precio_max)
    if params.solo_stock:
        query = query.where(producto.c.stock > 0)
    if params.destacado:
        query = query.where(producto.c.destacado.is_(True))

    query = (
        query.order_by(_ORDER_BY[params.ordenar], producto.c.id.desc())
        .limit(params.limit)
        .offset(params.offset)
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()
    return [_public_product(row_to_dict(row)) for row in rows]


def get_product_by_slug(engine: Engine, slug: str) -> dict[str, Any]:
    """Active product by slug, with derived stock/discount fields. Counts a view."""
    query = (
        select(*_PUBLIC_COLUMNS)
        .select_from(producto.outerjoin(categoria, producto.c.categoria_id == categoria.c.id))
        .where(producto.c.slug == slug, producto.c.activo.is_(True))
        .limit(1)
    )
    with engine.begin() as conn:
        row = conn.execute(query).mappings().first()
        if row is None:
            raise NotFoundError("Producto no encontrado", slug=slug)
        conn.execute(
            update(producto)
            .where(producto.c.id == row["id"])
            .values(vistas=producto.c.vistas + 1)
        )

    product = _public_product(row_to_dict(row), with_category_description=True)
    product["vistas"] += 1
    has_discount, discount_pct = discount_info(product["precio"], product["precio_anterior"])
    product["estado_stock"] = stock_status(product["stock"])
    product["tiene_descuento"] = has_discount
    product["porcentaje_descuento"] = discount_pct
    return product


# ──────────────────────────────────────────────────────────────────────────────
# Admin
# ──────────────────────────────────────────────────────────────────────────────

def list_all_products(engine: Engine) -> list[dict[str, Any]]:
    query = (
        select(
            producto,
            categoria.c.nombre.label("categoria_nombre"),
            categoria.c.slug.label("categoria_slug"),
        )
        .select_from(producto.outerjoin(categoria, producto.c.categoria_id == categoria.c.id))
        .order_by(producto.c.fecha_creacion.desc(), producto.c.id.desc())
    )
    with engine.connect() as conn:
        return [row_to_dict(r) for r in conn.execute(query).mappings().all()]


def get_product(engine: Engine, producto_id: int) -> dict[str, Any]:
    with engine.connect() as conn:
        row = _fetch_product(conn, producto_id)
    if row is None:
        raise NotFoundError("Producto no encontrado")
    return row


def _fetch_product(conn: Connection, producto_id: int) -> Optional[dict[str, Any]]:
    row = conn.execute(select(producto).where(producto.c.id == producto_id)).mappings().first()
    return row_to_dict(row)


def _sku_taken(conn: Connection, sku: str, exclude_id: Optional[int] = None) -> bool:
    query = select(producto.c.id).where(producto.c.sku == sku)
    if exclude_id is not None:
        query = query.where(producto.c.id != exclude_id)
    return conn.execute(query).first() is not None


def _unique_slug(conn: Connection, name: str, sec_log: Optional[SecurityLogger], exclude_id: Optional[int] = None) -> str:
    def taken(slug: str) -> bool:
        query = select(producto.c.id).where(producto.c.slug == slug)
        if exclude_id is not None:
            query = query.where(producto.c.id != exclude_id)
        return conn.execute(query).first() is not None

    return generate_unique_slug(name, taken, sec_log)


def _product_values(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "nombre": data["nombre"],
        "descripcion": data.get("descripcion") or None,
        "descripcion_corta": data.get("descripcion_corta") or None,
        "precio": data["precio"],
        "precio_anterior": data.get("precio_anterior") or None,
        "stock": data["stock"],
        "categoria_id": data["categoria_id"],
        "imagen_url": data.get("imagen_url") or None,
        "sku": data["sku"],
        "peso_gramos": data.get("peso_gramos") or None,
        "destacado": data.get("destacado", False),
        "activo": data.get("activo", True),
    }


def create_product(engine: Engine, data: dict[str, Any], sec_log: Optional[SecurityLogger] = None) -> dict[str, Any]:
    with engine.begin() as conn:
        if _sku_taken(conn, data["sku"]):
            raise ApiError("El SKU ya existe")
        values = _product_values(data)
        values["slug"] = _unique_slug(conn, data["nombre"], sec_log)
        new_id = conn.execute(insert(producto).values(**values)).inserted_primary_key[0]
        created = _fetch_product(conn, new_id)
    logger.info(f"Product created: {created['nombre']} (ID: {new_id})")
    return created


def update_product(
    engine: Engine,
    producto_id: int,
    data: dict[str, Any],
    sec_log: Optional[SecurityLogger] = None,
) -> dict[str, Any]:
    with engine.begin() as conn:
        if _fetch_product(conn, producto_id) is None:
            raise NotFoundError("Producto no encontrado")
        if _sku_taken(conn, data["sku"], exclude_id=producto_id):
            raise ApiError("El SKU ya existe en otro producto")
        values = _product_values(data)
        values["slug"] = _unique_slug(conn, data["nombre"], sec_log, exclude_id=producto_id)
        values["fecha_actualizacion"] = db_now()
        conn.execute(update(producto).where(producto.c.id == producto_id).values(**values))
        updated = _fetch_product(conn, producto_id)
    logger.info(f"Product updated: {updated['nombre']} (ID: {producto_id})")
    return updated


def delete_product(engine: Engine, producto_id: int) -> bool:
    """
    Delete a product. Products referenced by order lines are deactivated
    instead; returns True when that happened.
    """
    with engine.begin() as conn:
        if _fetch_product(conn, producto_id) is None:
            raise NotFoundError("Producto no encontrado")
        has_orders = conn.execute(
            select(exists().where(detalle_pedido.c.producto_id == producto_id))
        ).scalar()
        if has_orders:
            conn.execute(
                update(producto)
                .where(producto.c.id == producto_id)
                .values(activo=False, fecha_actualizacion=db_now())
            )
            logger.warning(f"Product {producto_id} has orders; deactivated instead of deleted.")
            return True
        conn.execute(delete(producto).where(producto.c.id == producto_id))
    logger.info(f"Product {producto_id} deleted.")
    return False
