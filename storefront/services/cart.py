"""
storefront/services/cart.py — Shopping cart persistence
One row per (usuario, producto); adding an existing product increments it.
Stock is checked against the quantity the cart would hold after the change.
"""
from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from storefront.core.errors import ApiError, NotFoundError
from storefront.db import carrito, db_now, producto, row_to_dict


def _insufficient_stock(stock: int) -> ApiError:
    return ApiError(f"Solo hay {stock} unidades disponibles")


def list_items(engine: Engine, usuario_id: int) -> list[dict[str, Any]]:
    query = (
        select(
            carrito.c.id,
            carrito.c.cantidad,
            carrito.c.fecha_agregado,
            producto.c.id.label("producto_id"),
            producto.c.nombre,
            producto.c.slug,
            producto.c.precio,
            producto.c.precio_anterior,
            producto.c.stock,
            producto.c.imagen_url,
            producto.c.sku,
            producto.c.activo,
        )
        .join(producto, carrito.c.producto_id == producto.c.id)
        .where(carrito.c.usuario_id == usuario_id, producto.c.activo.is_(True))
        .order_by(carrito.c.fecha_agregado.desc(), carrito.c.id.desc())
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()

    items = []
    for row in rows:
        row = row_to_dict(row)
        items.append({
            "id": row["id"],
            "producto": {
                "id": row["producto_id"],
                "nombre": row["nombre"],
                "slug": row["slug"],
                "precio": row["precio"],
                "precio_anterior": row["precio_anterior"],
                "stock": row["stock"],
                "imagen_url": row["imagen_url"],
                "sku": row["sku"],
                "activo": row["activo"],
            },
            "cantidad": row["cantidad"],
            "fecha_agregado": row["fecha_agregado"],
        })
    return items


def add_item(engine: Engine, usuario_id: int, producto_id: int, cantidad: int) -> int:
    """Add `cantidad` units to the cart; returns the resulting quantity."""
    with engine.begin() as conn:
        product = conn.execute(
            select(producto.c.stock, producto.c.activo)
            .where(producto.c.id == producto_id)
            .with_for_update()
        ).mappings().first()
        if product is None:
            raise NotFoundError("Producto no encontrado")
        if not product["activo"]:
            raise ApiError("Producto no disponible")

        current = conn.execute(
            select(carrito.c.cantidad).where(
                carrito.c.usuario_id == usuario_id,
                carrito.c.producto_id == producto_id,
            )
        ).scalar()
        total = (current or 0) + cantidad
        if product["stock"] < total:
            raise _insufficient_stock(product["stock"])

        if current is None:
            conn.execute(
                insert(carrito).values(
                    usuario_id=usuario_id,
                    producto_id=producto_id,
                    cantidad=cantidad,
                )
            )
        else:
            conn.execute(
                update(carrito)
                .where(carrito.c.usuario_id == usuario_id, carrito.c.producto_id == producto_id)
                .values(cantidad=carrito.c.cantidad + cantidad, fecha_actualizacion=db_now())
            )

    logger.info(f"Product {producto_id} added to cart of user {usuario_id} (total {total}).")
    return total


def set_quantity(engine: Engine, usuario_id: int, producto_id: int, cantidad: int) -> None:
    with engine.begin() as conn:
        row = conn.execute(
            select(carrito.c.id, producto.c.stock)
            .join(producto, carrito.c.producto_id == producto.c.id)
            .where(carrito.c.producto_id == producto_id, carrito.c.usuario_id == usuario_id)
        ).mappings().first()
        if row is None:
            raise NotFoundError("Item no encontrado")
        if row["stock"] < cantidad:
            raise _insufficient_stock(row["stock"])
        conn.execute(
            update(carrito)
            .where(carrito.c.id == row["id"])
            .values(cantidad=cantidad, fecha_actualizacion=db_now())
        )


def remove_item(engine: Engine, usuario_id: int, producto_id: int) -> None:
    with engine.begin() as conn:
        result = conn.execute(
            delete(carrito).where(
                carrito.c.producto_id == producto_id,
                carrito.c.usuario_id == usuario_id,
            )
        )
    if result.rowcount == 0:
        raise NotFoundError("Item no encontrado")


def clear(engine: Engine, usuario_id: int) -> int:
    with engine.begin() as conn:
        result = conn.execute(delete(carrito).where(carrito.c.usuario_id == usuario_id))
    logger.info(f"Cart cleared for user {usuario_id}.")
    return result.rowcount
