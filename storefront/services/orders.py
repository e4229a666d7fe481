"""
storefront/services/orders.py — Admin order management
"""
from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine

from storefront.core.errors import ApiError, NotFoundError
from storefront.db import db_now, detalle_pedido, direccion, pedido, producto, row_to_dict, usuario
from storefront.models import OrderStatus

# first transition into a status stamps its date column; later ones keep it
STATUS_TIMESTAMPS = {
    OrderStatus.PROCESANDO: "fecha_procesado",
    OrderStatus.ENVIADO: "fecha_enviado",
    OrderStatus.ENTREGADO: "fecha_entregado",
}

DELETABLE_STATUSES = frozenset({OrderStatus.PENDIENTE.value, OrderStatus.CANCELADO.value})

_ADDRESS_FIELDS = (
    "nombre_contacto", "telefono_contacto", "direccion",
    "ciudad", "provincia", "codigo_postal", "referencias",
)


def get_order(engine: Engine, pedido_id: int) -> dict[str, Any]:
    """Order with customer, shipping address and line items."""
    order_query = (
        select(
            pedido,
            (usuario.c.nombre + " " + usuario.c.apellido).label("usuario_nombre"),
            usuario.c.email.label("usuario_email"),
            *(direccion.c[name] for name in _ADDRESS_FIELDS),
        )
        .select_from(
            pedido
            .outerjoin(usuario, pedido.c.usuario_id == usuario.c.id)
            .outerjoin(direccion, pedido.c.direccion_id == direccion.c.id)
        )
        .where(pedido.c.id == pedido_id)
    )
    items_query = (
        select(
            detalle_pedido.c.id,
            detalle_pedido.c.producto_id,
            detalle_pedido.c.nombre_producto,
            detalle_pedido.c.sku,
            detalle_pedido.c.cantidad,
            detalle_pedido.c.precio_unitario,
            detalle_pedido.c.subtotal,
            producto.c.imagen_url,
            producto.c.slug,
        )
        .select_from(detalle_pedido.outerjoin(producto, detalle_pedido.c.producto_id == producto.c.id))
        .where(detalle_pedido.c.pedido_id == pedido_id)
        .order_by(detalle_pedido.c.id)
    )

    with engine.connect() as conn:
        row = conn.execute(order_query).mappings().first()
        if row is None:
            raise NotFoundError("Pedido no encontrado")
        items = [row_to_dict(r) for r in conn.execute(items_query).mappings().all()]

    order = row_to_dict(row)
    order.pop("direccion_id", None)
    order["direccion"] = {name: order.pop(name) for name in _ADDRESS_FIELDS}
    order["items"] = items
    return order


def update_status(engine: Engine, pedido_id: int, estado: OrderStatus) -> dict[str, Any]:
    estado = OrderStatus(estado)
    with engine.begin() as conn:
        current = conn.execute(
            select(pedido).where(pedido.c.id == pedido_id).with_for_update()
        ).mappings().first()
        if current is None:
            raise NotFoundError("Pedido no encontrado")

        values: dict[str, Any] = {"estado": estado.value}
        column = STATUS_TIMESTAMPS.get(estado)
        if column is not None and current[column] is None:
            values[column] = db_now()
        conn.execute(update(pedido).where(pedido.c.id == pedido_id).values(**values))

    logger.info(f"Order {current['numero_pedido']} moved to status: {estado.value}")
    return {"id": pedido_id, "numero_pedido": current["numero_pedido"], "estado": estado.value}


def delete_order(engine: Engine, pedido_id: int) -> None:
    """Delete a pending or cancelled order, returning its units to stock."""
    with engine.begin() as conn:
        current = conn.execute(
            select(pedido.c.numero_pedido, pedido.c.estado)
            .where(pedido.c.id == pedido_id)
            .with_for_update()
        ).mappings().first()
        if current is None:
            raise NotFoundError("Pedido no encontrado")
        if current["estado"] not in DELETABLE_STATUSES:
            raise ApiError("Solo se pueden eliminar pedidos pendientes o cancelados")

        lines = conn.execute(
            select(detalle_pedido.c.producto_id, detalle_pedido.c.cantidad)
            .where(detalle_pedido.c.pedido_id == pedido_id)
        ).all()
        for producto_id, cantidad in lines:
            if producto_id is None:
                continue
            conn.execute(
                update(producto)
                .where(producto.c.id == producto_id)
                .values(stock=producto.c.stock + cantidad)
            )
            logger.debug(f"Stock restored: product {producto_id} +{cantidad}")

        conn.execute(delete(detalle_pedido).where(detalle_pedido.c.pedido_id == pedido_id))
        conn.execute(delete(pedido).where(pedido.c.id == pedido_id))

    logger.info(f"Order {current['numero_pedido']} deleted.")
