"""
storefront/services/stats.py — Admin dashboard aggregates
Conditional counts are written as SUM(CASE ...) so the same query runs on
SQLite and PostgreSQL. Day/week/month windows are computed in UTC.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine

from storefront.db import detalle_pedido, pedido, producto, usuario
from storefront.models import OrderStatus, Role
from storefront.utils.timezone import days_ago, iso_utc, start_of_day

TOP_PRODUCTS_LIMIT = 5


def _count_if(condition) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _naive(dt):
    return dt.replace(tzinfo=None)


def get_dashboard_stats(engine: Engine) -> dict[str, Any]:
    today = start_of_day()
    week_ago = _naive(start_of_day(days_ago(7, today)))
    month_ago = _naive(start_of_day(days_ago(30, today)))
    today = _naive(today)
    not_cancelled = pedido.c.estado != OrderStatus.CANCELADO.value

    products_q = select(
        func.count().label("total_productos"),
        _count_if(producto.c.activo.is_(True)).label("productos_activos"),
        _count_if(producto.c.destacado.is_(True)).label("productos_destacados"),
        _count_if(producto.c.stock == 0).label("productos_sin_stock"),
        _count_if((producto.c.stock > 0) & (producto.c.stock <= 5)).label("productos_stock_bajo"),
        func.coalesce(func.sum(producto.c.stock), 0).label("stock_total"),
    ).select_from(producto)

    orders_q = select(
        func.count().label("total_pedidos"),
        _count_if(pedido.c.estado == OrderStatus.PENDIENTE.value).label("pedidos_pendientes"),
        _count_if(pedido.c.estado == OrderStatus.PROCESANDO.value).label("pedidos_procesando"),
        _count_if(pedido.c.estado == OrderStatus.ENVIADO.value).label("pedidos_enviados"),
        _count_if(pedido.c.estado == OrderStatus.ENTREGADO.value).label("pedidos_entregados"),
        _count_if(pedido.c.fecha_pedido >= today).label("pedidos_hoy"),
        _count_if(pedido.c.fecha_pedido >= week_ago).label("pedidos_semana"),
        _count_if(pedido.c.fecha_pedido >= month_ago).label("pedidos_mes"),
        func.coalesce(
            func.sum(case((not_cancelled, pedido.c.total), else_=0)), 0
        ).label("ingresos_total"),
        func.coalesce(
            func.sum(case(((pedido.c.fecha_pedido >= month_ago) & not_cancelled, pedido.c.total), else_=0)), 0
        ).label("ingresos_mes"),
    ).select_from(pedido)

    users_q = select(
        func.count().label("total_usuarios"),
        _count_if(usuario.c.rol == Role.ADMIN.value).label("total_admins"),
        _count_if(usuario.c.rol == Role.CUSTOMER.value).label("total_clientes"),
        _count_if(usuario.c.fecha_registro >= month_ago).label("usuarios_mes"),
        _count_if(usuario.c.activo.is_(True)).label("usuarios_activos"),
    ).select_from(usuario)

    units_sold = func.coalesce(func.sum(detalle_pedido.c.cantidad), 0)
    top_q = (
        select(
            producto.c.id,
            producto.c.nombre,
            producto.c.slug,
            producto.c.imagen_url,
            func.count(detalle_pedido.c.id).label("veces_vendido"),
            units_sold.label("unidades_vendidas"),
            func.coalesce(func.sum(detalle_pedido.c.subtotal), 0).label("ingresos_totales"),
        )
        .select_from(producto.outerjoin(detalle_pedido, producto.c.id == detalle_pedido.c.producto_id))
        .group_by(producto.c.id, producto.c.nombre, producto.c.slug, producto.c.imagen_url)
        .order_by(units_sold.desc(), producto.c.id)
        .limit(TOP_PRODUCTS_LIMIT)
    )

    with engine.connect() as conn:
        products = conn.execute(products_q).mappings().one()
        orders = conn.execute(orders_q).mappings().one()
        users = conn.execute(users_q).mappings().one()
        top = conn.execute(top_q).mappings().all()

    stats: dict[str, Any] = {}
    for row in (products, orders, users):
        for key, value in row.items():
            stats[key] = float(value) if key.startswith("ingresos") else int(value)

    stats["top_productos"] = [
        {
            "id": p["id"],
            "nombre": p["nombre"],
            "slug": p["slug"],
            "imagen_url": p["imagen_url"],
            "veces_vendido": int(p["veces_vendido"]),
            "unidades_vendidas": int(p["unidades_vendidas"]),
            "ingresos_totales": float(p["ingresos_totales"]),
        }
        for p in top
    ]
    stats["last_updated"] = iso_utc()
    return stats
